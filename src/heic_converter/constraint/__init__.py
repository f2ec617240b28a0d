from __future__ import annotations

from pathlib import Path

DEFAULT_CONFIG_PATH = Path("config.toml")
ENV_PREFIX = "HEIC2JPG_"

DEFAULT_QUALITY = 0.85
DEFAULT_EXTENSIONS = (".heic", ".heif")
OUTPUT_SUFFIX = ".jpg"

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_EXTENSIONS",
    "DEFAULT_QUALITY",
    "ENV_PREFIX",
    "OUTPUT_SUFFIX",
]
