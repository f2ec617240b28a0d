from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from .constraint import DEFAULT_CONFIG_PATH, ENV_PREFIX


@dataclass(frozen=True, slots=True)
class Settings:
    """Application runtime settings sourced from environment variables."""

    config_path: Path = DEFAULT_CONFIG_PATH
    quality: float | None = None


def _parse_quality(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        quality = float(value.strip())
    except ValueError:
        return None
    if not 0.0 < quality <= 1.0:
        return None
    return quality


def _read_settings() -> Settings:
    config_env = os.getenv(f"{ENV_PREFIX}CONFIG_PATH")
    quality_env = os.getenv(f"{ENV_PREFIX}QUALITY")
    config_path = Path(config_env) if config_env else DEFAULT_CONFIG_PATH
    return Settings(config_path=config_path, quality=_parse_quality(quality_env))


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return _read_settings()


__all__ = ["Settings", "get_settings"]
