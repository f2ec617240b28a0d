from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

from .constraint import DEFAULT_EXTENSIONS, DEFAULT_QUALITY
from .settings import get_settings


@dataclass(slots=True)
class RuntimeConfig:
    quality: float = DEFAULT_QUALITY
    parallelism: int = 0
    max_file_size_mb: int = 200
    log_file: Path | None = None
    summary_csv: Path | None = None
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS

    @property
    def worker_count(self) -> int:
        if self.parallelism > 0:
            return self.parallelism
        return min(4, max(1, os.cpu_count() or 1))


@dataclass(slots=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)


def _read_toml(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _optional_path(value: object | None) -> Path | None:
    if value is None or value == "":
        return None
    return Path(str(value))


def _tuple_of_extensions(value: object | None, default: Iterable[str]) -> tuple[str, ...]:
    if not value:
        return tuple(default)
    if isinstance(value, str):
        value = (value,)
    if isinstance(value, Iterable):
        extensions = []
        for item in value:
            suffix = str(item).strip().lower()
            if not suffix.startswith("."):
                suffix = f".{suffix}"
            extensions.append(suffix)
        return tuple(extensions)
    raise TypeError(f"Unsupported extensions configuration: {value!r}")


def _build_quality(value: object | None) -> float:
    if value is None:
        return DEFAULT_QUALITY
    quality = float(value)  # type: ignore[arg-type]
    if not 0.0 < quality <= 1.0:
        raise ValueError(f"quality must be in (0, 1], got {quality}")
    return quality


def _build_runtime(data: Mapping[str, object] | None) -> RuntimeConfig:
    if not data:
        return RuntimeConfig()
    return RuntimeConfig(
        quality=_build_quality(data.get("quality")),
        parallelism=max(0, int(data.get("parallelism", 0))),  # type: ignore[arg-type]
        max_file_size_mb=int(data.get("max_file_size_mb", 200)),  # type: ignore[arg-type]
        log_file=_optional_path(data.get("log_file")),
        summary_csv=_optional_path(data.get("summary_csv")),
        extensions=_tuple_of_extensions(data.get("extensions"), DEFAULT_EXTENSIONS),
    )


def load_config(path: Path | None = None) -> AppConfig:
    settings = get_settings()
    path = path or settings.config_path
    raw = _read_toml(path)
    runtime_data = raw.get("runtime") if isinstance(raw, Mapping) else None
    runtime = _build_runtime(runtime_data if isinstance(runtime_data, Mapping) else None)
    if settings.quality is not None:
        runtime.quality = settings.quality
    return AppConfig(runtime=runtime)


def dump_config(config: AppConfig) -> str:
    runtime = config.runtime
    payload = {
        "runtime": {
            "quality": runtime.quality,
            "parallelism": runtime.parallelism,
            "max_file_size_mb": runtime.max_file_size_mb,
            "log_file": str(runtime.log_file) if runtime.log_file else None,
            "summary_csv": str(runtime.summary_csv) if runtime.summary_csv else None,
            "extensions": list(runtime.extensions),
        },
    }
    return json.dumps(payload, indent=2)


__all__ = ["AppConfig", "RuntimeConfig", "dump_config", "load_config"]
