"""Domain models for HEIC to JPEG conversion."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

from .constraint import DEFAULT_QUALITY, OUTPUT_SUFFIX
from .errors import ConversionError
from .logging import BatchSummary


@dataclass(frozen=True, slots=True)
class ConversionRequest:
    """A single file to convert, created by the coordinator per input."""

    input_path: Path
    output_path: Path
    quality: float = DEFAULT_QUALITY

    def __post_init__(self) -> None:
        if not str(self.input_path) or str(self.input_path) == ".":
            raise ValueError("input_path must not be empty")
        if not str(self.output_path) or str(self.output_path) == ".":
            raise ValueError("output_path must not be empty")
        if not 0.0 < self.quality <= 1.0:
            raise ValueError(f"quality must be in (0, 1], got {self.quality}")

    @property
    def jpeg_quality(self) -> int:
        return max(1, min(100, round(self.quality * 100)))


@dataclass(frozen=True, slots=True)
class OutputPolicy:
    """Where each converted file is written.

    ``directory`` is ``None`` for the same-folder variant; otherwise every
    output lands in that fixed directory.
    """

    directory: Path | None = None

    @classmethod
    def same_folder(cls) -> OutputPolicy:
        return cls(directory=None)

    @classmethod
    def fixed(cls, directory: Path) -> OutputPolicy:
        return cls(directory=Path(directory))

    @property
    def same_folder_as_source(self) -> bool:
        return self.directory is None

    def output_path_for(self, source: Path) -> Path:
        parent = source.parent if self.directory is None else self.directory
        return parent / f"{source.stem}{OUTPUT_SUFFIX}"


@dataclass(frozen=True, slots=True)
class FailedFile:
    path: Path
    error: ConversionError

    @property
    def reason(self) -> str:
        return f"{self.error.code}: {self.error.cause}"


@dataclass(slots=True)
class BatchState:
    """Aggregate progress of one batch, owned by the coordinator."""

    total: int = 0
    completed: int = 0
    failed: list[FailedFile] = field(default_factory=list)
    is_running: bool = False
    is_complete: bool = False

    @property
    def succeeded(self) -> int:
        return self.completed - len(self.failed)

    @property
    def progress(self) -> float:
        if self.total == 0:
            return 0.0
        return self.completed / self.total

    def snapshot(self) -> BatchState:
        return replace(self, failed=list(self.failed))


@dataclass(slots=True)
class ConversionResult:
    """Result metadata for an individual conversion."""

    input_path: Path
    output_path: Path
    orientation: int
    size_bytes: int
    summary: str


@dataclass(slots=True)
class BatchConversionResult:
    """Aggregate results for a finished batch."""

    batch_id: str
    state: BatchState
    results: list[ConversionResult]
    summary: BatchSummary


__all__ = [
    "BatchConversionResult",
    "BatchState",
    "ConversionRequest",
    "ConversionResult",
    "FailedFile",
    "OutputPolicy",
]
