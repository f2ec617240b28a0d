"""Error taxonomy shared by conversion jobs and the batch coordinator."""

from __future__ import annotations

from pathlib import Path


class ConversionError(RuntimeError):
    code = "UNKNOWN"

    def __init__(self, path: Path | None, cause: str) -> None:
        location = f"{path}: " if path is not None else ""
        super().__init__(f"{location}{cause}")
        self.path = path
        self.cause = cause


class EmptyBatchError(ConversionError):
    """Raised when a batch is started without any input paths."""

    code = "EMPTY_BATCH"

    def __init__(self, cause: str = "No input files were supplied") -> None:
        super().__init__(None, cause)


class PermissionDeniedError(ConversionError):
    """Raised when an output location is unusable or access was not granted."""

    code = "PERMISSION"


class DecodeError(ConversionError):
    """Raised when the input is unreadable or holds no decodable HEIC image."""

    code = "DECODE"


class EncodeError(ConversionError):
    """Raised when the JPEG destination cannot be created."""

    code = "ENCODE"


class WriteError(ConversionError):
    """Raised when encoding or finalising the JPEG destination fails."""

    code = "WRITE"


__all__ = [
    "ConversionError",
    "DecodeError",
    "EmptyBatchError",
    "EncodeError",
    "PermissionDeniedError",
    "WriteError",
]
