"""Batch HEIC to JPEG conversion toolkit."""

from .access import AccessProvider, FilesystemAccess, scoped_access
from .batch import BatchCoordinator, BatchHandle
from .config import AppConfig, RuntimeConfig, load_config
from .core import ConversionService
from .errors import (
    ConversionError,
    DecodeError,
    EmptyBatchError,
    EncodeError,
    PermissionDeniedError,
    WriteError,
)
from .models import (
    BatchConversionResult,
    BatchState,
    ConversionRequest,
    ConversionResult,
    FailedFile,
    OutputPolicy,
)

__all__ = [
    "AccessProvider",
    "AppConfig",
    "BatchConversionResult",
    "BatchCoordinator",
    "BatchHandle",
    "BatchState",
    "ConversionError",
    "ConversionRequest",
    "ConversionResult",
    "ConversionService",
    "DecodeError",
    "EmptyBatchError",
    "EncodeError",
    "FailedFile",
    "FilesystemAccess",
    "OutputPolicy",
    "PermissionDeniedError",
    "RuntimeConfig",
    "WriteError",
    "load_config",
    "scoped_access",
]
