from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from PIL import Image
from pillow_heif import register_heif_opener

from .access import AccessProvider
from .batch import BatchCoordinator, ProgressCallback
from .config import AppConfig
from .detection import DetectionError, detect_heic
from .errors import ConversionError, DecodeError, EncodeError, WriteError
from .logging import BatchSummary, RunLogEntry, RunLogger, StageTimings
from .metadata import ImageMetadata, read_metadata, undo_applied_orientation
from .models import BatchConversionResult, ConversionRequest, ConversionResult, OutputPolicy
from .utils import commit_sibling, generate_run_id, size_within_limit, temporary_sibling

register_heif_opener()

JPEG_MODES = {"RGB", "L", "CMYK"}


@dataclass(slots=True)
class _JobContext:
    batch_id: str
    request: ConversionRequest
    read_ms: float = 0.0
    decode_ms: float = 0.0
    encode_ms: float = 0.0
    write_ms: float = 0.0

    @property
    def timings(self) -> StageTimings:
        return StageTimings(
            read_ms=self.read_ms,
            decode_ms=self.decode_ms,
            encode_ms=self.encode_ms,
            write_ms=self.write_ms,
        )


class ConversionService:
    def __init__(self, config: AppConfig | None = None, *, access: AccessProvider | None = None) -> None:
        self._config = config or AppConfig()
        self._access = access
        self._logger = RunLogger(self._config.runtime.log_file)

    def convert_file(self, request: ConversionRequest, *, batch_id: str | None = None) -> ConversionResult:
        context = _JobContext(batch_id=batch_id or generate_run_id("single"), request=request)
        start = time.perf_counter()
        try:
            metadata = self._convert_internal(context)
        except ConversionError as exc:
            # Batch failures are logged by the coordinator.
            if batch_id is None:
                self._log_failure(context, exc)
            raise

        elapsed = time.perf_counter() - start
        size_bytes = request.output_path.stat().st_size
        self._logger.append(
            RunLogEntry(
                batch_id=context.batch_id,
                source=str(request.input_path),
                status="success",
                output_path=str(request.output_path),
                error_code=None,
                error=None,
                orientation=metadata.orientation,
                size_bytes=size_bytes,
                timings=context.timings,
            )
        )
        return ConversionResult(
            input_path=request.input_path,
            output_path=request.output_path,
            orientation=metadata.orientation,
            size_bytes=size_bytes,
            summary=f"Converted {request.input_path.name} -> {request.output_path} in {elapsed:.2f}s",
        )

    def _convert_internal(self, context: _JobContext) -> ImageMetadata:
        self._validate_source(context)
        with self._open_source(context) as image:
            metadata = read_metadata(image)
            prepared = self._prepare_image(image, metadata)
            self._write_jpeg(prepared, metadata, context)
        return metadata

    def _log_failure(self, context: _JobContext, error: ConversionError) -> None:
        request = context.request
        self._logger.append(
            RunLogEntry.failure(context.batch_id, request.input_path, request.output_path, error.code, error.cause)
        )

    def _validate_source(self, context: _JobContext) -> None:
        path = context.request.input_path
        read_start = time.perf_counter()
        if not path.is_file():
            raise DecodeError(path, "Source file does not exist")
        try:
            detect_heic(path, self._config.runtime.extensions)
        except DetectionError as exc:
            raise DecodeError(path, str(exc)) from exc
        except OSError as exc:
            raise DecodeError(path, f"Cannot read source: {exc}") from exc
        if not size_within_limit(path, self._config.runtime.max_file_size_mb):
            raise DecodeError(path, f"File exceeds configured limit of {self._config.runtime.max_file_size_mb} MB")
        context.read_ms = (time.perf_counter() - read_start) * 1000

    def _open_source(self, context: _JobContext) -> Image.Image:
        path = context.request.input_path
        decode_start = time.perf_counter()
        try:
            image = Image.open(path)
        except (OSError, ValueError, RuntimeError, Image.DecompressionBombError) as exc:
            raise DecodeError(path, f"No decodable image: {exc}") from exc
        try:
            image.load()
        except (OSError, ValueError, RuntimeError, Image.DecompressionBombError) as exc:
            image.close()
            raise DecodeError(path, f"No decodable image: {exc}") from exc
        context.decode_ms = (time.perf_counter() - decode_start) * 1000
        return image

    def _prepare_image(self, image: Image.Image, metadata: ImageMetadata) -> Image.Image:
        prepared = undo_applied_orientation(image, metadata)
        if prepared.mode not in JPEG_MODES:
            prepared = prepared.convert("RGB")
        return prepared

    def _save_options(self, request: ConversionRequest, metadata: ImageMetadata) -> dict[str, object]:
        options: dict[str, object] = {"quality": request.jpeg_quality}
        if metadata.exif:
            options["exif"] = metadata.exif
        if metadata.icc_profile:
            options["icc_profile"] = metadata.icc_profile
        return options

    def _write_jpeg(self, image: Image.Image, metadata: ImageMetadata, context: _JobContext) -> None:
        output = context.request.output_path
        try:
            handle = temporary_sibling(output)
        except OSError as exc:
            raise EncodeError(output, f"Cannot create JPEG destination: {exc}") from exc
        tmp_path = Path(handle.name)
        try:
            with handle:
                encode_start = time.perf_counter()
                image.save(handle, format="JPEG", **self._save_options(context.request, metadata))
                context.encode_ms = (time.perf_counter() - encode_start) * 1000
                write_start = time.perf_counter()
                handle.flush()
                os.fsync(handle.fileno())
            commit_sibling(tmp_path, output)
            context.write_ms = (time.perf_counter() - write_start) * 1000
        except (OSError, ValueError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise WriteError(output, f"Failed to finalize JPEG: {exc}") from exc

    def batch_convert(
        self,
        inputs: Sequence[Path],
        policy: OutputPolicy,
        *,
        quality: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchConversionResult:
        coordinator = BatchCoordinator(self, self._config, access=self._access)
        handle = coordinator.start_batch(inputs, policy, quality, on_progress=on_progress)
        state = handle.wait()
        summary = BatchSummary(
            total=state.total,
            successes=state.succeeded,
            failures=len(state.failed),
        )
        return BatchConversionResult(
            batch_id=handle.batch_id,
            state=state,
            results=handle.results,
            summary=summary,
        )


__all__ = [
    "ConversionService",
    "ConversionRequest",
    "ConversionResult",
    "ConversionError",
    "BatchConversionResult",
]
