from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, Protocol

from .access import AccessLease, AccessProvider, FilesystemAccess, scoped_access
from .config import AppConfig
from .errors import ConversionError, EmptyBatchError, PermissionDeniedError
from .logging import BatchSummary, RunLogEntry, RunLogger, append_summary_row
from .models import BatchState, ConversionRequest, ConversionResult, FailedFile, OutputPolicy
from .utils import generate_run_id

ProgressCallback = Callable[[BatchState], None]


class Converter(Protocol):
    """Runs one Conversion Job.

    Failures are raised. Inside a batch the coordinator writes their run-log
    entry, so an implementation logs a failure only when ``batch_id`` is None.
    """

    def convert_file(
        self, request: ConversionRequest, *, batch_id: str | None = None
    ) -> ConversionResult:  # pragma: no cover - interface
        ...


class BatchAggregator:
    """Single writer of a batch's state.

    Every result goes through one re-entrant lock, and callbacks run while
    it is held. Progress events are therefore serialised and all of them
    precede the one completion event. Callbacks may read ``snapshot()``
    but must not wait on other workers.
    """

    def __init__(
        self,
        batch_id: str,
        total: int,
        *,
        on_progress: ProgressCallback | None = None,
        on_complete: ProgressCallback | None = None,
        lease: AccessLease | None = None,
    ) -> None:
        self.batch_id = batch_id
        self._lock = threading.RLock()
        self._state = BatchState(total=total, is_running=True)
        self._results: list[ConversionResult] = []
        self._finished = threading.Event()
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._lease = lease

    def snapshot(self) -> BatchState:
        with self._lock:
            return self._state.snapshot()

    @property
    def results(self) -> list[ConversionResult]:
        with self._lock:
            return list(self._results)

    @property
    def finished(self) -> threading.Event:
        return self._finished

    def record_success(self, result: ConversionResult) -> None:
        self._record(result=result)

    def record_failure(self, path: Path, error: ConversionError) -> None:
        self._record(failure=FailedFile(path=path, error=error))

    def _record(
        self, *, result: ConversionResult | None = None, failure: FailedFile | None = None
    ) -> None:
        with self._lock:
            if self._state.is_complete:
                raise RuntimeError(f"Batch {self.batch_id} already complete")
            self._state.completed += 1
            if failure is not None:
                self._state.failed.append(failure)
            if result is not None:
                self._results.append(result)
            last = self._state.completed == self._state.total
            try:
                if self._on_progress is not None:
                    self._on_progress(self._state.snapshot())
            finally:
                if last:
                    self._finish()

    def _finish(self) -> None:
        self._state.is_running = False
        self._state.is_complete = True
        try:
            if self._lease is not None:
                self._lease.release()
            if self._on_complete is not None:
                self._on_complete(self._state.snapshot())
        finally:
            self._finished.set()


class BatchHandle:
    """Read-only view of a running batch."""

    def __init__(self, aggregator: BatchAggregator, futures: list[Future[None]]) -> None:
        self._aggregator = aggregator
        self._futures = futures

    @property
    def batch_id(self) -> str:
        return self._aggregator.batch_id

    @property
    def results(self) -> list[ConversionResult]:
        return self._aggregator.results

    def snapshot(self) -> BatchState:
        return self._aggregator.snapshot()

    def progress(self) -> tuple[int, int]:
        state = self.snapshot()
        return state.completed, state.total

    def done(self) -> bool:
        return self._aggregator.finished.is_set()

    def wait(self, timeout: float | None = None) -> BatchState:
        if not self._aggregator.finished.wait(timeout):
            raise TimeoutError(f"Batch {self.batch_id} still running after {timeout}s")
        for future in self._futures:
            # Surfaces exceptions raised by progress or completion callbacks.
            future.result()
        return self.snapshot()


class BatchCoordinator:
    def __init__(
        self,
        converter: Converter,
        config: AppConfig | None = None,
        *,
        access: AccessProvider | None = None,
    ) -> None:
        self._converter = converter
        self._config = config or AppConfig()
        self._access = access or FilesystemAccess()
        self._logger = RunLogger(self._config.runtime.log_file)

    def start_batch(
        self,
        input_paths: Iterable[Path],
        policy: OutputPolicy,
        quality: float | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        on_complete: ProgressCallback | None = None,
    ) -> BatchHandle:
        paths = [Path(path) for path in input_paths]
        if not paths:
            raise EmptyBatchError()
        quality = self._config.runtime.quality if quality is None else quality
        requests = [ConversionRequest(path, policy.output_path_for(path), quality) for path in paths]

        lease: AccessLease | None = None
        if policy.directory is not None:
            lease = self._acquire_output_directory(policy.directory)
        try:
            return self._dispatch(requests, policy, lease, on_progress, on_complete)
        except BaseException:
            # A batch that fails to dispatch never reaches its completion event.
            if lease is not None:
                lease.release()
            raise

    def _dispatch(
        self,
        requests: list[ConversionRequest],
        policy: OutputPolicy,
        lease: AccessLease | None,
        on_progress: ProgressCallback | None,
        on_complete: ProgressCallback | None,
    ) -> BatchHandle:
        batch_id = generate_run_id("batch")

        def _complete(state: BatchState) -> None:
            self._write_batch_summary(batch_id, state)
            if on_complete is not None:
                on_complete(state)

        aggregator = BatchAggregator(
            batch_id,
            len(requests),
            on_progress=on_progress,
            on_complete=_complete,
            lease=lease,
        )
        workers = min(self._config.runtime.worker_count, len(requests))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="heic-worker")
        try:
            futures = [
                executor.submit(self._run_job, aggregator, request, policy) for request in requests
            ]
        finally:
            executor.shutdown(wait=False)
        return BatchHandle(aggregator, futures)

    def _acquire_output_directory(self, directory: Path) -> AccessLease:
        if not directory.is_dir():
            raise PermissionDeniedError(directory, "Output directory does not exist")
        lease = AccessLease(self._access, directory)
        if not lease.granted:
            raise PermissionDeniedError(directory, "Output directory is not writable")
        return lease

    def _run_job(
        self, aggregator: BatchAggregator, request: ConversionRequest, policy: OutputPolicy
    ) -> None:
        try:
            if policy.same_folder_as_source:
                result = self._convert_in_source_folder(aggregator.batch_id, request)
            else:
                result = self._converter.convert_file(request, batch_id=aggregator.batch_id)
        except ConversionError as exc:
            self._log_failure(aggregator.batch_id, request, exc)
            aggregator.record_failure(request.input_path, exc)
            return
        except Exception as exc:
            error = ConversionError(request.input_path, f"Unexpected error: {exc!r}")
            error.__cause__ = exc
            self._log_failure(aggregator.batch_id, request, error)
            aggregator.record_failure(request.input_path, error)
            return
        aggregator.record_success(result)

    def _convert_in_source_folder(self, batch_id: str, request: ConversionRequest) -> ConversionResult:
        folder = request.input_path.parent
        with scoped_access(self._access, folder) as granted:
            if not granted:
                raise PermissionDeniedError(folder, "Access to the source folder was not granted")
            return self._converter.convert_file(request, batch_id=batch_id)

    def _log_failure(self, batch_id: str, request: ConversionRequest, error: ConversionError) -> None:
        self._logger.append(
            RunLogEntry.failure(batch_id, request.input_path, request.output_path, error.code, error.cause)
        )

    def _write_batch_summary(self, batch_id: str, state: BatchState) -> None:
        summary_path = self._config.runtime.summary_csv
        if summary_path is None:
            return
        summary = BatchSummary(total=state.total, successes=state.succeeded, failures=len(state.failed))
        append_summary_row(summary_path, batch_id, summary)


__all__ = [
    "BatchAggregator",
    "BatchCoordinator",
    "BatchHandle",
    "Converter",
    "ProgressCallback",
]
