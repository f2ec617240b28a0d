from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest
from PIL import Image

from heic_converter import batch
from heic_converter.batch import BatchCoordinator
from heic_converter.config import AppConfig, RuntimeConfig
from heic_converter.core import ConversionService
from heic_converter.errors import DecodeError, EmptyBatchError, PermissionDeniedError
from heic_converter.models import BatchState, ConversionRequest, ConversionResult, OutputPolicy


def build_config(tmp_path: Path, parallelism: int = 2) -> AppConfig:
    runtime = RuntimeConfig(parallelism=parallelism)
    runtime.log_file = tmp_path / "log.jsonl"
    runtime.summary_csv = tmp_path / "summary.csv"
    return AppConfig(runtime=runtime)


class RecordingConverter:
    def __init__(self, fail: set[str] | None = None, barrier: threading.Barrier | None = None) -> None:
        self.fail = fail or set()
        self.barrier = barrier
        self.requests: list[ConversionRequest] = []
        self._lock = threading.Lock()

    def convert_file(self, request: ConversionRequest, *, batch_id: str | None = None) -> ConversionResult:
        with self._lock:
            self.requests.append(request)
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        if request.input_path.name in self.fail:
            raise DecodeError(request.input_path, "not a HEIC image")
        return ConversionResult(
            input_path=request.input_path,
            output_path=request.output_path,
            orientation=1,
            size_bytes=0,
            summary="ok",
        )


class RecordingAccess:
    def __init__(self, deny: set[Path] | None = None) -> None:
        self.deny = deny or set()
        self.acquired: list[Path] = []
        self.released: list[Path] = []
        self._lock = threading.Lock()

    def acquire(self, path: Path) -> bool:
        if path in self.deny:
            return False
        with self._lock:
            self.acquired.append(path)
        return True

    def release(self, path: Path) -> None:
        with self._lock:
            self.released.append(path)


def test_empty_batch_is_rejected_without_jobs(tmp_path: Path) -> None:
    converter = RecordingConverter()
    events: list[BatchState] = []
    coordinator = BatchCoordinator(converter, build_config(tmp_path))
    with pytest.raises(EmptyBatchError):
        coordinator.start_batch([], OutputPolicy.same_folder(), on_progress=events.append)
    assert converter.requests == []
    assert events == []


def test_missing_output_directory_is_rejected_before_dispatch(tmp_path: Path) -> None:
    converter = RecordingConverter()
    coordinator = BatchCoordinator(converter, build_config(tmp_path))
    with pytest.raises(PermissionDeniedError) as exc:
        coordinator.start_batch([tmp_path / "a.heic"], OutputPolicy.fixed(tmp_path / "nope"))
    assert exc.value.path == tmp_path / "nope"
    assert converter.requests == []


def test_denied_output_directory_is_never_released(tmp_path: Path) -> None:
    access = RecordingAccess(deny={tmp_path})
    coordinator = BatchCoordinator(RecordingConverter(), build_config(tmp_path), access=access)
    with pytest.raises(PermissionDeniedError):
        coordinator.start_batch([tmp_path / "a.heic"], OutputPolicy.fixed(tmp_path))
    assert access.released == []


def test_fixed_directory_access_acquired_once_and_released(tmp_path: Path) -> None:
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    access = RecordingAccess()
    converter = RecordingConverter(fail={"b.heic"})
    coordinator = BatchCoordinator(converter, build_config(tmp_path), access=access)
    inputs = [tmp_path / "src" / name for name in ("a.heic", "b.heic", "c.heic")]
    state = coordinator.start_batch(inputs, OutputPolicy.fixed(out_dir)).wait(timeout=10)
    assert state.completed == 3
    assert access.acquired == [out_dir]
    assert access.released == [out_dir]
    assert {r.output_path for r in converter.requests} == {out_dir / "a.jpg", out_dir / "b.jpg", out_dir / "c.jpg"}


def test_fixed_directory_released_when_dispatch_fails(tmp_path: Path, monkeypatch) -> None:
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    access = RecordingAccess()
    converter = RecordingConverter()

    def _fail(prefix: str) -> str:
        raise RuntimeError("no batch id")

    monkeypatch.setattr(batch, "generate_run_id", _fail)
    coordinator = BatchCoordinator(converter, build_config(tmp_path), access=access)
    with pytest.raises(RuntimeError):
        coordinator.start_batch([tmp_path / "a.heic"], OutputPolicy.fixed(out_dir))
    assert access.acquired == [out_dir]
    assert access.released == [out_dir]
    assert converter.requests == []


def test_same_folder_access_is_paired_per_job(tmp_path: Path) -> None:
    allowed = tmp_path / "allowed"
    denied = tmp_path / "denied"
    access = RecordingAccess(deny={denied})
    converter = RecordingConverter(fail={"broken.heic"})
    coordinator = BatchCoordinator(converter, build_config(tmp_path), access=access)
    inputs = [allowed / "ok.heic", allowed / "broken.heic", denied / "x.heic"]
    state = coordinator.start_batch(inputs, OutputPolicy.same_folder()).wait(timeout=10)
    assert state.completed == 3
    assert sorted(access.acquired) == sorted(access.released) == [allowed, allowed]
    reasons = {failure.path.name: failure.error.code for failure in state.failed}
    assert reasons == {"broken.heic": "DECODE", "x.heic": "PERMISSION"}


def test_completion_fires_exactly_once_when_jobs_finish_together(tmp_path: Path) -> None:
    total = 8
    converter = RecordingConverter(barrier=threading.Barrier(total))
    progress: list[int] = []
    completions: list[BatchState] = []
    order: list[str] = []

    def on_progress(state: BatchState) -> None:
        progress.append(state.completed)
        order.append("progress")

    def on_complete(state: BatchState) -> None:
        completions.append(state)
        order.append("complete")

    coordinator = BatchCoordinator(converter, build_config(tmp_path, parallelism=total))
    inputs = [tmp_path / f"{index}.heic" for index in range(total)]
    handle = coordinator.start_batch(
        inputs, OutputPolicy.same_folder(), on_progress=on_progress, on_complete=on_complete
    )
    state = handle.wait(timeout=10)
    assert len(completions) == 1
    assert completions[0].completed == total
    assert completions[0].is_complete and not completions[0].is_running
    assert sorted(progress) == list(range(1, total + 1))
    assert order[-1] == "complete"
    assert order.count("progress") == total
    assert state.completed == state.total == total
    assert handle.done()


def test_failures_do_not_abort_batch(tmp_path: Path) -> None:
    converter = RecordingConverter(fail={"1.heic", "3.heic"})
    coordinator = BatchCoordinator(converter, build_config(tmp_path))
    inputs = [tmp_path / f"{index}.heic" for index in range(5)]
    handle = coordinator.start_batch(inputs, OutputPolicy.same_folder())
    state = handle.wait(timeout=10)
    assert state.completed == 5
    assert state.succeeded == 3
    assert sorted(f.path.name for f in state.failed) == ["1.heic", "3.heic"]
    assert len(handle.results) == 3
    assert handle.progress() == (5, 5)
    assert state.progress == 1.0


def test_unexpected_exception_is_recorded(tmp_path: Path) -> None:
    class ExplodingConverter(RecordingConverter):
        def convert_file(self, request, *, batch_id=None):
            raise KeyError("boom")

    coordinator = BatchCoordinator(ExplodingConverter(), build_config(tmp_path))
    state = coordinator.start_batch([tmp_path / "a.heic"], OutputPolicy.same_folder()).wait(timeout=10)
    assert state.is_complete
    assert state.failed[0].error.code == "UNKNOWN"
    assert isinstance(state.failed[0].error.__cause__, KeyError)


def test_partial_failure_with_real_files(tmp_path: Path, make_heic) -> None:
    sources = [make_heic(tmp_path / "in" / f"photo{index}.heic") for index in range(4)]
    corrupt = tmp_path / "in" / "corrupt.heic"
    corrupt.write_bytes(b"this is not an image")
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    config = build_config(tmp_path)
    coordinator = BatchCoordinator(ConversionService(config), config)
    state = coordinator.start_batch([*sources[:2], corrupt, *sources[2:]], OutputPolicy.fixed(out_dir)).wait(timeout=60)
    assert state.completed == 5
    assert [failure.path for failure in state.failed] == [corrupt]
    for source in sources:
        with Image.open(out_dir / f"{source.stem}.jpg") as converted:
            assert converted.format == "JPEG"
    assert not (out_dir / "corrupt.jpg").exists()
    summary_rows = config.runtime.summary_csv.read_text(encoding="utf-8").splitlines()
    assert summary_rows[0] == "batch_id,timestamp,total,successes,failures"
    assert summary_rows[1].endswith(",5,4,1")


def test_same_folder_outputs_land_beside_sources(tmp_path: Path, make_heic) -> None:
    first = make_heic(tmp_path / "one" / "a.heic")
    second = make_heic(tmp_path / "two" / "b.heic")
    config = build_config(tmp_path)
    coordinator = BatchCoordinator(ConversionService(config), config)
    state = coordinator.start_batch([first, second], OutputPolicy.same_folder()).wait(timeout=60)
    assert state.failed == []
    assert (tmp_path / "one" / "a.jpg").exists()
    assert (tmp_path / "two" / "b.jpg").exists()
    assert not (tmp_path / "one" / "b.jpg").exists()


def test_job_failures_reach_the_run_log_once(tmp_path: Path, make_heic) -> None:
    config = build_config(tmp_path)
    fake = BatchCoordinator(RecordingConverter(fail={"b.heic"}), config)
    fake.start_batch([tmp_path / "a.heic", tmp_path / "b.heic"], OutputPolicy.same_folder()).wait(timeout=10)

    corrupt = tmp_path / "in" / "corrupt.heic"
    corrupt.parent.mkdir()
    corrupt.write_bytes(b"this is not an image")
    real = BatchCoordinator(ConversionService(config), config)
    real.start_batch([make_heic(tmp_path / "in" / "ok.heic"), corrupt], OutputPolicy.same_folder()).wait(timeout=60)

    entries = [json.loads(line) for line in config.runtime.log_file.read_text(encoding="utf-8").splitlines()]
    failures = [(Path(entry["source"]).name, entry["error_code"]) for entry in entries if entry["status"] == "failure"]
    assert failures == [("b.heic", "DECODE"), ("corrupt.heic", "DECODE")]
