from __future__ import annotations

import csv
import json
import threading
import time
from dataclasses import asdict, dataclass, field
from io import StringIO
from pathlib import Path
from typing import Any

from .utils import atomic_write


@dataclass(slots=True)
class StageTimings:
    read_ms: float
    decode_ms: float
    encode_ms: float
    write_ms: float


@dataclass(slots=True)
class RunLogEntry:
    batch_id: str
    source: str
    status: str
    output_path: str
    error_code: str | None
    error: str | None
    orientation: int
    size_bytes: int
    timings: StageTimings
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timings"] = asdict(self.timings)
        return payload

    @classmethod
    def failure(
        cls,
        batch_id: str,
        source: Path,
        output_path: Path | None,
        error_code: str,
        error: str,
    ) -> RunLogEntry:
        size_bytes = source.stat().st_size if source.is_file() else 0
        return cls(
            batch_id=batch_id,
            source=str(source),
            status="failure",
            output_path=str(output_path) if output_path else "",
            error_code=error_code,
            error=error,
            orientation=1,
            size_bytes=size_bytes,
            timings=StageTimings(0, 0, 0, 0),
        )


class RunLogger:
    """Append-only JSONL log shared by every worker thread.

    With no ``log_file`` the entries are dropped.
    """

    # One lock for every logger so workers never interleave lines.
    _lock = threading.Lock()

    def __init__(self, log_file: Path | None) -> None:
        self._log_file = log_file

    def append(self, entry: RunLogEntry) -> None:
        if self._log_file is None:
            return
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._lock:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with self._log_file.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")


@dataclass(slots=True)
class BatchSummary:
    timestamp: float = field(default_factory=time.time)
    total: int = 0
    successes: int = 0
    failures: int = 0

    def as_row(self, batch_id: str) -> list[str]:
        return [
            batch_id,
            time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp)),
            str(self.total),
            str(self.successes),
            str(self.failures),
        ]


SUMMARY_HEADER = ["batch_id", "timestamp", "total", "successes", "failures"]

# Serialises the read and rewrite of a summary CSV.
_SUMMARY_LOCK = threading.Lock()


def write_summary_csv(path: Path, header: list[str], rows: list[list[str]]) -> None:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)
    atomic_write(path, buffer.getvalue())


def append_summary_row(path: Path, batch_id: str, summary: BatchSummary) -> None:
    with _SUMMARY_LOCK:
        header = SUMMARY_HEADER
        rows: list[list[str]] = []
        if path.exists():
            with path.open("r", encoding="utf-8", newline="") as handle:
                reader = list(csv.reader(handle))
            if reader:
                header = reader[0]
                rows = reader[1:]
        rows.append(summary.as_row(batch_id))
        write_summary_csv(path, header, rows)
