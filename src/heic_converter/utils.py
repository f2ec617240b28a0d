from __future__ import annotations

import hashlib
import os
import tempfile
import time
from collections.abc import Iterable
from pathlib import Path
from typing import IO, Iterator


def generate_run_id(prefix: str = "batch") -> str:
    epoch_ms = int(time.time() * 1000)
    random_bits = hashlib.sha256(os.urandom(16)).hexdigest()[:8]
    return f"{prefix}-{epoch_ms}-{random_bits}"


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding=encoding) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
    os.replace(tmp.name, path)


def temporary_sibling(path: Path) -> IO[bytes]:
    """Open a hidden temporary file next to *path* for binary writing.

    The directory is not created; a missing or read-only parent raises
    ``OSError``.
    """

    return tempfile.NamedTemporaryFile(
        "wb",
        delete=False,
        dir=path.parent,
        prefix=f".{path.stem}.",
        suffix=f"{path.suffix}.part",
    )


def commit_sibling(tmp_path: Path, path: Path) -> None:
    os.replace(tmp_path, path)


def iter_heic_files(paths: Iterable[Path], extensions: Iterable[str]) -> Iterator[Path]:
    accepted = {suffix.lower() for suffix in extensions}
    seen: set[Path] = set()
    for path in paths:
        if path.is_file():
            candidates: Iterable[Path] = [path]
        elif path.is_dir():
            candidates = sorted(p for p in path.rglob("*") if p.is_file())
        else:
            continue
        for candidate in candidates:
            if candidate.suffix.lower() not in accepted or candidate in seen:
                continue
            seen.add(candidate)
            yield candidate


def size_within_limit(path: Path, max_mb: int) -> bool:
    return path.stat().st_size <= max_mb * 1024 * 1024
