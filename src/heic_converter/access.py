"""Scoped acquisition of filesystem access for input and output locations.

A provider grants access to a directory before it is used. ``scoped_access``
pairs every successful grant with exactly one release, including on error
exits. A grant that was refused is never released.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol


class AccessProvider(Protocol):
    def acquire(self, path: Path) -> bool:  # pragma: no cover - interface
        ...

    def release(self, path: Path) -> None:  # pragma: no cover - interface
        ...


class FilesystemAccess:
    """Grants access when the directory exists and is writable by this process."""

    def acquire(self, path: Path) -> bool:
        return path.is_dir() and os.access(path, os.W_OK | os.X_OK)

    def release(self, path: Path) -> None:
        return None


@contextmanager
def scoped_access(provider: AccessProvider, path: Path) -> Iterator[bool]:
    granted = provider.acquire(path)
    try:
        yield granted
    finally:
        if granted:
            provider.release(path)


class AccessLease:
    """A grant held across threads, released at most once."""

    def __init__(self, provider: AccessProvider, path: Path) -> None:
        self._provider = provider
        self._path = path
        self._granted = provider.acquire(path)

    @property
    def granted(self) -> bool:
        return self._granted

    def release(self) -> None:
        if self._granted:
            self._granted = False
            self._provider.release(self._path)


__all__ = ["AccessLease", "AccessProvider", "FilesystemAccess", "scoped_access"]
