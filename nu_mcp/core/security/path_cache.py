"""Path cache: remembers path-like words that are not filesystem paths.

Words such as ``/metrics`` or ``/api/v1/pods`` look like absolute paths but
name API endpoints. Once a word has been shown to lie outside every sandbox
root *and* not exist on disk, it is remembered here so later validations skip
resolving it again.

Lifecycle: one instance per server, empty at start, never persisted and never
expired (sandbox roots are fixed for the life of the process).
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """Many concurrent readers or one writer; writers are not starved."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class PathCache:
    """Concurrency-safe set of words known not to be filesystem paths."""

    def __init__(self) -> None:
        self._not_filesystem_paths: set[str] = set()
        self._lock = ReadWriteLock()

    def contains(self, word: str) -> bool:
        with self._lock.read():
            return word in self._not_filesystem_paths

    def remember(self, word: str) -> None:
        with self._lock.write():
            self._not_filesystem_paths.add(word)

    def is_empty(self) -> bool:
        return len(self) == 0

    def __contains__(self, word: object) -> bool:
        return isinstance(word, str) and self.contains(word)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._not_filesystem_paths)
