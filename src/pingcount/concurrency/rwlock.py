"""Read-write lock guarding one mutable stats scope.

Each scope (the global estimator + filter, and every time bucket) owns
one of these. Ingestion takes the write lock while it updates registers
and filter bits, so no reader can ever see half of a pointwise max.
The read path only takes the read lock long enough to copy the scope,
then computes on the copy with no lock held.

Writer preference: once an ingest is waiting, new snapshot readers
block. Under a steady stream of stats queries the write path still makes
progress.

Usage:
    lock = ReadWriteLock()

    with lock.read():
        snapshot = estimator.copy()

    with lock.write():
        estimator.add(identifier)
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """Multiple concurrent readers OR one writer, writers preferred."""

    __slots__ = ("_cond", "_active_readers", "_pending_writers", "_writing")

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._active_readers = 0
        self._pending_writers = 0
        self._writing = False

    def _can_read(self) -> bool:
        return not self._writing and self._pending_writers == 0

    def _can_write(self) -> bool:
        return not self._writing and self._active_readers == 0

    def acquire_read(self) -> None:
        with self._cond:
            self._cond.wait_for(self._can_read)
            self._active_readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._active_readers -= 1
            if not self._active_readers:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._pending_writers += 1
            try:
                self._cond.wait_for(self._can_write)
            finally:
                self._pending_writers -= 1
            self._writing = True

    def release_write(self) -> None:
        with self._cond:
            self._writing = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
