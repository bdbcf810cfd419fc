"""Abstract key -> bytes snapshot backend.

The stats core only needs three operations from storage. MemoryBackend
and DirectoryBackend implement them; anything else (object storage, a
key-value database) can be swapped in without touching StatsStore.

Keys are short slash-separated strings such as "global/estimator" or
"day/2026-10-19". Values are opaque snapshot bytes. Backends should raise
OSError (or a subclass) on I/O failure; StatsStore.flush() turns that
into a PersistenceError.
"""
from __future__ import annotations

from abc import ABC, abstractmethod


class SnapshotBackend(ABC):
    """Interface every snapshot backend implements."""

    @abstractmethod
    def load(self, key: str) -> bytes | None:
        """Return the stored bytes, or None if the key was never stored."""
        ...

    @abstractmethod
    def store(self, key: str, data: bytes) -> None:
        """Replace the value for key. Last writer wins."""
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        """All stored keys, in no particular order."""
        ...
