"""Snapshot backends: in-memory and one-file-per-key directory."""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from pingcount.store.base import SnapshotBackend

log = logging.getLogger(__name__)

_SUFFIX = ".bin"


class MemoryBackend(SnapshotBackend):
    """Dict-backed backend for tests and throwaway runs."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def store(self, key: str, data: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(data)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class DirectoryBackend(SnapshotBackend):
    """Stores each key as <root>/<key>.bin.

    Writes go to a temp file in the same directory and are moved into
    place with os.replace(), so a crash mid-write leaves the previous
    snapshot intact rather than a truncated one.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        parts = key.split("/")
        if not key or any(p in ("", ".", "..") for p in parts):
            raise ValueError(f"Invalid snapshot key: {key!r}")
        return self._root.joinpath(*parts).with_name(parts[-1] + _SUFFIX)

    def load(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def store(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    def keys(self) -> list[str]:
        out: list[str] = []
        for path in self._root.rglob("*" + _SUFFIX):
            if path.name.startswith(".tmp-"):
                continue
            rel = path.relative_to(self._root).with_suffix("")
            out.append(rel.as_posix())
        log.debug("Found %d snapshots under %s", len(out), self._root)
        return out
