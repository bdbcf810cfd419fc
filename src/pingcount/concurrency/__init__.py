"""Thread-safety primitives for the stats core.

  - ReadWriteLock: one per stats scope; writers update, readers copy
  - ReplayGuard: nonce window with atomic check-and-insert
"""
from pingcount.concurrency.replay_guard import ReplayGuard
from pingcount.concurrency.rwlock import ReadWriteLock

__all__ = [
    "ReadWriteLock",
    "ReplayGuard",
]
