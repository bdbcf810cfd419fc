"""Stats state and its persistence.

StatsStore owns the global scope and every time bucket; SnapshotBackend
is the key -> bytes storage it persists into.
"""
from pingcount.store.backends import DirectoryBackend, MemoryBackend
from pingcount.store.base import SnapshotBackend
from pingcount.store.stats_store import (
    GLOBAL_ESTIMATOR_KEY,
    GLOBAL_FILTER_KEY,
    RecordOutcome,
    StatsStore,
    TimeBucket,
)

__all__ = [
    "GLOBAL_ESTIMATOR_KEY",
    "GLOBAL_FILTER_KEY",
    "DirectoryBackend",
    "MemoryBackend",
    "RecordOutcome",
    "SnapshotBackend",
    "StatsStore",
    "TimeBucket",
]
