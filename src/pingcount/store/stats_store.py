"""StatsStore: owns every estimator and filter, and their persistence.

State:
    global scope   one all-time HyperLogLog + one ScalableBloomFilter
    day buckets    TimeBucket(all_users, new_users, seen) per UTC day
    week / month   TimeBucket built by rollup() from day buckets

Locking: one ReadWriteLock per scope. record() takes the global write
lock and then the day write lock, always in that order, so the
"new globally?" test and the insert into the global filter are one
atomic step. Readers never see live objects: every *_snapshot() method
copies under a read lock and returns the copy.

Persistence is copy-then-write. record() only marks scopes dirty;
flush() serializes the dirty scopes under their read locks, releases
them, and then talks to the backend. A failed write re-marks the scope
dirty and raises PersistenceError; at most the unflushed updates are
lost on a crash.
"""
from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from pingcount.analytics.bloom import ScalableBloomFilter
from pingcount.analytics.digest import DEFAULT_HASHER, Hasher
from pingcount.analytics.hyperloglog import HyperLogLog
from pingcount.concurrency.rwlock import ReadWriteLock
from pingcount.domain.buckets import BucketKey, Granularity
from pingcount.domain.types import Identifier
from pingcount.errors import ConfigurationError, PersistenceError
from pingcount.store.base import SnapshotBackend

if TYPE_CHECKING:
    from pingcount.config import Settings

log = logging.getLogger(__name__)

GLOBAL_ESTIMATOR_KEY = "global/estimator"
GLOBAL_FILTER_KEY = "global/filter"


def _lp(data: bytes) -> bytes:
    """Length-prefix a blob with a 4-byte big-endian length."""
    return struct.pack("!I", len(data)) + data


def _split_lp(data: bytes) -> list[bytes]:
    parts: list[bytes] = []
    offset = 0
    while offset < len(data):
        if offset + 4 > len(data):
            raise ValueError("Truncated length-prefixed snapshot")
        (size,) = struct.unpack_from("!I", data, offset)
        offset += 4
        part = data[offset:offset + size]
        if len(part) != size:
            raise ValueError("Truncated length-prefixed snapshot")
        parts.append(part)
        offset += size
    return parts


class TimeBucket:
    """The (all users, new users) estimator pair for one calendar bucket.

    Day buckets also carry `seen`, a membership filter of the identifiers
    counted that day. Week and month buckets are pure merge results and
    leave it as None.
    """

    __slots__ = ("all_users", "new_users", "seen")

    def __init__(
        self,
        all_users: HyperLogLog,
        new_users: HyperLogLog,
        seen: ScalableBloomFilter | None = None,
    ) -> None:
        self.all_users = all_users
        self.new_users = new_users
        self.seen = seen

    @classmethod
    def empty(
        cls, precision: int, hasher: Hasher, seen: ScalableBloomFilter | None = None
    ) -> TimeBucket:
        return cls(HyperLogLog(precision, hasher), HyperLogLog(precision, hasher), seen)

    def merge(self, other: TimeBucket) -> None:
        """Union the estimators. Filters are per day and never merged."""
        self.all_users.merge(other.all_users)
        self.new_users.merge(other.new_users)

    def copy(self, with_filter: bool = True) -> TimeBucket:
        seen = self.seen.copy() if with_filter and self.seen is not None else None
        return TimeBucket(self.all_users.copy(), self.new_users.copy(), seen)

    def to_bytes(self) -> bytes:
        out = _lp(self.all_users.to_bytes()) + _lp(self.new_users.to_bytes())
        if self.seen is not None:
            out += _lp(self.seen.to_bytes())
        return out

    @classmethod
    def from_bytes(cls, data: bytes, hasher: Hasher | None = None) -> TimeBucket:
        parts = _split_lp(data)
        if len(parts) not in (2, 3):
            raise ValueError(f"Bucket snapshot has {len(parts)} parts, expected 2 or 3")
        seen = ScalableBloomFilter.from_bytes(parts[2], hasher) if len(parts) == 3 else None
        return cls(
            HyperLogLog.from_bytes(parts[0], hasher),
            HyperLogLog.from_bytes(parts[1], hasher),
            seen,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeBucket):
            return NotImplemented
        if (self.seen is None) != (other.seen is None):
            return False
        if self.seen is not None and self.seen.to_bytes() != other.seen.to_bytes():
            return False
        return self.all_users == other.all_users and self.new_users == other.new_users

    __hash__ = None


@dataclass(frozen=True, slots=True)
class RecordOutcome:
    new_user: bool
    new_today: bool
    dau: int
    all_time: int


class StatsStore:
    """All mutable stats state, behind per-scope locks.

    Args:
        backend: Where snapshots are persisted.
        precision: HyperLogLog precision for every estimator.
        hasher: Digest shared by every estimator and filter.
        filter_capacity: First-tier capacity of the global filter.
        filter_error_rate: Target false positive rate of every filter.
        day_filter_capacity: First-tier capacity of each day's filter.
    """

    def __init__(
        self,
        backend: SnapshotBackend,
        precision: int = 10,
        hasher: Hasher = DEFAULT_HASHER,
        filter_capacity: int = 100_000,
        filter_error_rate: float = 0.01,
        day_filter_capacity: int = 10_000,
    ) -> None:
        self._backend = backend
        self._precision = precision
        self._hasher = hasher
        self._global_hll = HyperLogLog(precision, hasher)
        self._global_filter = ScalableBloomFilter(
            initial_capacity=filter_capacity,
            error_rate=filter_error_rate,
            hasher=hasher,
        )
        self._filter_error_rate = filter_error_rate
        self._day_filter_capacity = day_filter_capacity
        self._global_lock = ReadWriteLock()
        self._buckets: dict[BucketKey, TimeBucket] = {}
        self._bucket_locks: dict[BucketKey, ReadWriteLock] = {}
        # guards membership of _buckets / _bucket_locks, not their contents
        self._registry_lock = threading.Lock()
        self._dirty: set[str] = set()
        self._dirty_periods: set[BucketKey] = set()
        self._dirty_lock = threading.Lock()
        self._persist_failures = 0

    @classmethod
    def open(cls, backend: SnapshotBackend, settings: Settings) -> StatsStore:
        """Build a store from Settings and load whatever the backend holds."""
        store = cls(
            backend,
            precision=settings.precision,
            hasher=settings.hasher,
            filter_capacity=settings.filter_capacity,
            filter_error_rate=settings.filter_error_rate,
            day_filter_capacity=settings.day_filter_capacity,
        )
        store.load()
        return store

    @property
    def precision(self) -> int:
        return self._precision

    @property
    def hasher(self) -> Hasher:
        return self._hasher

    @property
    def persist_failures(self) -> int:
        """Number of flush() calls that hit a backend error."""
        return self._persist_failures

    # -- loading ---------------------------------------------------------

    def load(self) -> int:
        """Replace in-memory state with the backend's snapshots.

        Meant for startup. Raises ConfigurationError if any snapshot is
        corrupt or was written with a different precision or hasher.
        Returns the number of snapshots loaded.
        """
        loaded = 0
        for key in sorted(self._backend.keys()):
            data = self._backend.load(key)
            if data is None:
                continue
            try:
                self._load_one(key, data)
            except ConfigurationError:
                raise
            except ValueError as exc:
                raise ConfigurationError(f"Corrupt snapshot {key!r}: {exc}") from exc
            loaded += 1
        log.info(
            "Loaded %d snapshots (%d buckets), all-time estimate %d",
            loaded, len(self._buckets), self._global_hll.count(),
        )
        return loaded

    def _load_one(self, key: str, data: bytes) -> None:
        if key == GLOBAL_ESTIMATOR_KEY:
            hll = HyperLogLog.from_bytes(data, self._hasher)
            self._check_precision(key, hll)
            with self._global_lock.write():
                self._global_hll = hll
        elif key == GLOBAL_FILTER_KEY:
            flt = ScalableBloomFilter.from_bytes(data, self._hasher)
            with self._global_lock.write():
                self._global_filter = flt
        else:
            bucket_key = BucketKey.from_storage_key(key)
            bucket = TimeBucket.from_bytes(data, self._hasher)
            self._check_precision(key, bucket.all_users)
            if bucket_key.granularity is Granularity.DAY and bucket.seen is None:
                bucket.seen = self._new_day_filter()
            with self._lock_for(bucket_key).write():
                self._buckets[bucket_key] = bucket

    def _check_precision(self, key: str, hll: HyperLogLog) -> None:
        if hll.precision != self._precision:
            raise ConfigurationError(
                f"Snapshot {key!r} has precision {hll.precision}, "
                f"configured precision is {self._precision}"
            )

    # -- write path ------------------------------------------------------

    def _lock_for(self, key: BucketKey) -> ReadWriteLock:
        with self._registry_lock:
            lock = self._bucket_locks.get(key)
            if lock is None:
                lock = self._bucket_locks[key] = ReadWriteLock()
            return lock

    def _new_day_filter(self) -> ScalableBloomFilter:
        return ScalableBloomFilter(
            initial_capacity=self._day_filter_capacity,
            error_rate=self._filter_error_rate,
            hasher=self._hasher,
        )

    def record(self, identifier: Identifier, day: BucketKey) -> RecordOutcome:
        """Count one accepted ping for `identifier` on `day`.

        A visitor already in the day's filter skips the day estimator
        update. A visitor new to the global filter is always counted, so a
        day filter false positive cannot hide a first visit.
        """
        if day.granularity is not Granularity.DAY:
            raise ValueError(f"record() needs a day bucket, got {day.label}")

        with self._global_lock.write():
            new_user = not self._global_filter.test(identifier)
            if new_user:
                self._global_filter.add(identifier)
            self._global_hll.add(identifier)
            all_time = self._global_hll.count()

        with self._lock_for(day).write():
            bucket = self._buckets.get(day)
            if bucket is None:
                bucket = self._buckets[day] = TimeBucket.empty(
                    self._precision, self._hasher, self._new_day_filter()
                )
            elif bucket.seen is None:
                bucket.seen = self._new_day_filter()
            new_today = not bucket.seen.add(identifier) or new_user
            if new_today:
                bucket.all_users.add(identifier)
            if new_user:
                bucket.new_users.add(identifier)
            dau = bucket.all_users.count()

        with self._dirty_lock:
            self._dirty.add(GLOBAL_ESTIMATOR_KEY)
            if new_user:
                self._dirty.add(GLOBAL_FILTER_KEY)
            if new_today:
                self._dirty.add(day.storage_key)
                self._dirty_periods.update(day.parents())

        return RecordOutcome(new_user=new_user, new_today=new_today, dau=dau, all_time=all_time)

    # -- read path (copies only) -----------------------------------------

    def bucket_snapshot(self, key: BucketKey, with_filter: bool = True) -> TimeBucket | None:
        with self._registry_lock:
            if key not in self._buckets:
                return None
        with self._lock_for(key).read():
            bucket = self._buckets.get(key)
            return bucket.copy(with_filter) if bucket is not None else None

    def day_snapshot(self, day: BucketKey, with_filter: bool = True) -> TimeBucket | None:
        """bucket_snapshot() restricted to day buckets."""
        if day.granularity is not Granularity.DAY:
            raise ValueError(f"day_snapshot() needs a day bucket, got {day.label}")
        return self.bucket_snapshot(day, with_filter)

    def global_snapshot(self) -> tuple[HyperLogLog, ScalableBloomFilter]:
        with self._global_lock.read():
            return self._global_hll.copy(), self._global_filter.copy()

    def global_estimator_snapshot(self) -> HyperLogLog:
        with self._global_lock.read():
            return self._global_hll.copy()

    def buckets(self, granularity: Granularity) -> list[BucketKey]:
        """Stored bucket keys of one granularity, oldest first."""
        with self._registry_lock:
            return sorted(k for k in self._buckets if k.granularity is granularity)

    def days(self) -> list[BucketKey]:
        return self.buckets(Granularity.DAY)

    def empty_estimator(self) -> HyperLogLog:
        return HyperLogLog(self._precision, self._hasher)

    def seen_before(self, identifier: Identifier) -> bool:
        """Global membership test, for diagnostics. Never mutates."""
        with self._global_lock.read():
            return self._global_filter.test(identifier)

    # -- rollup ----------------------------------------------------------

    def rollup(self, periods: Iterable[BucketKey] | None = None) -> list[BucketKey]:
        """Rebuild week/month buckets from day buckets.

        With no argument, rebuilds the periods touched since the last
        rollup. Returns the periods written. Each period is a fresh merge
        of copies of its days, so re-running is harmless.
        """
        if periods is None:
            with self._dirty_lock:
                targets = sorted(self._dirty_periods, key=lambda k: k.storage_key)
                self._dirty_periods.clear()
        else:
            targets = list(periods)

        written: list[BucketKey] = []
        for period in targets:
            if period.granularity is Granularity.DAY:
                raise ValueError(f"Cannot roll up into a day bucket: {period.label}")
            merged = TimeBucket.empty(self._precision, self._hasher)
            found = False
            for day in period.days():
                snap = self.bucket_snapshot(day, with_filter=False)
                if snap is not None:
                    merged.merge(snap)
                    found = True
            if not found:
                continue
            with self._lock_for(period).write():
                self._buckets[period] = merged
            with self._dirty_lock:
                self._dirty.add(period.storage_key)
            written.append(period)
        if written:
            log.debug("Rolled up %d periods", len(written))
        return written

    # -- persistence -----------------------------------------------------

    @property
    def dirty_count(self) -> int:
        with self._dirty_lock:
            return len(self._dirty)

    def _serialize(self, key: str) -> bytes | None:
        if key == GLOBAL_ESTIMATOR_KEY:
            with self._global_lock.read():
                return self._global_hll.to_bytes()
        if key == GLOBAL_FILTER_KEY:
            with self._global_lock.read():
                return self._global_filter.to_bytes()
        bucket_key = BucketKey.from_storage_key(key)
        with self._lock_for(bucket_key).read():
            bucket = self._buckets.get(bucket_key)
            return bucket.to_bytes() if bucket is not None else None

    def flush(self) -> int:
        """Write dirty scopes to the backend. Returns how many were written.

        No store lock is held while the backend runs. Raises
        PersistenceError if any write fails; those scopes stay dirty and
        are retried on the next flush.
        """
        with self._dirty_lock:
            keys = sorted(self._dirty)
            self._dirty.clear()
        if not keys:
            return 0

        blobs = [(key, self._serialize(key)) for key in keys]

        written = 0
        failed: list[str] = []
        last_error: OSError | None = None
        for key, blob in blobs:
            if blob is None:
                continue
            try:
                self._backend.store(key, blob)
                written += 1
            except OSError as exc:
                failed.append(key)
                last_error = exc

        if failed:
            with self._dirty_lock:
                self._dirty.update(failed)
            self._persist_failures += 1
            raise PersistenceError(
                f"Failed to persist {len(failed)} of {len(keys)} snapshots: {last_error}"
            ) from last_error
        return written
