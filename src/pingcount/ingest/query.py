"""Read path: windowed uniques and cohort retention.

Every number here is computed on copies taken from the StatsStore, never
on the live estimators, so a concurrent ingest cannot tear a merge in
progress. WAU and MAU are unions of the trailing 7 / 30 daily
estimators; days with no pings simply contribute nothing.

Retention for offset n: the cohort is the "new users" estimator of the
day n days before today, the returning set is today's "all users"
estimator. When either day has no bucket the record is None; a missing
bucket is not the same thing as a cohort of zero.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from pingcount.analytics.hyperloglog import HyperLogLog
from pingcount.analytics.retention import RetentionEstimator, RetentionRecord
from pingcount.domain.buckets import BucketKey, trailing_days, utc_date
from pingcount.domain.types import Clock
from pingcount.errors import ValidationError
from pingcount.store.stats_store import StatsStore, TimeBucket

RETENTION_OFFSETS: dict[str, int] = {"d1": 1, "d7": 7, "d30": 30}
WAU_DAYS = 7
MAU_DAYS = 30
MAX_WINDOW_DAYS = 366


@dataclass(frozen=True, slots=True)
class DayCount:
    date: str
    dau: int
    new_users: int

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "dau": self.dau, "newUsers": self.new_users}


@dataclass(frozen=True, slots=True)
class SeriesPoint:
    date: str
    dau: int
    wau: int
    mau: int

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "dau": self.dau, "wau": self.wau, "mau": self.mau}


@dataclass(frozen=True, slots=True)
class StatsReport:
    all_time: int
    wau: int
    mau: int
    recent_days: list[DayCount] = field(default_factory=list)
    retention: dict[str, RetentionRecord | None] = field(default_factory=dict)
    this_week: int | None = None
    this_month: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allTime": self.all_time,
            "wau": self.wau,
            "mau": self.mau,
            "recentDays": [d.to_dict() for d in self.recent_days],
            "retention": {
                k: (r.to_dict() if r is not None else None)
                for k, r in self.retention.items()
            },
            "thisWeek": self.this_week,
            "thisMonth": self.this_month,
        }


class StatsQuery:
    """Answers stats queries from StatsStore snapshots.

    Args:
        store: Source of snapshots.
        clock: Returns Unix time in seconds; "today" is its UTC date.
        retention: Estimator used for cohort overlap.
    """

    def __init__(
        self,
        store: StatsStore,
        clock: Clock = time.time,
        retention: RetentionEstimator | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._retention = retention or RetentionEstimator()

    def today(self) -> date:
        return utc_date(self._clock())

    def report(self, window: int = MAU_DAYS) -> StatsReport:
        """Full stats report. `window` bounds how many recent days are listed."""
        if isinstance(window, bool) or not isinstance(window, int):
            raise ValidationError("window must be an integer")
        if not 1 <= window <= MAX_WINDOW_DAYS:
            raise ValidationError(f"window must be 1..{MAX_WINDOW_DAYS}")

        today = self.today()
        span = max(window, MAU_DAYS, max(RETENTION_OFFSETS.values()) + 1)
        snaps = self._snapshots(trailing_days(today, span))

        recent = [
            DayCount(
                date=key.label,
                dau=bucket.all_users.count(),
                new_users=bucket.new_users.count(),
            )
            for key in trailing_days(today, window)
            if (bucket := snaps.get(key)) is not None
        ]

        week_key, month_key = BucketKey.day(today).parents()
        return StatsReport(
            all_time=self._store.global_estimator_snapshot().count(),
            wau=self._union_count(snaps, trailing_days(today, WAU_DAYS)),
            mau=self._union_count(snaps, trailing_days(today, MAU_DAYS)),
            recent_days=recent,
            retention={
                name: self._retention_for(snaps, today, offset)
                for name, offset in RETENTION_OFFSETS.items()
            },
            this_week=self._period_count(week_key),
            this_month=self._period_count(month_key),
        )

    def window_estimate(self, end: date, days: int) -> int:
        """Distinct visitors over the `days` days ending at `end`."""
        keys = trailing_days(end, days)
        return self._union_count(self._snapshots(keys), keys)

    def retention(self, offset: int, today: date | None = None) -> RetentionRecord | None:
        today = today or self.today()
        keys = [BucketKey.day(today - timedelta(days=offset)), BucketKey.day(today)]
        return self._retention_for(self._snapshots(keys), today, offset)

    def series(self) -> list[SeriesPoint]:
        """DAU plus trailing WAU / MAU for every stored day, oldest first."""
        days = self._store.days()
        if not days:
            return []
        first = days[0].as_date() - timedelta(days=MAU_DAYS - 1)
        last = days[-1].as_date()
        snaps = self._snapshots(trailing_days(last, (last - first).days + 1))
        points = []
        for key in days:
            d = key.as_date()
            points.append(SeriesPoint(
                date=key.label,
                dau=snaps[key].all_users.count(),
                wau=self._union_count(snaps, trailing_days(d, WAU_DAYS)),
                mau=self._union_count(snaps, trailing_days(d, MAU_DAYS)),
            ))
        return points

    def _snapshots(self, keys: list[BucketKey]) -> dict[BucketKey, TimeBucket]:
        out: dict[BucketKey, TimeBucket] = {}
        for key in keys:
            snap = self._store.day_snapshot(key, with_filter=False)
            if snap is not None:
                out[key] = snap
        return out

    def _union_count(
        self, snaps: dict[BucketKey, TimeBucket], keys: list[BucketKey]
    ) -> int:
        merged: HyperLogLog = self._store.empty_estimator()
        for key in keys:
            bucket = snaps.get(key)
            if bucket is not None:
                merged.merge(bucket.all_users)
        return merged.count()

    def _retention_for(
        self, snaps: dict[BucketKey, TimeBucket], today: date, offset: int
    ) -> RetentionRecord | None:
        cohort = snaps.get(BucketKey.day(today - timedelta(days=offset)))
        current = snaps.get(BucketKey.day(today))
        if cohort is None or current is None:
            return None
        return self._retention.estimate(cohort.new_users, current.all_users)

    def _period_count(self, key: BucketKey) -> int | None:
        snap = self._store.bucket_snapshot(key)
        return snap.all_users.count() if snap is not None else None
