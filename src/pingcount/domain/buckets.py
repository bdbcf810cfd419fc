"""Calendar bucket keys: day, ISO week, month.

Daily buckets are the only ground truth. Week and month keys exist so a
day can name the derived buckets it rolls up into.

    2026-10-19  -> day
    2026-W43    -> ISO week (Monday based, ISO year)
    2026-10     -> month
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum

_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


class Granularity(Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True, slots=True, order=True)
class BucketKey:
    """A calendar bucket. Orders chronologically within one granularity."""

    granularity: Granularity
    label: str

    def __str__(self) -> str:
        return self.label

    @property
    def storage_key(self) -> str:
        """Key under which the bucket is persisted, e.g. 'day/2026-10-19'."""
        return f"{self.granularity.value}/{self.label}"

    @classmethod
    def day(cls, d: date) -> BucketKey:
        return cls(Granularity.DAY, d.isoformat())

    @classmethod
    def week(cls, d: date) -> BucketKey:
        iso_year, iso_week, _ = d.isocalendar()
        return cls(Granularity.WEEK, f"{iso_year:04d}-W{iso_week:02d}")

    @classmethod
    def month(cls, d: date) -> BucketKey:
        return cls(Granularity.MONTH, f"{d.year:04d}-{d.month:02d}")

    @classmethod
    def parse(cls, label: str) -> BucketKey:
        """Parse a bare label; the granularity is inferred from its shape."""
        if _DAY_RE.match(label):
            date.fromisoformat(label)  # validates month/day ranges
            return cls(Granularity.DAY, label)
        m = _WEEK_RE.match(label)
        if m:
            if not 1 <= int(m.group(2)) <= 53:
                raise ValueError(f"Invalid ISO week: {label}")
            return cls(Granularity.WEEK, label)
        m = _MONTH_RE.match(label)
        if m:
            if not 1 <= int(m.group(2)) <= 12:
                raise ValueError(f"Invalid month: {label}")
            return cls(Granularity.MONTH, label)
        raise ValueError(f"Unrecognized bucket label: {label!r}")

    @classmethod
    def from_storage_key(cls, key: str) -> BucketKey:
        prefix, _, label = key.partition("/")
        bucket = cls.parse(label)
        if bucket.granularity.value != prefix:
            raise ValueError(f"Storage key {key!r} does not match its label")
        return bucket

    def as_date(self) -> date:
        """The calendar date of a day bucket."""
        if self.granularity is not Granularity.DAY:
            raise ValueError(f"{self.label} is not a day bucket")
        return date.fromisoformat(self.label)

    def parents(self) -> tuple[BucketKey, BucketKey]:
        """(week, month) buckets that a day bucket rolls up into."""
        d = self.as_date()
        return BucketKey.week(d), BucketKey.month(d)

    def days(self) -> list[BucketKey]:
        """All day buckets covered by this week or month bucket."""
        if self.granularity is Granularity.DAY:
            return [self]
        if self.granularity is Granularity.WEEK:
            year, week = _WEEK_RE.match(self.label).groups()
            start = date.fromisocalendar(int(year), int(week), 1)
            return [BucketKey.day(start + timedelta(days=i)) for i in range(7)]
        year, month = (int(x) for x in _MONTH_RE.match(self.label).groups())
        d = date(year, month, 1)
        out: list[BucketKey] = []
        while d.month == month:
            out.append(BucketKey.day(d))
            d += timedelta(days=1)
        return out


def utc_date(epoch_seconds: float) -> date:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).date()


def day_key(epoch_seconds: float) -> BucketKey:
    """Day bucket for a Unix timestamp, in UTC."""
    return BucketKey.day(utc_date(epoch_seconds))


def trailing_days(end: date, n: int) -> list[BucketKey]:
    """The n day buckets ending at `end` inclusive, oldest first."""
    return [BucketKey.day(end - timedelta(days=i)) for i in range(n - 1, -1, -1)]
