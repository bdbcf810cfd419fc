"""Tests for the stats read path: windows, retention and the report shape."""
from __future__ import annotations

from datetime import timedelta

import pytest

from pingcount.domain.buckets import BucketKey
from pingcount.errors import ValidationError


def _ident(i: int) -> bytes:
    return i.to_bytes(32, "big")


def _fill(store, day, ids):
    for i in ids:
        store.record(_ident(i), day)


class TestWindows:
    def test_wau_and_mau_are_unions(self, store, query):
        today = query.today()
        # the same 50 visitors every day for 10 days, plus 10 fresh ones a day
        for offset in range(10):
            day = BucketKey.day(today - timedelta(days=offset))
            _fill(store, day, range(50))
            _fill(store, day, range(1000 + offset * 10, 1010 + offset * 10))
        report = query.report()
        assert report.wau == pytest.approx(50 + 70, abs=8)
        assert report.mau == pytest.approx(50 + 100, abs=10)
        assert report.all_time == report.mau

    def test_window_estimate(self, store, query):
        today = query.today()
        _fill(store, BucketKey.day(today), range(30))
        _fill(store, BucketKey.day(today - timedelta(days=3)), range(20, 60))
        assert query.window_estimate(today, 7) == pytest.approx(60, abs=4)
        assert query.window_estimate(today, 1) == pytest.approx(30, abs=3)

    def test_empty_store(self, query):
        report = query.report()
        assert report.all_time == 0
        assert report.wau == 0
        assert report.mau == 0
        assert report.recent_days == []
        assert report.this_week is None
        assert report.this_month is None


class TestRecentDays:
    def test_oldest_first_and_window_bounded(self, store, query):
        today = query.today()
        for offset in range(5):
            _fill(store, BucketKey.day(today - timedelta(days=offset)), range(offset + 1))
        recent = query.report(window=3).recent_days
        assert [d.date for d in recent] == [
            (today - timedelta(days=n)).isoformat() for n in (2, 1, 0)
        ]
        assert [d.dau for d in recent] == [3, 2, 1]

    def test_new_users_per_day(self, store, query):
        today = query.today()
        _fill(store, BucketKey.day(today - timedelta(days=1)), range(10))
        _fill(store, BucketKey.day(today), range(5, 20))
        days = {d.date: d for d in query.report().recent_days}
        assert days[today.isoformat()].dau == pytest.approx(15, abs=2)
        assert days[today.isoformat()].new_users == pytest.approx(10, abs=2)

    @pytest.mark.parametrize("window", [0, 367, "30", 2.5, True])
    def test_invalid_window(self, query, window):
        with pytest.raises(ValidationError):
            query.report(window=window)


class TestRetention:
    def test_missing_history_is_none(self, store, query):
        _fill(store, BucketKey.day(query.today()), range(10))
        report = query.report()
        assert report.retention == {"d1": None, "d7": None, "d30": None}

    def test_full_return(self, store, query):
        today = query.today()
        _fill(store, BucketKey.day(today - timedelta(days=7)), range(100))
        _fill(store, BucketKey.day(today), range(100))
        record = query.retention(7)
        assert record.rate == pytest.approx(100.0)
        assert query.report().retention["d1"] is None

    def test_no_return(self, store, query):
        today = query.today()
        _fill(store, BucketKey.day(today - timedelta(days=1)), range(100))
        _fill(store, BucketKey.day(today), range(100, 200))
        record = query.retention(1)
        assert record.cohort_size == pytest.approx(100, abs=5)
        assert record.rate <= 15.0

    def test_cohort_is_new_users_only(self, store, query):
        today = query.today()
        # 0..49 were seen long before the cohort day
        _fill(store, BucketKey.day(today - timedelta(days=40)), range(50))
        _fill(store, BucketKey.day(today - timedelta(days=30)), range(100))
        _fill(store, BucketKey.day(today), range(100))
        record = query.report().retention["d30"]
        assert record is not None
        assert record.cohort_size == pytest.approx(50, abs=4)
        assert record.rate == pytest.approx(100.0)


class TestPeriodsAndSeries:
    def test_this_week_after_rollup(self, store, query):
        _fill(store, BucketKey.day(query.today()), range(25))
        assert query.report().this_week is None
        store.rollup()
        report = query.report()
        assert report.this_week == pytest.approx(25, abs=3)
        assert report.this_month == report.this_week

    def test_series(self, store, query):
        today = query.today()
        _fill(store, BucketKey.day(today - timedelta(days=2)), range(10))
        _fill(store, BucketKey.day(today), range(5, 15))
        points = query.series()
        assert [p.date for p in points] == [
            (today - timedelta(days=2)).isoformat(), today.isoformat(),
        ]
        assert points[0].dau == pytest.approx(10, abs=2)
        assert points[0].wau == points[0].dau
        assert points[1].dau == pytest.approx(10, abs=2)
        assert points[1].wau == pytest.approx(15, abs=2)
        assert points[1].mau == points[1].wau

    def test_series_empty(self, query):
        assert query.series() == []

    def test_report_dict_shape(self, store, query):
        _fill(store, BucketKey.day(query.today()), range(3))
        body = query.report().to_dict()
        assert set(body) == {
            "allTime", "wau", "mau", "recentDays", "retention", "thisWeek", "thisMonth",
        }
        assert body["recentDays"][-1] == {
            "date": query.today().isoformat(), "dau": 3, "newUsers": 3,
        }
