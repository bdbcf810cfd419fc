"""Tests for the HyperLogLog cardinality estimator."""
from __future__ import annotations

import pytest

from pingcount.analytics.digest import BLAKE2B, SHA256
from pingcount.analytics.hyperloglog import HyperLogLog
from pingcount.errors import ConfigurationError


def _ids(prefix: str, n: int, start: int = 0) -> list[bytes]:
    return [f"{prefix}-{i}".encode() for i in range(start, start + n)]


def _filled(items: list[bytes], p: int = 10) -> HyperLogLog:
    hll = HyperLogLog(p=p)
    for item in items:
        hll.add(item)
    return hll


class TestHLLBasics:
    def test_empty(self):
        hll = HyperLogLog(p=10)
        assert hll.is_empty()
        assert hll.estimate() == 0.0
        assert hll.count() == 0

    def test_single_element(self):
        hll = _filled([b"visitor"])
        assert not hll.is_empty()
        assert hll.count() == 1

    def test_register_count(self):
        assert HyperLogLog(p=4).num_registers == 16
        assert HyperLogLog(p=10).num_registers == 1024
        assert HyperLogLog(p=14).memory_bytes() == 16384

    def test_invalid_precision(self):
        with pytest.raises(ValueError):
            HyperLogLog(p=3)
        with pytest.raises(ValueError):
            HyperLogLog(p=17)

    def test_add_is_idempotent(self):
        hll = _filled(_ids("x", 500))
        before = hll.registers
        for item in _ids("x", 500):
            hll.add(item)
        assert hll.registers == before

    def test_small_counts_are_near_exact(self):
        """Linear counting keeps small cardinalities tight."""
        hll = _filled(_ids("small", 100))
        assert abs(hll.count() - 100) <= 8

    def test_standard_error(self):
        assert HyperLogLog(p=10).standard_error() == pytest.approx(1.04 / 32)

    def test_copy_is_independent(self):
        hll = _filled(_ids("a", 50))
        before = hll.registers
        clone = hll.copy()
        assert clone == hll
        for item in _ids("b", 500):
            clone.add(item)
        assert hll.registers == before
        assert clone != hll


class TestHLLMerge:
    @pytest.fixture()
    def abc(self):
        a = _filled(_ids("u", 2000, 0))
        b = _filled(_ids("u", 2000, 1000))
        c = _filled(_ids("u", 2000, 2500))
        return a, b, c

    def test_commutative(self, abc):
        a, b, _ = abc
        assert a.union(b) == b.union(a)

    def test_associative(self, abc):
        a, b, c = abc
        assert a.union(b).union(c) == a.union(b.union(c))

    def test_idempotent(self, abc):
        a, _, _ = abc
        assert a.union(a) == a

    def test_union_leaves_inputs_untouched(self, abc):
        a, b, _ = abc
        before = a.registers
        a.union(b)
        assert a.registers == before

    def test_merge_estimates_union(self):
        a = _filled(_ids("u", 3000, 0))
        b = _filled(_ids("u", 3000, 1500))
        merged = a.union(b)
        assert abs(merged.estimate() - 4500) / 4500 < 4 * merged.standard_error()

    def test_merge_matches_adding_everything(self):
        a = _filled(_ids("u", 800, 0))
        b = _filled(_ids("u", 800, 400))
        direct = _filled(_ids("u", 1200, 0))
        assert a.union(b) == direct

    def test_precision_mismatch(self):
        with pytest.raises(ConfigurationError):
            HyperLogLog(p=10).merge(HyperLogLog(p=12))

    def test_hasher_mismatch(self):
        with pytest.raises(ConfigurationError):
            HyperLogLog(p=10, hasher=SHA256).merge(HyperLogLog(p=10, hasher=BLAKE2B))


class TestHLLAccuracy:
    """Relative error against the theoretical 1.04 / sqrt(m)."""

    N = 20_000
    TRIALS = 5

    def test_error_within_bounds(self):
        errors = []
        for trial in range(self.TRIALS):
            hll = _filled(_ids(f"trial{trial}", self.N))
            errors.append(abs(hll.estimate() - self.N) / self.N)
        se = HyperLogLog(p=10).standard_error()
        mean_error = sum(errors) / len(errors)
        print(f"\n  HLL p=10 errors: {[f'{e:.4f}' for e in errors]} (SE {se:.4f})")
        assert mean_error < 3 * se
        assert max(errors) < 4 * se

    def test_blake2b_hasher_is_as_accurate(self):
        hll = HyperLogLog(p=12, hasher=BLAKE2B)
        for item in _ids("b2", self.N):
            hll.add(item)
        assert abs(hll.estimate() - self.N) / self.N < 4 * hll.standard_error()

    def test_higher_precision_is_tighter(self):
        low = _filled(_ids("prec", self.N), p=6)
        high = _filled(_ids("prec", self.N), p=14)
        assert abs(high.estimate() - self.N) / self.N < 4 * high.standard_error()
        assert high.standard_error() < low.standard_error()


class TestHLLSerialization:
    def test_round_trip(self):
        hll = _filled(_ids("rt", 5000))
        restored = HyperLogLog.from_bytes(hll.to_bytes())
        assert restored == hll
        assert restored.estimate() == hll.estimate()
        assert restored.hasher is SHA256

    def test_round_trip_empty(self):
        hll = HyperLogLog(p=4)
        assert HyperLogLog.from_bytes(hll.to_bytes()) == hll

    def test_hasher_name_is_checked(self):
        data = HyperLogLog(p=10, hasher=BLAKE2B).to_bytes()
        with pytest.raises(ConfigurationError):
            HyperLogLog.from_bytes(data, SHA256)

    def test_truncated_snapshot(self):
        data = _filled(_ids("t", 10)).to_bytes()
        with pytest.raises(ValueError):
            HyperLogLog.from_bytes(data[:-1])

    def test_bad_magic(self):
        data = bytearray(HyperLogLog(p=10).to_bytes())
        data[0:4] = b"XXXX"
        with pytest.raises(ValueError):
            HyperLogLog.from_bytes(bytes(data))
