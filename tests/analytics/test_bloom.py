"""Tests for BloomFilter and ScalableBloomFilter membership testing."""
from __future__ import annotations

import pytest

from pingcount.analytics.bloom import BloomFilter, ScalableBloomFilter
from pingcount.analytics.digest import BLAKE2B, SHA256
from pingcount.errors import ConfigurationError


def _items(prefix: str, start: int, stop: int) -> list[bytes]:
    return [f"{prefix}-{i}".encode() for i in range(start, stop)]


def _fp_rate(flt, n_probes: int = 10_000) -> float:
    hits = sum(1 for item in _items("never", 0, n_probes) if flt.test(item))
    return hits / n_probes


class TestBloomBasics:
    def test_empty_filter(self):
        bf = BloomFilter(capacity=1000)
        assert not bf.test(b"anything")
        assert bf.count == 0
        assert bf.fill_ratio() == 0.0

    def test_add_and_check(self):
        bf = BloomFilter(capacity=1000)
        bf.add(b"visitor-1")
        assert bf.test(b"visitor-1")
        assert b"visitor-1" in bf

    def test_no_false_negatives(self):
        bf = BloomFilter(capacity=10_000, error_rate=0.01)
        items = _items("item", 0, 5000)
        for item in items:
            bf.add(item)
        for item in items:
            assert bf.test(item), f"False negative for {item!r}"

    def test_memory_size_scales(self):
        small = BloomFilter(capacity=1000, error_rate=0.01)
        large = BloomFilter(capacity=1_000_000, error_rate=0.01)
        assert large.memory_bytes() > small.memory_bytes()

    def test_invalid_params(self):
        with pytest.raises(ValueError):
            BloomFilter(capacity=0)
        with pytest.raises(ValueError):
            BloomFilter(capacity=100, error_rate=0.0)
        with pytest.raises(ValueError):
            BloomFilter(capacity=100, error_rate=1.0)

    def test_fp_rate_at_capacity(self):
        n = 10_000
        bf = BloomFilter(capacity=n, error_rate=0.01)
        for item in _items("item", 0, n):
            bf.add(item)
        fp = _fp_rate(bf)
        print(f"\n  Bloom FP rate at capacity ({n}): {fp:.4f} (target 0.01)")
        assert fp < 0.03
        assert bf.fill_ratio() == pytest.approx(0.5, abs=0.05)

    def test_round_trip(self):
        bf = BloomFilter(capacity=2000, error_rate=0.01)
        for item in _items("rt", 0, 1500):
            bf.add(item)
        restored = BloomFilter.from_bytes(bf.to_bytes())
        assert restored.size_bits == bf.size_bits
        assert restored.num_hashes == bf.num_hashes
        assert restored.fill_ratio() == bf.fill_ratio()
        for item in _items("rt", 0, 3000):
            assert restored.test(item) == bf.test(item)


class TestScalableBloom:
    def test_add_reports_previous_membership(self):
        sbf = ScalableBloomFilter(initial_capacity=100)
        assert sbf.add(b"first") is False
        assert sbf.add(b"first") is True
        assert sbf.test(b"first")

    def test_grows_tiers_beyond_capacity(self):
        sbf = ScalableBloomFilter(initial_capacity=1000, error_rate=0.01)
        for item in _items("grow", 0, 10_000):
            sbf.add(item)
        assert sbf.num_tiers > 1
        capacities = [t.capacity for t in sbf.tiers]
        assert capacities == sorted(capacities)
        error_rates = [t.error_rate for t in sbf.tiers]
        assert error_rates == sorted(error_rates, reverse=True)
        assert sum(error_rates) < 0.01

    def test_no_false_negatives_across_tiers(self):
        sbf = ScalableBloomFilter(initial_capacity=500, error_rate=0.01)
        items = _items("nfn", 0, 8000)
        for i, item in enumerate(items):
            sbf.add(item)
            # earlier items stay present as later ones pile in
            if i % 1000 == 999:
                for earlier in items[: i + 1: 97]:
                    assert sbf.test(earlier)
        for item in items:
            assert sbf.test(item)

    def test_fp_rate_stays_bounded(self):
        sbf = ScalableBloomFilter(initial_capacity=1000, error_rate=0.01)
        for item in _items("fp", 0, 20_000):
            sbf.add(item)
        fp = _fp_rate(sbf)
        print(f"\n  Scalable FP rate ({sbf.num_tiers} tiers): {fp:.4f} (target 0.01)")
        assert fp < 0.03
        assert sbf.estimated_fp_rate() < 0.03

    def test_invalid_params(self):
        with pytest.raises(ValueError):
            ScalableBloomFilter(initial_capacity=0)
        with pytest.raises(ValueError):
            ScalableBloomFilter(error_rate=1.5)
        with pytest.raises(ValueError):
            ScalableBloomFilter(tightening=1.0)
        with pytest.raises(ValueError):
            ScalableBloomFilter(fill_threshold=0.0)

    def test_copy_is_independent(self):
        sbf = ScalableBloomFilter(initial_capacity=100)
        sbf.add(b"shared")
        clone = sbf.copy()
        clone.add(b"only-in-clone")
        assert clone.test(b"shared")
        assert not sbf.test(b"only-in-clone")


class TestScalableBloomSerialization:
    def test_round_trip_membership_identical(self):
        sbf = ScalableBloomFilter(initial_capacity=300, error_rate=0.01)
        for item in _items("s", 0, 2000):
            sbf.add(item)
        restored = ScalableBloomFilter.from_bytes(sbf.to_bytes())
        assert restored.num_tiers == sbf.num_tiers
        for item in _items("s", 0, 4000):
            assert restored.test(item) == sbf.test(item)

    def test_round_trip_keeps_growing(self):
        sbf = ScalableBloomFilter(initial_capacity=100)
        for item in _items("g", 0, 150):
            sbf.add(item)
        restored = ScalableBloomFilter.from_bytes(sbf.to_bytes())
        for item in _items("g", 150, 2000):
            restored.add(item)
        assert restored.num_tiers > sbf.num_tiers
        assert all(restored.test(i) for i in _items("g", 0, 2000))

    def test_empty_round_trip(self):
        sbf = ScalableBloomFilter(hasher=BLAKE2B)
        restored = ScalableBloomFilter.from_bytes(sbf.to_bytes())
        assert restored.num_tiers == 0
        assert restored.hasher is BLAKE2B

    def test_hasher_name_is_checked(self):
        data = ScalableBloomFilter(hasher=BLAKE2B).to_bytes()
        with pytest.raises(ConfigurationError):
            ScalableBloomFilter.from_bytes(data, SHA256)

    def test_trailing_bytes_rejected(self):
        data = ScalableBloomFilter(initial_capacity=100).to_bytes()
        with pytest.raises(ValueError):
            ScalableBloomFilter.from_bytes(data + b"\x00")

    def test_truncated_rejected(self):
        sbf = ScalableBloomFilter(initial_capacity=100)
        sbf.add(b"x")
        with pytest.raises(ValueError):
            ScalableBloomFilter.from_bytes(sbf.to_bytes()[:-3])
