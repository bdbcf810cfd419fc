"""Bloom filters for the "have we seen this visitor before" test.

Answers the question: "Is this identifier new globally?" without keeping
the identifier. False positives are possible (a new visitor counted as
returning), false negatives are not (a returning visitor is never counted
as new). Bits are never cleared; there is no remove().

BloomFilter is a single bit array of m bits with k probes. Positions use
the double-hashing technique from Kirsch & Mitzenmacher (2006):
h_i(x) = h1(x) + i * h2(x) mod m, with h1 and h2 taken from one digest.

ScalableBloomFilter stacks BloomFilter tiers. When the newest tier's fill
ratio passes a threshold it appends a larger tier with a tighter error
budget, so the compounded false positive rate of all tiers stays under
the configured target however many visitors arrive.

References:
    Bloom, "Space/time trade-offs in hash coding with allowable errors", 1970.
    Kirsch & Mitzenmacher, "Less hashing, same performance", 2006.
    Almeida et al., "Scalable Bloom Filters", 2007.
"""

from __future__ import annotations

import math
import struct

from pingcount.analytics.digest import DEFAULT_HASHER, Hasher, get_hasher
from pingcount.errors import ConfigurationError

_TIER_MAGIC = b"PCBF"
_SCALABLE_MAGIC = b"PCSB"
_VERSION = 1
# magic, version, size_bits, num_hashes, capacity, error_rate, count
_TIER_HEADER = struct.Struct("!4sBQIQdQ")
# magic, version, initial_capacity, error_rate, growth, tightening,
# fill_threshold, tier count, hasher-name length
_SCALABLE_HEADER = struct.Struct("!4sBQdIddIB")


def _optimal_size(expected: int, fp_rate: float) -> int:
    """Compute optimal bit array size m for given capacity and FP rate.

    m = -(n * ln(p)) / (ln(2)^2)
    """
    if expected <= 0:
        raise ValueError(f"expected must be positive, got {expected}")
    if not (0.0 < fp_rate < 1.0):
        raise ValueError(f"fp_rate must be in (0, 1), got {fp_rate}")
    m = -(expected * math.log(fp_rate)) / (math.log(2) ** 2)
    return max(64, int(math.ceil(m)))


def _optimal_hashes(m: int, expected: int) -> int:
    """Compute optimal number of hash functions k.

    k = (m / n) * ln(2)
    """
    k = (m / expected) * math.log(2)
    return max(1, int(round(k)))


def _lp(data: bytes) -> bytes:
    return struct.pack("!I", len(data)) + data


class BloomFilter:
    """Bloom filter for approximate set membership.

    Parameters:
        capacity: Expected number of elements.
        error_rate: Target false positive rate at capacity.
        hasher: Digest used to derive probe positions.

    Going beyond capacity degrades the FP rate but never causes false
    negatives. ScalableBloomFilter watches fill_ratio() to avoid that.
    """

    def __init__(
        self,
        capacity: int = 10_000,
        error_rate: float = 0.01,
        hasher: Hasher = DEFAULT_HASHER,
    ) -> None:
        self._capacity = capacity
        self._error_rate = error_rate
        self._m = _optimal_size(capacity, error_rate)
        self._k = _optimal_hashes(self._m, capacity)
        self._hasher = hasher
        self._bits = bytearray((self._m + 7) // 8)
        self._set_bits = 0
        self._count = 0

    @property
    def size_bits(self) -> int:
        return self._m

    @property
    def num_hashes(self) -> int:
        return self._k

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def error_rate(self) -> float:
        return self._error_rate

    @property
    def count(self) -> int:
        """Number of add() calls that wrote to this filter."""
        return self._count

    def _positions(self, element: bytes) -> list[int]:
        h1, h2 = self._hasher.hash_pair(element)
        m = self._m
        return [(h1 + i * h2) % m for i in range(self._k)]

    def add(self, element: bytes) -> None:
        """Set the element's k bits."""
        bits = self._bits
        for pos in self._positions(element):
            byte_idx = pos >> 3
            mask = 1 << (pos & 7)
            if not bits[byte_idx] & mask:
                bits[byte_idx] |= mask
                self._set_bits += 1
        self._count += 1

    def test(self, element: bytes) -> bool:
        """True if the element might be present, False if definitely not."""
        bits = self._bits
        for pos in self._positions(element):
            if not bits[pos >> 3] & (1 << (pos & 7)):
                return False
        return True

    __contains__ = test

    def fill_ratio(self) -> float:
        """Fraction of bits that are set."""
        return self._set_bits / self._m

    def estimated_fp_rate(self) -> float:
        """FP rate ~= fill_ratio ^ k, from the bits actually set."""
        return self.fill_ratio() ** self._k

    def memory_bytes(self) -> int:
        return len(self._bits)

    def copy(self) -> BloomFilter:
        clone = BloomFilter.__new__(BloomFilter)
        clone._capacity = self._capacity
        clone._error_rate = self._error_rate
        clone._m = self._m
        clone._k = self._k
        clone._hasher = self._hasher
        clone._bits = bytearray(self._bits)
        clone._set_bits = self._set_bits
        clone._count = self._count
        return clone

    def to_bytes(self) -> bytes:
        header = _TIER_HEADER.pack(
            _TIER_MAGIC, _VERSION, self._m, self._k,
            self._capacity, self._error_rate, self._count,
        )
        return header + bytes(self._bits)

    @classmethod
    def from_bytes(cls, data: bytes, hasher: Hasher = DEFAULT_HASHER) -> BloomFilter:
        if len(data) < _TIER_HEADER.size:
            raise ValueError("Bloom filter snapshot too short")
        magic, version, m, k, capacity, error_rate, count = _TIER_HEADER.unpack_from(data)
        if magic != _TIER_MAGIC or version != _VERSION:
            raise ValueError("Not a Bloom filter snapshot")
        body = data[_TIER_HEADER.size:]
        if len(body) != (m + 7) // 8:
            raise ValueError(
                f"Bloom filter body is {len(body)} bytes, expected {(m + 7) // 8}"
            )
        bf = cls.__new__(cls)
        bf._capacity = capacity
        bf._error_rate = error_rate
        bf._m = m
        bf._k = k
        bf._hasher = hasher
        bf._bits = bytearray(body)
        bf._set_bits = sum(bin(b).count("1") for b in body)
        bf._count = count
        return bf


class ScalableBloomFilter:
    """Bloom filter that grows by appending tiers.

    Parameters:
        initial_capacity: Capacity of the first tier.
        error_rate: Target compounded false positive rate.
        growth: Capacity multiplier per new tier (2 or 4 are typical).
        tightening: Per-tier error multiplier r. Tier i gets
            error_rate * (1 - r) * r^i, and the sum over all tiers is
            bounded by error_rate.
        fill_threshold: Fill ratio of the newest tier that triggers a new
            tier. 0.5 is where an optimally sized tier sits at capacity.
        hasher: Digest shared by all tiers.
    """

    def __init__(
        self,
        initial_capacity: int = 10_000,
        error_rate: float = 0.01,
        growth: int = 2,
        tightening: float = 0.8,
        fill_threshold: float = 0.5,
        hasher: Hasher = DEFAULT_HASHER,
    ) -> None:
        if initial_capacity <= 0:
            raise ValueError(f"initial_capacity must be positive, got {initial_capacity}")
        if not (0.0 < error_rate < 1.0):
            raise ValueError(f"error_rate must be in (0, 1), got {error_rate}")
        if growth < 1:
            raise ValueError(f"growth must be >= 1, got {growth}")
        if not (0.0 < tightening < 1.0):
            raise ValueError(f"tightening must be in (0, 1), got {tightening}")
        if not (0.0 < fill_threshold < 1.0):
            raise ValueError(f"fill_threshold must be in (0, 1), got {fill_threshold}")
        self._initial_capacity = initial_capacity
        self._error_rate = error_rate
        self._growth = growth
        self._tightening = tightening
        self._fill_threshold = fill_threshold
        self._hasher = hasher
        self._tiers: list[BloomFilter] = []

    @property
    def error_rate(self) -> float:
        return self._error_rate

    @property
    def hasher(self) -> Hasher:
        return self._hasher

    @property
    def num_tiers(self) -> int:
        return len(self._tiers)

    @property
    def tiers(self) -> tuple[BloomFilter, ...]:
        return tuple(self._tiers)

    @property
    def count(self) -> int:
        return sum(t.count for t in self._tiers)

    def test(self, element: bytes) -> bool:
        """True if any tier reports the element as present."""
        # newest first: recent additions are most likely to be queried
        for tier in reversed(self._tiers):
            if tier.test(element):
                return True
        return False

    __contains__ = test

    def add(self, element: bytes) -> bool:
        """Add an element. Returns True if it already tested positive."""
        if self.test(element):
            return True
        self._active_tier().add(element)
        return False

    def _active_tier(self) -> BloomFilter:
        if not self._tiers:
            self._tiers.append(self._make_tier(0))
        elif self._tiers[-1].fill_ratio() > self._fill_threshold:
            self._tiers.append(self._make_tier(len(self._tiers)))
        return self._tiers[-1]

    def _make_tier(self, index: int) -> BloomFilter:
        capacity = self._initial_capacity * self._growth ** index
        error = self._error_rate * (1.0 - self._tightening) * self._tightening ** index
        return BloomFilter(capacity=capacity, error_rate=error, hasher=self._hasher)

    def fill_ratio(self) -> float:
        """Fill ratio of the newest tier (0.0 before the first add)."""
        if not self._tiers:
            return 0.0
        return self._tiers[-1].fill_ratio()

    def estimated_fp_rate(self) -> float:
        """Compounded FP rate: 1 - prod(1 - fp_i) over all tiers."""
        miss = 1.0
        for tier in self._tiers:
            miss *= 1.0 - tier.estimated_fp_rate()
        return 1.0 - miss

    def memory_bytes(self) -> int:
        return sum(t.memory_bytes() for t in self._tiers)

    def copy(self) -> ScalableBloomFilter:
        clone = ScalableBloomFilter(
            initial_capacity=self._initial_capacity,
            error_rate=self._error_rate,
            growth=self._growth,
            tightening=self._tightening,
            fill_threshold=self._fill_threshold,
            hasher=self._hasher,
        )
        clone._tiers = [t.copy() for t in self._tiers]
        return clone

    def to_bytes(self) -> bytes:
        name = self._hasher.name.encode("ascii")
        header = _SCALABLE_HEADER.pack(
            _SCALABLE_MAGIC, _VERSION, self._initial_capacity, self._error_rate,
            self._growth, self._tightening, self._fill_threshold,
            len(self._tiers), len(name),
        )
        return header + name + b"".join(_lp(t.to_bytes()) for t in self._tiers)

    @classmethod
    def from_bytes(
        cls, data: bytes, hasher: Hasher | None = None
    ) -> ScalableBloomFilter:
        if len(data) < _SCALABLE_HEADER.size:
            raise ValueError("Scalable Bloom filter snapshot too short")
        (
            magic, version, initial_capacity, error_rate,
            growth, tightening, fill_threshold, num_tiers, name_len,
        ) = _SCALABLE_HEADER.unpack_from(data)
        if magic != _SCALABLE_MAGIC or version != _VERSION:
            raise ValueError("Not a scalable Bloom filter snapshot")
        offset = _SCALABLE_HEADER.size
        name = data[offset:offset + name_len].decode("ascii")
        offset += name_len
        if hasher is None:
            hasher = get_hasher(name)
        elif hasher.name != name:
            raise ConfigurationError(
                f"Snapshot hashed with {name!r}, expected {hasher.name!r}"
            )
        sbf = cls(
            initial_capacity=initial_capacity,
            error_rate=error_rate,
            growth=growth,
            tightening=tightening,
            fill_threshold=fill_threshold,
            hasher=hasher,
        )
        for _ in range(num_tiers):
            if offset + 4 > len(data):
                raise ValueError("Truncated scalable Bloom filter snapshot")
            (size,) = struct.unpack_from("!I", data, offset)
            offset += 4
            blob = data[offset:offset + size]
            if len(blob) != size:
                raise ValueError("Truncated scalable Bloom filter tier")
            sbf._tiers.append(BloomFilter.from_bytes(blob, hasher))
            offset += size
        if offset != len(data):
            raise ValueError("Trailing bytes after scalable Bloom filter snapshot")
        return sbf
