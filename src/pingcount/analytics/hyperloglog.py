"""HyperLogLog cardinality estimator.

Answers the question: "How many distinct visitors pinged in this bucket?"
without storing any identifier. Uses 2^p one-byte registers regardless of
how many visitors are added, at the cost of roughly 1.04 / sqrt(2^p)
standard error (~3.25% at the default p=10).

Bit layout: the digest is read as a 64-bit integer. The low p bits pick
the register. The remaining 64 - p bits are scanned from the bit right
above the index field upwards; the rank is 1 + the number of trailing
zeros, or 64 - p when the remainder is all zero. Each register keeps the
largest rank it has seen, so add() and merge() are both pointwise max:
idempotent, commutative and associative. That is what lets weekly and
monthly buckets be rebuilt from daily ones in any order.

References:
    Flajolet et al., "HyperLogLog: the analysis of a near-optimal
    cardinality estimation algorithm", 2007.
"""

from __future__ import annotations

import math
import struct

from pingcount.analytics.digest import DEFAULT_HASHER, Hasher, get_hasher
from pingcount.errors import ConfigurationError

_MAGIC = b"PCHL"
_VERSION = 1
# magic, version, precision, hasher-name length
_HEADER = struct.Struct("!4sBBB")

MIN_PRECISION = 4
MAX_PRECISION = 16


def _rank(remainder: int, width: int) -> int:
    """1 + trailing zeros of `remainder`, or `width` if it is zero."""
    if remainder == 0:
        return width
    # remainder & -remainder isolates the lowest set bit
    return (remainder & -remainder).bit_length()


def _alpha(m: int) -> float:
    if m == 16:
        return 0.673
    if m == 32:
        return 0.697
    if m == 64:
        return 0.709
    return 0.7213 / (1.0 + 1.079 / m)


class HyperLogLog:
    """HyperLogLog cardinality estimator.

    Parameters:
        p: Precision parameter. Uses 2^p registers (default 10 = 1024
           registers = 1 KB). Standard error is about 1.04 / sqrt(2^p).
        hasher: Digest used for every element. Must be the same for all
           estimators that will ever be merged together.

    Typical precision values:
        p=10: 1024 registers, ~1 KB, ~3.25% error
        p=12: 4096 registers, ~4 KB, ~1.63% error
        p=14: 16384 registers, ~16 KB, ~0.81% error
    """

    __slots__ = ("_p", "_m", "_registers", "_alpha", "_hasher")

    def __init__(self, p: int = 10, hasher: Hasher = DEFAULT_HASHER) -> None:
        if not (MIN_PRECISION <= p <= MAX_PRECISION):
            raise ValueError(
                f"Precision p must be {MIN_PRECISION}..{MAX_PRECISION}, got {p}"
            )
        self._p = p
        self._m = 1 << p
        self._registers = bytearray(self._m)
        self._alpha = _alpha(self._m)
        self._hasher = hasher

    @property
    def precision(self) -> int:
        return self._p

    @property
    def num_registers(self) -> int:
        return self._m

    @property
    def hasher(self) -> Hasher:
        return self._hasher

    @property
    def registers(self) -> bytes:
        """Read-only copy of the register array."""
        return bytes(self._registers)

    def add(self, element: bytes) -> None:
        """Add an element to the estimator."""
        h = self._hasher.hash64(element)
        idx = h & (self._m - 1)
        width = 64 - self._p
        rank = _rank(h >> self._p, width)
        if rank > self._registers[idx]:
            self._registers[idx] = rank

    def estimate(self) -> float:
        """Estimate the number of distinct elements added.

        Raw harmonic-mean estimate, switched to linear counting while many
        registers are still zero. Ranks cap at 64 - p, far above anything
        this deployment reaches, so there is no large-range correction.
        """
        indicator = math.fsum(2.0 ** -r for r in self._registers)
        raw = self._alpha * self._m * self._m / indicator

        if raw <= 2.5 * self._m:
            zeros = self._registers.count(0)
            if zeros > 0:
                return self._m * math.log(self._m / zeros)
        return raw

    def count(self) -> int:
        """estimate() rounded to the nearest integer."""
        return int(round(self.estimate()))

    def is_empty(self) -> bool:
        return not any(self._registers)

    def merge(self, other: HyperLogLog) -> None:
        """Merge another estimator into this one (union, in place).

        Raises ConfigurationError when precision or hasher differ: a
        silent truncate or pad would produce an estimator that no valid
        history could have produced.
        """
        self._check_compatible(other)
        regs = self._registers
        for i, r in enumerate(other._registers):
            if r > regs[i]:
                regs[i] = r

    def union(self, *others: HyperLogLog) -> HyperLogLog:
        """Return a new estimator for the union; inputs are untouched."""
        result = self.copy()
        for other in others:
            result.merge(other)
        return result

    def copy(self) -> HyperLogLog:
        clone = HyperLogLog(self._p, self._hasher)
        clone._registers[:] = self._registers
        return clone

    def memory_bytes(self) -> int:
        return self._m

    def standard_error(self) -> float:
        """Theoretical standard error for this precision."""
        return 1.04 / math.sqrt(self._m)

    def to_bytes(self) -> bytes:
        name = self._hasher.name.encode("ascii")
        header = _HEADER.pack(_MAGIC, _VERSION, self._p, len(name))
        return header + name + bytes(self._registers)

    @classmethod
    def from_bytes(cls, data: bytes, hasher: Hasher | None = None) -> HyperLogLog:
        """Rebuild an estimator from to_bytes() output.

        If `hasher` is given it must match the name stored in the
        snapshot; otherwise the stored name is looked up.
        """
        if len(data) < _HEADER.size:
            raise ValueError("HyperLogLog snapshot too short")
        magic, version, p, name_len = _HEADER.unpack_from(data)
        if magic != _MAGIC:
            raise ValueError("Not a HyperLogLog snapshot")
        if version != _VERSION:
            raise ValueError(f"Unsupported HyperLogLog snapshot version {version}")
        offset = _HEADER.size
        name = data[offset:offset + name_len].decode("ascii")
        offset += name_len
        if hasher is None:
            hasher = get_hasher(name)
        elif hasher.name != name:
            raise ConfigurationError(
                f"Snapshot hashed with {name!r}, expected {hasher.name!r}"
            )
        hll = cls(p, hasher)
        body = data[offset:]
        if len(body) != hll._m:
            raise ValueError(
                f"Expected {hll._m} registers, snapshot has {len(body)}"
            )
        hll._registers[:] = body
        return hll

    def _check_compatible(self, other: HyperLogLog) -> None:
        if self._p != other._p:
            raise ConfigurationError(
                f"Cannot merge HLLs with different precision: "
                f"{self._p} vs {other._p}"
            )
        if self._hasher.name != other._hasher.name:
            raise ConfigurationError(
                f"Cannot merge HLLs with different hashers: "
                f"{self._hasher.name} vs {other._hasher.name}"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HyperLogLog):
            return NotImplemented
        return (
            self._p == other._p
            and self._hasher.name == other._hasher.name
            and self._registers == other._registers
        )

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"HyperLogLog(p={self._p}, estimate={self.estimate():.1f})"
