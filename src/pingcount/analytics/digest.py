"""Wide deterministic digests shared by every probabilistic structure.

HyperLogLog and the Bloom filters never hash elements themselves: they
take a Hasher, which wraps one cryptographic hash behind a name. The name
is written into every serialized snapshot so that state produced with one
hash is never silently merged with state produced by another.

Both structures need at least 128 bits: HyperLogLog reads the first 8
bytes, the Bloom filters split the first 16 into two 64-bit halves for
double hashing.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Callable

from pingcount.errors import ConfigurationError

DigestFn = Callable[[bytes], bytes]

MIN_DIGEST_BYTES = 16


@dataclass(frozen=True, slots=True)
class Hasher:
    """A named digest function."""

    name: str
    fn: DigestFn

    def digest(self, data: bytes) -> bytes:
        out = self.fn(data)
        if len(out) < MIN_DIGEST_BYTES:
            raise ConfigurationError(
                f"Hasher {self.name!r} produced {len(out)} bytes, "
                f"need at least {MIN_DIGEST_BYTES}"
            )
        return out

    def hash64(self, data: bytes) -> int:
        """First 8 digest bytes as a big-endian unsigned integer."""
        return int.from_bytes(self.digest(data)[:8], "big")

    def hash_pair(self, data: bytes) -> tuple[int, int]:
        """Two independent 64-bit values for double hashing."""
        d = self.digest(data)
        return int.from_bytes(d[:8], "big"), int.from_bytes(d[8:16], "big")


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def _blake2b(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


SHA256 = Hasher("sha256", _sha256)
BLAKE2B = Hasher("blake2b", _blake2b)

_REGISTRY: dict[str, Hasher] = {
    SHA256.name: SHA256,
    BLAKE2B.name: BLAKE2B,
}

DEFAULT_HASHER = SHA256


def register_hasher(hasher: Hasher) -> None:
    """Make a custom hasher resolvable by name when loading snapshots."""
    existing = _REGISTRY.get(hasher.name)
    if existing is not None and existing.fn is not hasher.fn:
        raise ConfigurationError(f"Hasher name {hasher.name!r} already registered")
    _REGISTRY[hasher.name] = hasher


def get_hasher(name: str) -> Hasher:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise ConfigurationError(f"Unknown hasher {name!r}") from None
