"""Tests for named digests."""
from __future__ import annotations

import hashlib

import pytest

from pingcount.analytics.digest import (
    BLAKE2B,
    DEFAULT_HASHER,
    SHA256,
    Hasher,
    get_hasher,
    register_hasher,
)
from pingcount.errors import ConfigurationError


def test_default_is_sha256():
    assert DEFAULT_HASHER is SHA256


def test_hash64_is_big_endian_prefix():
    digest = hashlib.sha256(b"abc").digest()
    assert SHA256.hash64(b"abc") == int.from_bytes(digest[:8], "big")


def test_hash_pair_halves_differ():
    h1, h2 = BLAKE2B.hash_pair(b"abc")
    assert h1 != h2


def test_lookup_by_name():
    assert get_hasher("sha256") is SHA256
    assert get_hasher("blake2b") is BLAKE2B
    with pytest.raises(ConfigurationError):
        get_hasher("md5")


def test_short_digest_rejected():
    short = Hasher("short-test", lambda data: hashlib.md5(data).digest()[:8])
    with pytest.raises(ConfigurationError):
        short.hash64(b"abc")


def test_register_custom_hasher():
    def sha512(data: bytes) -> bytes:
        return hashlib.sha512(data).digest()

    custom = Hasher("sha512-test", sha512)
    register_hasher(custom)
    register_hasher(custom)  # same function twice is fine
    assert get_hasher("sha512-test") is custom
    with pytest.raises(ConfigurationError):
        register_hasher(Hasher("sha512-test", lambda d: hashlib.sha512(d).digest()))
