"""Shared fixtures: a controllable clock, keys, stores and a wired pipeline.

Requires: pip install -e ".[test]"
"""
from __future__ import annotations

import pytest

from pingcount.concurrency.replay_guard import ReplayGuard
from pingcount.crypto.identity import IdentityDeriver
from pingcount.crypto.signature import PingSigner, SignatureVerifier
from pingcount.ingest.pipeline import IngestionPipeline
from pingcount.ingest.query import StatsQuery
from pingcount.store.backends import MemoryBackend
from pingcount.store.stats_store import StatsStore

# 2025-10-09 12:00:00 UTC, a Thursday
T0 = 1_760_011_200
DAY = 86_400
SECRET = bytes(range(1, 33))


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = T0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def signer() -> PingSigner:
    return PingSigner.from_private_bytes(bytes([1]) * 32)


@pytest.fixture()
def other_signer() -> PingSigner:
    return PingSigner.from_private_bytes(bytes([2]) * 32)


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def store(backend) -> StatsStore:
    return StatsStore(backend, precision=10, filter_capacity=1_000)


@pytest.fixture()
def deriver() -> IdentityDeriver:
    return IdentityDeriver(secret=SECRET)


@pytest.fixture()
def guard() -> ReplayGuard:
    return ReplayGuard(window_ms=240_000)


@pytest.fixture()
def pipeline(store, deriver, guard, clock) -> IngestionPipeline:
    return IngestionPipeline(
        store, deriver, guard, SignatureVerifier(),
        freshness_window_s=120, clock=clock,
    )


@pytest.fixture()
def query(store, clock) -> StatsQuery:
    return StatsQuery(store, clock=clock)
