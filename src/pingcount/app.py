"""Wiring: Settings -> store, pipeline, query, server."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from pingcount.concurrency.replay_guard import ReplayGuard
from pingcount.config import Settings
from pingcount.crypto.identity import IdentityDeriver
from pingcount.crypto.signature import SignatureVerifier
from pingcount.domain.types import Clock
from pingcount.ingest.pipeline import IngestionPipeline
from pingcount.ingest.query import StatsQuery
from pingcount.server.async_server import StatsServer
from pingcount.store.backends import DirectoryBackend
from pingcount.store.base import SnapshotBackend
from pingcount.store.stats_store import StatsStore

log = logging.getLogger(__name__)


@dataclass(slots=True)
class App:
    settings: Settings
    store: StatsStore
    pipeline: IngestionPipeline
    query: StatsQuery

    def server(self) -> StatsServer:
        s = self.settings
        return StatsServer(
            self.pipeline,
            self.query,
            host=s.host,
            port=s.port,
            persist_interval_s=s.persist_interval_s,
            sweep_interval_s=s.sweep_interval_s,
            rollup_interval_s=s.rollup_interval_s,
        )


def build_app(
    settings: Settings,
    backend: SnapshotBackend | None = None,
    clock: Clock = time.time,
    persist_immediately: bool = False,
) -> App:
    """Validate settings and assemble the components.

    Raises ConfigurationError for bad settings or unreadable snapshots.
    """
    settings.validate()
    if backend is None:
        backend = DirectoryBackend(settings.data_dir)
    store = StatsStore.open(backend, settings)
    deriver = IdentityDeriver(settings.derivation, settings.secret)
    guard = ReplayGuard(window_ms=settings.effective_replay_window_s * 1000)
    pipeline = IngestionPipeline(
        store,
        deriver,
        guard,
        SignatureVerifier(),
        freshness_window_s=settings.freshness_window_s,
        timestamp_unit=settings.timestamp_unit,
        clock=clock,
        persist_immediately=persist_immediately,
    )
    log.info(
        "Identity derivation: %s, HLL precision %d (%s)",
        settings.derivation.value, settings.precision, settings.hasher_name,
    )
    return App(settings, store, pipeline, StatsQuery(store, clock=clock))
