"""Ingestion pipeline: signed ping in, anonymous counts updated.

Per-ping flow (IngestState):

    RECEIVED            payload decoded, all fields present
    TIMESTAMP_CHECKED   |now - ts| within the freshness window
    NONCE_CHECKED       nonce not used inside the replay window
    SIGNATURE_VERIFIED  Ed25519 signature over the canonical message
    IDENTITY_DERIVED    public key -> one-way identifier
    STRUCTURES_UPDATED  global + day estimators, global filter
    PERSISTED           flushed now, or queued for the deferred writer
    ACKNOWLEDGED        IngestResult returned

The checks run cheapest first and in this order only: freshness before
the nonce guard keeps the guard bounded, and the signature check comes
last so nothing about signature validity is observable from a ping that
would have failed a cheaper check. Any failure raises the matching
PingcountError and the remaining steps never run.

A storage fault never fails an accepted ping. The in-memory update has
already happened; the fault is logged and counted on the store.
"""
from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any

from pingcount.concurrency.replay_guard import ReplayGuard
from pingcount.crypto.identity import IdentityDeriver
from pingcount.crypto.signature import SignatureVerifier
from pingcount.domain.buckets import day_key
from pingcount.domain.ping import IngestResult, IngestState, PingRequest
from pingcount.domain.types import Clock
from pingcount.errors import (
    AuthError,
    FreshnessError,
    PersistenceError,
    PingcountError,
    ReplayError,
)
from pingcount.store.stats_store import StatsStore

log = logging.getLogger(__name__)


class IngestionPipeline:
    """Validates pings and records them in a StatsStore.

    Args:
        store: The stats state this pipeline exclusively writes to.
        deriver: Public key -> identifier mapping (fixed per deployment).
        guard: Nonce replay guard.
        verifier: Signature verifier.
        freshness_window_s: Accepted |now - ts| in seconds.
        timestamp_unit: "s" or "ms", the unit clients send `ts` in.
        clock: Returns the current Unix time in seconds.
        persist_immediately: Flush the store inside ingest() instead of
            leaving it to a background writer.
    """

    def __init__(
        self,
        store: StatsStore,
        deriver: IdentityDeriver,
        guard: ReplayGuard,
        verifier: SignatureVerifier | None = None,
        freshness_window_s: int = 120,
        timestamp_unit: str = "s",
        clock: Clock = time.time,
        persist_immediately: bool = False,
    ) -> None:
        if timestamp_unit not in ("s", "ms"):
            raise ValueError(f"timestamp_unit must be 's' or 'ms', got {timestamp_unit!r}")
        self._store = store
        self._deriver = deriver
        self._guard = guard
        self._verifier = verifier or SignatureVerifier()
        self._freshness_window_s = freshness_window_s
        self._ts_divisor = 1000.0 if timestamp_unit == "ms" else 1.0
        self._clock = clock
        self._persist_immediately = persist_immediately
        self._accepted = 0
        self._rejected: Counter[str] = Counter()

    @property
    def store(self) -> StatsStore:
        return self._store

    @property
    def guard(self) -> ReplayGuard:
        return self._guard

    @property
    def accepted(self) -> int:
        return self._accepted

    @property
    def rejected(self) -> dict[str, int]:
        """Rejection counts keyed by error class name."""
        return dict(self._rejected)

    def sweep_nonces(self) -> int:
        """Evict expired nonces on the same clock that accept() used."""
        return self._guard.sweep(int(self._clock() * 1000))

    def ingest(self, ping: PingRequest | dict[str, Any]) -> IngestResult:
        """Run one ping through every stage. Raises PingcountError on rejection."""
        try:
            return self._run(ping)
        except PingcountError as exc:
            self._rejected[type(exc).__name__] += 1
            log.info("Ping rejected (%s): %s", IngestState.REJECTED.name, exc.message)
            raise

    def _run(self, ping: PingRequest | dict[str, Any]) -> IngestResult:
        if not isinstance(ping, PingRequest):
            ping = PingRequest.from_payload(ping)
        self._advance(IngestState.RECEIVED)

        now = self._clock()
        claimed = ping.timestamp / self._ts_divisor
        if abs(now - claimed) > self._freshness_window_s:
            raise FreshnessError("Timestamp outside valid window")
        self._advance(IngestState.TIMESTAMP_CHECKED)

        if not self._guard.accept(ping.nonce, int(now * 1000)):
            raise ReplayError("Nonce already used")
        self._advance(IngestState.NONCE_CHECKED)

        if not self._verifier.verify_ping(ping):
            raise AuthError()
        self._advance(IngestState.SIGNATURE_VERIFIED)

        identifier = self._deriver.derive(ping.public_key)
        self._advance(IngestState.IDENTITY_DERIVED)

        day = day_key(now)
        outcome = self._store.record(identifier, day)
        self._advance(IngestState.STRUCTURES_UPDATED)

        if self._persist_immediately:
            try:
                self._store.flush()
            except PersistenceError:
                log.exception("Snapshot write failed; state kept in memory")
        self._advance(IngestState.PERSISTED)

        self._accepted += 1
        result = IngestResult(
            day=day.label,
            new_user=outcome.new_user,
            dau=outcome.dau,
            all_time=outcome.all_time,
        )
        self._advance(IngestState.ACKNOWLEDGED)
        log.debug("Ping accepted for %s (new=%s, dau=%d)", day.label, outcome.new_user, outcome.dau)
        return result

    @staticmethod
    def _advance(state: IngestState) -> None:
        log.debug("ping -> %s", state.name)
