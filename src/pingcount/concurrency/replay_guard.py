"""Nonce replay protection over a sliding time window.

Every accepted ping leaves its nonce here for `window_ms`. A second ping
with the same nonce inside that window is a replay and is refused.

accept() is a single check-and-insert under one lock, and sweep() takes
the same lock, so a nonce that is just expiring is never seen as both
present (by accept) and gone (by sweep) at the same time.

The guard only stays small because pings with stale timestamps never
reach it: the pipeline rejects them on freshness first. With a
freshness window W, a signed ping stays acceptable for at most 2W (a
client clock W ahead, then W of server time), so the replay window
defaults to twice the freshness window. Anything shorter would let a
captured ping be replayed after its nonce was swept.
"""
from __future__ import annotations

import logging
import threading

from pingcount.domain.types import Millis, Nonce

log = logging.getLogger(__name__)


class ReplayGuard:
    """Tracks recently seen nonces.

    Args:
        window_ms: How long a nonce stays blocked after first use.
    """

    def __init__(self, window_ms: Millis) -> None:
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")
        self._window_ms = window_ms
        self._seen: dict[Nonce, Millis] = {}
        self._lock = threading.Lock()

    @property
    def window_ms(self) -> Millis:
        return self._window_ms

    def accept(self, nonce: Nonce, now_ms: Millis) -> bool:
        """Record the nonce and return True, or return False if it is a replay."""
        with self._lock:
            first_seen = self._seen.get(nonce)
            if first_seen is not None and now_ms - first_seen <= self._window_ms:
                return False
            self._seen[nonce] = now_ms
            return True

    def sweep(self, now_ms: Millis) -> int:
        """Evict expired nonces. Returns how many were removed."""
        with self._lock:
            expired = [
                n for n, seen in self._seen.items()
                if now_ms - seen > self._window_ms
            ]
            for n in expired:
                del self._seen[n]
        if expired:
            log.debug("Swept %d expired nonces", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __contains__(self, nonce: Nonce) -> bool:
        with self._lock:
            return nonce in self._seen
