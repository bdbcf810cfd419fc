"""Deployment settings.

Defaults live on the dataclass. Settings.from_env() overlays environment
variables; the CLI overlays its flags on top of that with
dataclasses.replace(). validate() is called once at startup and raises
ConfigurationError for anything that would make the stats inconsistent
later (no secret in keyed mode, nonsense windows, unknown hasher).

Environment variables:
    PINGCOUNT_SECRET          hex server secret (falls back to SERVER_SECRET)
    PINGCOUNT_DERIVATION      "keyed" | "unkeyed"
    PINGCOUNT_DATA_DIR        snapshot directory
    PINGCOUNT_HOST / _PORT    bind address
    PINGCOUNT_PRECISION       HyperLogLog precision p
    PINGCOUNT_HASHER          "sha256" | "blake2b"
    PINGCOUNT_FRESHNESS_S     accepted clock skew in seconds
    PINGCOUNT_TIMESTAMP_UNIT  "s" | "ms"
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from pingcount.analytics.digest import Hasher, get_hasher
from pingcount.crypto.identity import MIN_SECRET_BYTES, DerivationMode
from pingcount.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class Settings:
    # identity
    secret: bytes | None = field(default=None, repr=False)
    derivation: DerivationMode = DerivationMode.KEYED

    # estimators
    precision: int = 10
    hasher_name: str = "sha256"
    filter_capacity: int = 100_000
    filter_error_rate: float = 0.01
    day_filter_capacity: int = 10_000

    # request checks
    freshness_window_s: int = 120
    replay_window_s: int | None = None  # None = 2 x freshness window
    timestamp_unit: str = "s"

    # storage and serving
    data_dir: str = "data"
    host: str = "127.0.0.1"
    port: int = 3000
    persist_interval_s: float = 1.0
    sweep_interval_s: float = 30.0
    rollup_interval_s: float = 60.0

    @property
    def effective_replay_window_s(self) -> int:
        if self.replay_window_s is not None:
            return self.replay_window_s
        return 2 * self.freshness_window_s

    @property
    def hasher(self) -> Hasher:
        return get_hasher(self.hasher_name)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        secret_hex = env.get("PINGCOUNT_SECRET") or env.get("SERVER_SECRET")
        if secret_hex:
            try:
                kwargs["secret"] = bytes.fromhex(secret_hex)
            except ValueError:
                raise ConfigurationError("Server secret must be hex encoded") from None

        if "PINGCOUNT_DERIVATION" in env:
            try:
                kwargs["derivation"] = DerivationMode(env["PINGCOUNT_DERIVATION"])
            except ValueError:
                raise ConfigurationError(
                    f"Unknown derivation mode {env['PINGCOUNT_DERIVATION']!r}"
                ) from None

        for var, name, conv in (
            ("PINGCOUNT_DATA_DIR", "data_dir", str),
            ("PINGCOUNT_HOST", "host", str),
            ("PINGCOUNT_PORT", "port", int),
            ("PINGCOUNT_PRECISION", "precision", int),
            ("PINGCOUNT_HASHER", "hasher_name", str),
            ("PINGCOUNT_FRESHNESS_S", "freshness_window_s", int),
            ("PINGCOUNT_TIMESTAMP_UNIT", "timestamp_unit", str),
        ):
            if var in env:
                try:
                    kwargs[name] = conv(env[var])
                except ValueError:
                    raise ConfigurationError(f"Invalid value for {var}: {env[var]!r}") from None

        return cls(**kwargs)

    def validate(self) -> Settings:
        """Raise ConfigurationError on an unusable configuration."""
        if self.derivation is DerivationMode.KEYED:
            if not self.secret:
                raise ConfigurationError(
                    "Keyed derivation requires PINGCOUNT_SECRET (or SERVER_SECRET)"
                )
            if len(self.secret) < MIN_SECRET_BYTES:
                raise ConfigurationError(
                    f"Server secret must be at least {MIN_SECRET_BYTES} bytes"
                )
            if not any(self.secret):
                raise ConfigurationError("Server secret must not be all zero bytes")
        if not 4 <= self.precision <= 16:
            raise ConfigurationError(f"precision must be 4..16, got {self.precision}")
        get_hasher(self.hasher_name)
        if self.freshness_window_s <= 0:
            raise ConfigurationError("freshness_window_s must be positive")
        if self.effective_replay_window_s < 2 * self.freshness_window_s:
            raise ConfigurationError(
                "replay window must be at least twice the freshness window"
            )
        if self.timestamp_unit not in ("s", "ms"):
            raise ConfigurationError(
                f"timestamp_unit must be 's' or 'ms', got {self.timestamp_unit!r}"
            )
        if not 0.0 < self.filter_error_rate < 1.0:
            raise ConfigurationError("filter_error_rate must be in (0, 1)")
        if self.filter_capacity <= 0 or self.day_filter_capacity <= 0:
            raise ConfigurationError("filter capacities must be positive")
        return self
