"""One-way derivation of visitor identifiers from public keys.

The public key a client signs with is stable per install, so it would be
a perfect tracking identifier. It is never stored. Every structure sees
only derive(public_key), which cannot be turned back into the key.

Two deployment modes, fixed for the lifetime of the data:

KEYED
    HMAC-SHA256(server_secret, public_key). Someone holding the persisted
    snapshots and a list of candidate public keys still cannot test which
    keys were seen, because they cannot compute the identifiers without
    the secret.

UNKEYED
    SHA-256(tag || public_key). Anyone can recompute identifiers, which
    makes published raw data auditable, but also makes it open to
    dictionary enumeration of known keys.

Mixing modes breaks identity across buckets (the same visitor would
count twice), so the mode lives in Settings and is never switched on the
fly.
"""
from __future__ import annotations

import hashlib
import hmac
import os
from enum import Enum

from pingcount.domain.types import Identifier, PublicKey
from pingcount.errors import ConfigurationError

MIN_SECRET_BYTES = 16

# Domain separation for the unkeyed mode, so the identifier of a key is
# not simply its SHA-256 fingerprint.
_UNKEYED_TAG = b"pingcount/identity/v1\x00"


class DerivationMode(Enum):
    KEYED = "keyed"
    UNKEYED = "unkeyed"


class IdentityDeriver:
    """Maps a public key to a 32-byte one-way identifier.

    Args:
        mode: KEYED (default) or UNKEYED.
        secret: Server secret, required in KEYED mode (>= 16 bytes).
    """

    def __init__(
        self,
        mode: DerivationMode = DerivationMode.KEYED,
        secret: bytes | None = None,
    ) -> None:
        if mode is DerivationMode.KEYED:
            if not secret:
                raise ConfigurationError("Keyed identity derivation needs a server secret")
            if len(secret) < MIN_SECRET_BYTES:
                raise ConfigurationError(
                    f"Server secret must be at least {MIN_SECRET_BYTES} bytes, "
                    f"got {len(secret)}"
                )
        self._mode = mode
        self._secret = secret if mode is DerivationMode.KEYED else None

    @property
    def mode(self) -> DerivationMode:
        return self._mode

    def derive(self, public_key: PublicKey) -> Identifier:
        if self._secret is not None:
            return hmac.new(self._secret, public_key, hashlib.sha256).digest()
        return hashlib.sha256(_UNKEYED_TAG + public_key).digest()


def generate_secret() -> bytes:
    """Generate a 32-byte random server secret."""
    return os.urandom(32)
