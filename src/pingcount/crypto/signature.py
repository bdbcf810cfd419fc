"""Ed25519 ping signatures: canonical message, verification, client signer.

The canonical message is the raw public key bytes, then the decimal
timestamp, then the nonce, concatenated with no delimiter:

    public_key (32 bytes) || str(ts).encode("ascii") || nonce.encode("utf-8")

Client and server must agree on this byte for byte or every signature
fails. The public key has a fixed length, so only the timestamp/nonce
boundary is implicit; a digit-leading nonce could in principle shift
digits between the two, which is why nonces are hex strings of fixed
length generated by PingSigner.
"""
from __future__ import annotations

import secrets

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from pingcount.domain.ping import PingRequest
from pingcount.domain.types import Nonce, PublicKey, Signature

PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64
NONCE_BYTES = 16


def canonical_message(public_key: PublicKey, timestamp: int, nonce: Nonce) -> bytes:
    return public_key + str(timestamp).encode("ascii") + nonce.encode("utf-8")


class SignatureVerifier:
    """Stateless Ed25519 verifier. verify() never raises."""

    def verify(
        self, message: bytes, signature: Signature, public_key: PublicKey
    ) -> bool:
        if len(public_key) != PUBLIC_KEY_BYTES or len(signature) != SIGNATURE_BYTES:
            return False
        try:
            key = Ed25519PublicKey.from_public_bytes(public_key)
            key.verify(signature, message)
        except (InvalidSignature, ValueError):
            return False
        return True

    def verify_ping(self, ping: PingRequest) -> bool:
        message = canonical_message(ping.public_key, ping.timestamp, ping.nonce)
        return self.verify(message, ping.signature, ping.public_key)


class PingSigner:
    """Client side: holds a private key and produces signed pings."""

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._key = private_key
        self._public = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @classmethod
    def generate(cls) -> PingSigner:
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, raw: bytes) -> PingSigner:
        return cls(Ed25519PrivateKey.from_private_bytes(raw))

    @property
    def public_key(self) -> PublicKey:
        return self._public

    def private_bytes(self) -> bytes:
        return self._key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def sign(self, message: bytes) -> Signature:
        return self._key.sign(message)

    def sign_ping(self, timestamp: int, nonce: Nonce | None = None) -> PingRequest:
        """Build a signed ping. A random 16-byte hex nonce is used by default."""
        if nonce is None:
            nonce = secrets.token_hex(NONCE_BYTES)
        message = canonical_message(self._public, timestamp, nonce)
        return PingRequest(
            public_key=self._public,
            timestamp=timestamp,
            nonce=nonce,
            signature=self.sign(message),
        )
