"""Ping request and ingestion outcome records.

A ping arrives as four fields. On the wire (JSON) the key and signature
are hex strings:

    {
        "pub": "<64 hex chars, Ed25519 public key>",
        "ts": 1760000000,
        "nonce": "<random string, >= 16 bytes of entropy>",
        "sig": "<128 hex chars, Ed25519 signature>"
    }

PingRequest.from_payload() turns that into raw bytes and raises
ValidationError for anything missing or undecodable. Length checks on
the key and signature are left to the verifier, which fails closed.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from pingcount.domain.types import Nonce, PublicKey, Signature, Timestamp
from pingcount.errors import ValidationError

REQUIRED_FIELDS = ("pub", "ts", "nonce", "sig")

# Largest integer a JSON number carries exactly in every client
MAX_TIMESTAMP = 2**53


class IngestState(Enum):
    """Stages a ping passes through. Any failed check ends in REJECTED."""

    RECEIVED = auto()
    TIMESTAMP_CHECKED = auto()
    NONCE_CHECKED = auto()
    SIGNATURE_VERIFIED = auto()
    IDENTITY_DERIVED = auto()
    STRUCTURES_UPDATED = auto()
    PERSISTED = auto()
    ACKNOWLEDGED = auto()
    REJECTED = auto()


def _hex_field(payload: dict[str, Any], name: str) -> bytes:
    value = payload[name]
    if not isinstance(value, str):
        raise ValidationError(f"Field {name!r} must be a hex string")
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise ValidationError(f"Field {name!r} is not valid hex") from None


@dataclass(frozen=True, slots=True)
class PingRequest:
    """A decoded, not yet verified, ping."""

    public_key: PublicKey
    timestamp: Timestamp
    nonce: Nonce
    signature: Signature

    def __post_init__(self) -> None:
        if abs(self.timestamp) > MAX_TIMESTAMP:
            raise ValidationError("Field 'ts' is out of range")
        try:
            self.nonce.encode("utf-8")
        except UnicodeEncodeError:
            raise ValidationError("Field 'nonce' is not valid UTF-8") from None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PingRequest:
        if not isinstance(payload, dict):
            raise ValidationError("Ping payload must be a JSON object")
        missing = [f for f in REQUIRED_FIELDS if payload.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        ts = payload["ts"]
        # bool is an int subclass; "true" is not a timestamp
        if isinstance(ts, bool) or not isinstance(ts, (int, str)):
            raise ValidationError("Field 'ts' must be an integer")
        try:
            timestamp = int(ts)
        except ValueError:
            raise ValidationError("Field 'ts' must be an integer") from None

        nonce = payload["nonce"]
        if not isinstance(nonce, str):
            raise ValidationError("Field 'nonce' must be a string")

        return cls(
            public_key=_hex_field(payload, "pub"),
            timestamp=timestamp,
            nonce=nonce,
            signature=_hex_field(payload, "sig"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "pub": self.public_key.hex(),
            "ts": self.timestamp,
            "nonce": self.nonce,
            "sig": self.signature.hex(),
        }


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Acknowledgement of an accepted ping."""

    day: str
    new_user: bool
    dau: int
    all_time: int
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "day": self.day,
            "newUser": self.new_user,
            "dau": self.dau,
            "allTime": self.all_time,
        }
