"""Shared type aliases used across the package."""
from __future__ import annotations

from typing import Callable, TypeAlias

PublicKey: TypeAlias = bytes       # raw Ed25519 public key, 32 bytes
Signature: TypeAlias = bytes       # raw Ed25519 signature, 64 bytes
Identifier: TypeAlias = bytes      # one-way derived visitor identifier
Nonce: TypeAlias = str
Timestamp: TypeAlias = int         # client clock, seconds or ms since the epoch
Millis: TypeAlias = int            # Unix epoch milliseconds
Clock: TypeAlias = Callable[[], float]  # returns Unix epoch seconds
