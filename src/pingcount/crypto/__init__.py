"""Authentication and anonymization primitives.

Public API:
    IdentityDeriver, DerivationMode: one-way visitor identifiers
    SignatureVerifier: Ed25519 ping verification (fails closed)
    PingSigner: client-side key holder that signs pings
    canonical_message: the exact bytes a ping signature covers
"""

from pingcount.crypto.identity import (
    DerivationMode,
    IdentityDeriver,
    generate_secret,
)
from pingcount.crypto.signature import (
    PingSigner,
    SignatureVerifier,
    canonical_message,
)

__all__ = [
    "DerivationMode",
    "IdentityDeriver",
    "PingSigner",
    "SignatureVerifier",
    "canonical_message",
    "generate_secret",
]
