"""Domain model for pingcount.

Re-exports the public types for convenient access:
    from pingcount.domain import PingRequest, IngestResult, BucketKey
"""
from pingcount.domain.buckets import (
    BucketKey,
    Granularity,
    day_key,
    trailing_days,
    utc_date,
)
from pingcount.domain.ping import (
    REQUIRED_FIELDS,
    IngestResult,
    IngestState,
    PingRequest,
)
from pingcount.domain.types import (
    Clock,
    Identifier,
    Millis,
    Nonce,
    PublicKey,
    Signature,
    Timestamp,
)

__all__ = [
    "BucketKey",
    "Granularity",
    "day_key",
    "trailing_days",
    "utc_date",
    "REQUIRED_FIELDS",
    "IngestResult",
    "IngestState",
    "PingRequest",
    "Clock",
    "Identifier",
    "Millis",
    "Nonce",
    "PublicKey",
    "Signature",
    "Timestamp",
]
