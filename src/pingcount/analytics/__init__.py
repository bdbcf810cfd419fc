"""Probabilistic counting structures.

Public API:
    Hasher: named digest function shared by every structure
    HyperLogLog: cardinality estimation (1 KB per counter at p=10)
    BloomFilter: single-tier membership testing
    ScalableBloomFilter: membership testing that grows in tiers
    RetentionEstimator: cohort overlap by inclusion-exclusion
"""

from pingcount.analytics.bloom import BloomFilter, ScalableBloomFilter
from pingcount.analytics.digest import (
    BLAKE2B,
    DEFAULT_HASHER,
    SHA256,
    Hasher,
    get_hasher,
    register_hasher,
)
from pingcount.analytics.hyperloglog import HyperLogLog
from pingcount.analytics.retention import (
    RetentionEstimator,
    RetentionRecord,
    estimate_overlap,
)

__all__ = [
    "BLAKE2B",
    "DEFAULT_HASHER",
    "SHA256",
    "BloomFilter",
    "Hasher",
    "HyperLogLog",
    "RetentionEstimator",
    "RetentionRecord",
    "ScalableBloomFilter",
    "estimate_overlap",
    "get_hasher",
    "register_hasher",
]
