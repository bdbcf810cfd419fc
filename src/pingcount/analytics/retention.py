"""Cohort retention from two HyperLogLog estimators.

HyperLogLog supports union (merge) but not intersection, so the number of
cohort members who came back is recovered by inclusion-exclusion:

    |A n B| ~= |A| + |B| - |A u B|

The result is an expected count, never a list of who overlapped. Its
relative error compounds the error of three estimates, and for small or
disjoint sets the noise can push it below zero, so it is clamped into
[0, min(|A|, |B|)].
"""
from __future__ import annotations

from dataclasses import dataclass

from pingcount.analytics.hyperloglog import HyperLogLog


@dataclass(frozen=True, slots=True)
class RetentionRecord:
    """Estimated retention of one cohort."""

    cohort_size: float
    returned_users: float
    rate: float  # percent, 0..100

    def to_dict(self) -> dict[str, float]:
        return {
            "cohortSize": round(self.cohort_size),
            "returnedUsers": round(self.returned_users),
            "rate": round(self.rate, 2),
        }


def estimate_overlap(a: HyperLogLog, b: HyperLogLog) -> float:
    """Estimated size of the intersection of the two underlying sets."""
    size_a = a.estimate()
    size_b = b.estimate()
    union = a.union(b).estimate()
    overlap = size_a + size_b - union
    return min(max(overlap, 0.0), size_a, size_b)


class RetentionEstimator:
    """Turns (cohort, returned) estimator pairs into RetentionRecords."""

    def estimate(self, cohort: HyperLogLog, returned: HyperLogLog) -> RetentionRecord:
        cohort_size = cohort.estimate()
        overlap = estimate_overlap(cohort, returned)
        rate = overlap / cohort_size * 100.0 if cohort_size > 0 else 0.0
        return RetentionRecord(
            cohort_size=cohort_size,
            returned_users=overlap,
            rate=rate,
        )
