"""
Module: valuation_engines.aging
Responsibility:
    Compute the age of an inventory layer and classify it into the
    fresh / aging / old groups used for slow-moving stock analysis.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Purity: no clock access; ``as_of`` is always passed in.
    - Ages are whole days, floored, never negative.
    - The bucket set built from AgeThresholds is contiguous and mutually
      exclusive, so every age falls in exactly one group.

Usage:
    from valuation_engines.aging import calculate_age_days, classify_age

    age = calculate_age_days(received_at, as_of)
    group = classify_age(age, config.age_thresholds)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from valuation_config.schema import AgeThresholds
from valuation_kernel.domain.inventory import AgeGroup

DEFAULT_THRESHOLDS = AgeThresholds()


@dataclass(frozen=True)
class AgeBucket:
    """
    Definition of an aging bucket.

    Guarantees:
        - min_days >= 0.
        - max_days >= min_days (when bounded).
    """

    group: AgeGroup
    min_days: int
    max_days: int | None  # None = unbounded

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        """Check if age falls within this bucket."""
        if age_days < self.min_days:
            return False
        if self.max_days is None:
            return True
        return age_days <= self.max_days


def age_buckets(thresholds: AgeThresholds = DEFAULT_THRESHOLDS) -> tuple[AgeBucket, ...]:
    """Build the three contiguous buckets for the given thresholds."""
    return (
        AgeBucket(AgeGroup.FRESH, 0, thresholds.aging_from_days - 1),
        AgeBucket(AgeGroup.AGING, thresholds.aging_from_days, thresholds.old_from_days - 1),
        AgeBucket(AgeGroup.OLD, thresholds.old_from_days, None),
    )


def calculate_age_days(received_at: datetime, as_of: datetime) -> int:
    """Whole days between receipt and ``as_of``; future receipts count as 0."""
    return max(0, (as_of - received_at).days)


def classify_age(age_days: int, thresholds: AgeThresholds = DEFAULT_THRESHOLDS) -> AgeGroup:
    """Map an age in days to its AgeGroup."""
    for bucket in age_buckets(thresholds):
        if bucket.contains(age_days):
            return bucket.group
    raise ValueError(f"Age {age_days} does not fall into any bucket")
