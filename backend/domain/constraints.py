"""Cohort policy and scoring rules for room allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class PolicyValidationError(ValueError):
    """Raised when an allocation policy is internally inconsistent."""


@dataclass(frozen=True)
class ScoringWeights:
    base_score: int = 100
    preferred_block_bonus: int = 20
    same_level_bonus: int = 10
    occupant_penalty: int = 5


@dataclass(frozen=True)
class CohortRule:
    """Level band (inclusive bounds, open-ended when max_level is None) bound to blocks."""

    name: str
    min_level: int
    max_level: Optional[int]
    blocks: tuple[str, ...]

    def matches(self, level: int) -> bool:
        if level < self.min_level:
            return False
        return self.max_level is None or level <= self.max_level


@dataclass(frozen=True)
class AllocationPolicy:
    """Ordered cohort rules; cohorts are processed in declaration order."""

    cohorts: tuple[CohortRule, ...]
    scoring: ScoringWeights = field(default_factory=ScoringWeights)


FRESHMEN_LEVEL = 100
FINALIST_LEVEL = 400

DEFAULT_ALLOCATION_POLICY = AllocationPolicy(
    cohorts=(
        CohortRule(name="freshmen", min_level=FRESHMEN_LEVEL, max_level=FRESHMEN_LEVEL, blocks=("A",)),
        CohortRule(name="finalists", min_level=FINALIST_LEVEL, max_level=None, blocks=("D",)),
        CohortRule(
            name="returning",
            min_level=FRESHMEN_LEVEL + 1,
            max_level=FINALIST_LEVEL - 1,
            blocks=("B", "C"),
        ),
    ),
)


def _ranges_overlap(first: CohortRule, second: CohortRule) -> bool:
    first_max = first.max_level if first.max_level is not None else float("inf")
    second_max = second.max_level if second.max_level is not None else float("inf")
    return first.min_level <= second_max and second.min_level <= first_max


def validate_allocation_policy(policy: AllocationPolicy) -> None:
    if not policy.cohorts:
        raise PolicyValidationError("policy must define at least one cohort")

    names = [cohort.name for cohort in policy.cohorts]
    if len(set(names)) != len(names):
        raise PolicyValidationError("cohort names must be unique")

    for cohort in policy.cohorts:
        if not cohort.name.strip():
            raise PolicyValidationError("cohort name must be non-empty")
        if cohort.max_level is not None and cohort.max_level < cohort.min_level:
            raise PolicyValidationError(
                f"cohort '{cohort.name}' max_level must be >= min_level"
            )
        if not cohort.blocks:
            raise PolicyValidationError(f"cohort '{cohort.name}' must list at least one block")
        if any(not block.strip() for block in cohort.blocks):
            raise PolicyValidationError(f"cohort '{cohort.name}' has an empty block label")

    for index, cohort in enumerate(policy.cohorts):
        for other in policy.cohorts[index + 1:]:
            if _ranges_overlap(cohort, other):
                raise PolicyValidationError(
                    f"cohorts '{cohort.name}' and '{other.name}' have overlapping level ranges"
                )

    if policy.scoring.base_score <= 0:
        raise PolicyValidationError("base_score must be > 0")
    if policy.scoring.occupant_penalty < 0:
        raise PolicyValidationError("occupant_penalty must be >= 0")
