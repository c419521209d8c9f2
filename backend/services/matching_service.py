"""Cohort categorization and greedy room matching."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from backend.domain.constraints import AllocationPolicy, CohortRule, ScoringWeights
from backend.domain.models import Assignment, Conflict, EligibleStudent, RoomState
from backend.utils.logger import get_logger


logger = get_logger(__name__)


NO_ROOMS_IN_BLOCKS_ISSUE = "No available rooms in designated block(s)."
NO_SUITABLE_ROOM_ISSUE = "Could not find a suitable room matching constraints."
NO_MATCHING_COHORT_ISSUE = "No cohort is configured for this student's level."


@dataclass(frozen=True)
class Cohort:
    rule: CohortRule
    students: tuple[EligibleStudent, ...]

    @property
    def name(self) -> str:
        return self.rule.name


@dataclass
class CohortOutcome:
    assignments: list[Assignment] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)


def categorize_students(
    students: Sequence[EligibleStudent],
    policy: AllocationPolicy,
) -> tuple[list[Cohort], list[EligibleStudent]]:
    """Split students into policy cohorts, keeping fetch order inside each cohort.

    Returns the cohorts in policy order plus the students no rule matched.
    """
    buckets: dict[str, list[EligibleStudent]] = {rule.name: [] for rule in policy.cohorts}
    uncategorized: list[EligibleStudent] = []
    for student in students:
        rule = next((rule for rule in policy.cohorts if rule.matches(student.level)), None)
        if rule is None:
            uncategorized.append(student)
            continue
        buckets[rule.name].append(student)

    cohorts = [
        Cohort(rule=rule, students=tuple(buckets[rule.name]))
        for rule in policy.cohorts
    ]
    return cohorts, uncategorized


def available_rooms_for_blocks(
    rooms: Iterable[RoomState],
    blocks: Sequence[str],
) -> list[RoomState]:
    """Rooms with space in the given blocks, grouped block by block."""
    room_list = list(rooms)
    return [
        room
        for block in blocks
        for room in room_list
        if room.block == block and room.has_space
    ]


def score_room(
    student: EligibleStudent,
    room: RoomState,
    weights: ScoringWeights,
) -> Optional[int]:
    """Score a room for a student against current occupancy; None if the room is full."""
    if room.occupant_count >= room.capacity:
        return None

    score = weights.base_score
    if student.preferred_block is not None and room.block == student.preferred_block:
        score += weights.preferred_block_bonus
    same_level = sum(1 for occupant in room.occupants if occupant.level == student.level)
    score += same_level * weights.same_level_bonus
    score -= room.occupant_count * weights.occupant_penalty
    return score


def find_best_room(
    student: EligibleStudent,
    rooms: Sequence[RoomState],
    weights: ScoringWeights,
) -> Optional[RoomState]:
    # First room with the strictly highest score wins.
    best_room: Optional[RoomState] = None
    best_score: Optional[int] = None
    for room in rooms:
        score = score_room(student, room, weights)
        if score is None:
            continue
        if best_score is None or score > best_score:
            best_room = room
            best_score = score
    return best_room


def process_cohort(
    students: Sequence[EligibleStudent],
    candidate_rooms: Sequence[RoomState],
    weights: ScoringWeights,
) -> CohortOutcome:
    """Place students one at a time, updating room occupancy as each is assigned."""
    outcome = CohortOutcome()
    if not candidate_rooms:
        outcome.conflicts.extend(
            Conflict(
                student_id=student.student_id,
                student_name=student.full_name,
                issue=NO_ROOMS_IN_BLOCKS_ISSUE,
            )
            for student in students
        )
        return outcome

    for student in students:
        best_room = find_best_room(student, candidate_rooms, weights)
        if best_room is None:
            outcome.conflicts.append(
                Conflict(
                    student_id=student.student_id,
                    student_name=student.full_name,
                    issue=NO_SUITABLE_ROOM_ISSUE,
                )
            )
            continue
        outcome.assignments.append(
            Assignment(student_id=student.student_id, room_id=best_room.room_id)
        )
        best_room.occupants.append(student)
        logger.debug(
            "Student placed | student_id=%s | room=%s %s",
            student.student_id,
            best_room.block,
            best_room.room_number,
        )
    return outcome
