"""Batch allocation solver: eligibility -> cohorts -> greedy matching -> result."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Event
from typing import Optional

from backend.domain.constraints import (
    DEFAULT_ALLOCATION_POLICY,
    AllocationPolicy,
    validate_allocation_policy,
)
from backend.domain.models import (
    AllocationResult,
    AllocationView,
    Assignment,
    Conflict,
    RunStatus,
)
from backend.repository.data_repository import DataRepository
from backend.services.eligibility_service import fetch_allocation_inputs
from backend.services.matching_service import (
    NO_MATCHING_COHORT_ISSUE,
    available_rooms_for_blocks,
    categorize_students,
    process_cohort,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AllocationCancelledError(Exception):
    """Raised when a run is cancelled between cohorts."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AllocationSolver:
    """Runs one allocation pass without persisting anything."""

    def __init__(
        self,
        repository: DataRepository,
        policy: Optional[AllocationPolicy] = None,
    ) -> None:
        self._repository = repository
        self._policy = policy or DEFAULT_ALLOCATION_POLICY
        validate_allocation_policy(self._policy)

    @property
    def policy(self) -> AllocationPolicy:
        return self._policy

    def solve(self, run_id: str, cancel_event: Optional[Event] = None) -> AllocationResult:
        conflicts: list[Conflict] = []
        assignments: list[Assignment] = []

        inputs = fetch_allocation_inputs(self._repository)
        rooms_by_id = {room.room_id: room for room in inputs.rooms}

        cohorts, uncategorized = categorize_students(inputs.students, self._policy)
        if uncategorized:
            logger.warning(
                "Students outside every cohort | run_id=%s | student_ids=%s",
                run_id,
                [student.student_id for student in uncategorized],
            )
            conflicts.extend(
                Conflict(
                    student_id=student.student_id,
                    student_name=student.full_name,
                    issue=NO_MATCHING_COHORT_ISSUE,
                )
                for student in uncategorized
            )

        for cohort in cohorts:
            if cancel_event is not None and cancel_event.is_set():
                raise AllocationCancelledError("Allocation run was cancelled.")
            candidate_rooms = available_rooms_for_blocks(inputs.rooms, cohort.rule.blocks)
            outcome = process_cohort(cohort.students, candidate_rooms, self._policy.scoring)
            assignments.extend(outcome.assignments)
            conflicts.extend(outcome.conflicts)
            logger.info(
                "Cohort processed | run_id=%s | cohort=%s | blocks=%s | students=%s | "
                "candidate_rooms=%s | assigned=%s | conflicts=%s",
                run_id,
                cohort.name,
                ",".join(cohort.rule.blocks),
                len(cohort.students),
                len(candidate_rooms),
                len(outcome.assignments),
                len(outcome.conflicts),
            )

        snapshot_by_id = {student.student_id: student for student in inputs.students}
        display_by_id = self._repository.get_student_display_records(
            [assignment.student_id for assignment in assignments]
        )
        allocations: list[AllocationView] = []
        for assignment in assignments:
            room = rooms_by_id[assignment.room_id]
            display = display_by_id.get(assignment.student_id)
            if display is None:
                snapshot = snapshot_by_id[assignment.student_id]
                student_name = snapshot.full_name
                matric_number = snapshot.matric_number
            else:
                student_name = display.student_name
                matric_number = display.matric_number
            allocations.append(
                AllocationView(
                    student_id=assignment.student_id,
                    student_name=student_name,
                    matric_number=matric_number,
                    block=room.block,
                    room_number=room.room_number,
                )
            )

        total_students = len(inputs.students)
        status = RunStatus.COMPLETED if not conflicts else RunStatus.PARTIAL
        result = AllocationResult(
            id=run_id,
            timestamp=_utc_now_iso(),
            status=status,
            students_allocated=len(assignments),
            students_unallocated=len(conflicts) + (total_students - len(assignments) - len(conflicts)),
            total_students=total_students,
            conflicts=tuple(conflicts),
            allocations=tuple(allocations),
        )
        logger.info(
            "Allocation solve completed | run_id=%s | status=%s | allocated=%s | "
            "unallocated=%s | total=%s",
            run_id,
            result.status.value,
            result.students_allocated,
            result.students_unallocated,
            result.total_students,
        )
        return result
