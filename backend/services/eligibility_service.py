"""Loads the students and rooms that one allocation run works on."""

from __future__ import annotations

from dataclasses import dataclass

from backend.domain.models import EligibleStudent, RoomState
from backend.repository.data_repository import DataRepository
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class EligibilityError(Exception):
    """Base exception for eligibility fetch failures."""


class NoEligibleStudentsError(EligibilityError):
    """Raised when no student satisfies the allocation preconditions."""


class InvalidSnapshotError(EligibilityError):
    """Raised when a fetched student or room record is malformed."""


@dataclass(frozen=True)
class AllocationInputs:
    students: list[EligibleStudent]
    rooms: list[RoomState]


def _validate_student(student: EligibleStudent) -> None:
    if student.level <= 0:
        raise InvalidSnapshotError(
            f"Student {student.student_id} has invalid level {student.level}"
        )
    if not student.matric_number.strip():
        raise InvalidSnapshotError(f"Student {student.student_id} has no matric number")


def _validate_room(room: RoomState) -> None:
    if room.capacity <= 0:
        raise InvalidSnapshotError(
            f"Room {room.block} {room.room_number} has invalid capacity {room.capacity}"
        )


def fetch_allocation_inputs(repository: DataRepository) -> AllocationInputs:
    """Fetch eligible students and all rooms with their current occupants."""
    students = repository.list_eligible_students()
    if not students:
        raise NoEligibleStudentsError("No eligible students found for allocation.")

    rooms = repository.list_room_states()
    for student in students:
        _validate_student(student)
    for room in rooms:
        _validate_room(room)

    logger.info(
        "Allocation inputs fetched | eligible_students=%s | rooms=%s",
        len(students),
        len(rooms),
    )
    return AllocationInputs(students=students, rooms=rooms)
