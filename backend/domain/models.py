"""Domain models for hostel room allocation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RunStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class RegistrationStatus(str, Enum):
    """Canonical lower-case registration states."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


@dataclass(frozen=True)
class EligibleStudent:
    """Snapshot of a student taken at the start of one solver run."""

    student_id: int
    first_name: str
    last_name: str
    matric_number: str
    level: int
    preferred_block: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class RoomState:
    """In-memory room occupancy owned by a single solver run."""

    room_id: int
    block: str
    room_number: str
    capacity: int
    occupants: list[EligibleStudent] = field(default_factory=list)

    @property
    def occupant_count(self) -> int:
        return len(self.occupants)

    @property
    def has_space(self) -> bool:
        return len(self.occupants) < self.capacity


@dataclass(frozen=True)
class Assignment:
    student_id: int
    room_id: int


@dataclass(frozen=True)
class Conflict:
    student_id: int
    student_name: str
    issue: str


@dataclass(frozen=True)
class AllocationView:
    student_id: int
    student_name: str
    matric_number: str
    block: str
    room_number: str


@dataclass(frozen=True)
class AllocationResult:
    """Immutable outcome of one allocation run."""

    id: str
    timestamp: str
    status: RunStatus
    students_allocated: int
    students_unallocated: int
    total_students: int
    errors: tuple[str, ...] = ()
    conflicts: tuple[Conflict, ...] = ()
    allocations: tuple[AllocationView, ...] = ()


@dataclass(frozen=True)
class AllocationStatus:
    is_running: bool = False
    progress: int = 0
    current_step: str = "Idle"
    start_time: Optional[str] = None
    last_run_duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class BlockAvailability:
    block: str
    available_spaces: int
    estimated_students: int


@dataclass(frozen=True)
class PreAllocationCheck:
    approved_students: int
    available_spaces: int
    can_allocate_all: bool
    warnings: tuple[str, ...]
    block_availability: tuple[BlockAvailability, ...]


@dataclass(frozen=True)
class StudentAllocationRecord:
    """Persisted allocation joined with student and room details."""

    allocation_id: int
    student_id: int
    student_name: str
    matric_number: str
    room_id: int
    block: str
    room_number: str
    capacity: int
    allocated_at: str
