"""Run lifecycle for allocation jobs: single-flight start, progress, persistence."""

from __future__ import annotations

import math
import time
from dataclasses import replace
from datetime import datetime, timezone
from threading import Event, RLock, Thread
from typing import Optional

from backend.domain.models import (
    AllocationResult,
    AllocationStatus,
    Assignment,
    BlockAvailability,
    PreAllocationCheck,
    RunStatus,
    StudentAllocationRecord,
)
from backend.repository.data_repository import DataRepository
from backend.services.eligibility_service import NoEligibleStudentsError
from backend.services.notification_service import build_allocation_notifications
from backend.services.solver_service import AllocationCancelledError, AllocationSolver
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


STEP_INITIALIZING = "Initializing..."
STEP_FETCHING = "Fetching students and rooms..."
STEP_SAVING = "Saving allocations to database..."
STEP_COMPLETED = "Completed"

PROGRESS_FETCHING = 10
PROGRESS_SAVING = 85
PROGRESS_COMPLETED = 100


class AllocationServiceError(Exception):
    """Base exception for allocation run lifecycle failures."""


class AllocationAlreadyRunningError(AllocationServiceError):
    """Raised when a run is requested while another one is active."""


class AllocationNotRunningError(AllocationServiceError):
    """Raised when cancelling while no run is active."""


class AllocationLaunchError(AllocationServiceError):
    """Raised when the background run thread cannot be started."""


class RoomNotFoundError(AllocationServiceError):
    """Raised when a solved room no longer exists at persistence time."""


class AllocationNotFoundError(AllocationServiceError):
    """Raised when a student has no persisted allocation."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AllocationStateStore:
    """Holds the status snapshot and last result; every write swaps a whole value."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._status = AllocationStatus()
        self._last_result: Optional[AllocationResult] = None

    def reset(self) -> None:
        with self._lock:
            self._status = AllocationStatus()
            self._last_result = None

    def get_status(self) -> AllocationStatus:
        with self._lock:
            return self._status

    def set_status(self, status: AllocationStatus) -> None:
        with self._lock:
            self._status = status

    def try_begin(self, status: AllocationStatus) -> bool:
        """Swap in a running status unless a run is already active."""
        with self._lock:
            if self._status.is_running:
                return False
            self._status = status
            return True

    def get_last_result(self) -> Optional[AllocationResult]:
        with self._lock:
            return self._last_result

    def set_last_result(self, result: AllocationResult) -> None:
        with self._lock:
            self._last_result = result


class AllocationRunHandle:
    """Supervises one background run: join, cooperative cancel, duration."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._cancel_event = Event()
        self._finished = Event()
        self._thread: Optional[Thread] = None
        self._started_at: Optional[float] = None
        self._finished_at: Optional[float] = None

    @property
    def cancel_event(self) -> Event:
        return self._cancel_event

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def duration_seconds(self) -> Optional[float]:
        if self._started_at is None:
            return None
        end = self._finished_at if self._finished_at is not None else time.monotonic()
        return end - self._started_at

    def launch(self, target) -> None:
        self._started_at = time.monotonic()
        self._thread = Thread(
            target=self._supervise,
            args=(target,),
            name=f"allocation-run-{self.run_id}",
            daemon=True,
        )
        self._thread.start()

    def _supervise(self, target) -> None:
        try:
            target(self)
        finally:
            self._finished.set()

    def mark_finished(self) -> None:
        if self._finished_at is None:
            self._finished_at = time.monotonic()

    def cancel(self) -> None:
        self._cancel_event.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the run to finish; True when it finished within the timeout."""
        return self._finished.wait(timeout)


class AllocationRunController:
    """Starts allocation runs in the background and exposes their state.

    There is no automatic timeout: a run that never returns keeps
    ``is_running`` set and blocks later starts until the process restarts.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        solver: Optional[AllocationSolver] = None,
        state: Optional[AllocationStateStore] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._solver = solver or AllocationSolver(repository=self._repository)
        self._state = state or AllocationStateStore()
        self._handle_lock = RLock()
        self._current_handle: Optional[AllocationRunHandle] = None

    @property
    def state(self) -> AllocationStateStore:
        return self._state

    def _new_run_id(self) -> str:
        return f"{self._settings.allocation_run_id_prefix}-{int(time.time() * 1000)}"

    def start(self, run_id: Optional[str] = None) -> AllocationRunHandle:
        resolved_run_id = run_id or self._new_run_id()
        previous_status = self._state.get_status()
        running_status = AllocationStatus(
            is_running=True,
            progress=0,
            current_step=STEP_INITIALIZING,
            start_time=_utc_now_iso(),
            last_run_duration_seconds=previous_status.last_run_duration_seconds,
        )
        if not self._state.try_begin(running_status):
            raise AllocationAlreadyRunningError("Allocation process is already running.")

        handle = AllocationRunHandle(resolved_run_id)
        with self._handle_lock:
            previous_handle = self._current_handle
            self._current_handle = handle
        try:
            handle.launch(self._run_and_finalize)
        except Exception as exc:
            with self._handle_lock:
                self._current_handle = previous_handle
            self._state.set_status(previous_status)
            logger.exception("Allocation run could not be launched | run_id=%s", resolved_run_id)
            raise AllocationLaunchError(f"Allocation process could not be started: {exc}") from exc
        logger.info("Allocation run started | run_id=%s", resolved_run_id)
        return handle

    def cancel(self) -> AllocationRunHandle:
        with self._handle_lock:
            handle = self._current_handle
        if handle is None or handle.done or not self._state.get_status().is_running:
            raise AllocationNotRunningError("No allocation process is currently running.")
        handle.cancel()
        logger.info("Allocation run cancellation requested | run_id=%s", handle.run_id)
        return handle

    def wait_for_completion(self, timeout: Optional[float] = None) -> bool:
        with self._handle_lock:
            handle = self._current_handle
        if handle is None:
            return True
        resolved_timeout = (
            timeout if timeout is not None else self._settings.allocation_join_timeout_seconds
        )
        return handle.join(resolved_timeout)

    def get_status(self) -> AllocationStatus:
        return self._state.get_status()

    def get_last_result(self) -> Optional[AllocationResult]:
        return self._state.get_last_result()

    def _checkpoint(self, progress: int, step: str) -> None:
        self._state.set_status(
            replace(self._state.get_status(), progress=progress, current_step=step)
        )

    def _run_and_finalize(self, handle: AllocationRunHandle) -> None:
        try:
            self._checkpoint(PROGRESS_FETCHING, STEP_FETCHING)
            result = self._solver.solve(handle.run_id, cancel_event=handle.cancel_event)

            if handle.cancelled:
                raise AllocationCancelledError("Allocation run was cancelled.")
            self._checkpoint(PROGRESS_SAVING, STEP_SAVING)
            self._persist(result)

            self._state.set_last_result(result)
            handle.mark_finished()
            self._state.set_status(
                replace(
                    self._state.get_status(),
                    is_running=False,
                    progress=PROGRESS_COMPLETED,
                    current_step=STEP_COMPLETED,
                    last_run_duration_seconds=handle.duration_seconds,
                )
            )
            logger.info(
                "Allocation run completed | run_id=%s | status=%s | duration_seconds=%.3f",
                handle.run_id,
                result.status.value,
                handle.duration_seconds or 0.0,
            )
        except Exception as exc:
            message = str(exc) or "An unknown error occurred."
            if isinstance(
                exc,
                (NoEligibleStudentsError, RoomNotFoundError, AllocationCancelledError),
            ):
                logger.warning("Allocation run failed | run_id=%s | reason=%s", handle.run_id, message)
            else:
                logger.exception("Unexpected allocation run failure | run_id=%s", handle.run_id)
            self._state.set_last_result(
                AllocationResult(
                    id=handle.run_id,
                    timestamp=_utc_now_iso(),
                    status=RunStatus.FAILED,
                    students_allocated=0,
                    students_unallocated=0,
                    total_students=0,
                    errors=(message,),
                )
            )
            handle.mark_finished()
            self._state.set_status(
                replace(
                    self._state.get_status(),
                    is_running=False,
                    current_step=f"Failed: {message}",
                    last_run_duration_seconds=handle.duration_seconds,
                )
            )

    def _persist(self, result: AllocationResult) -> int:
        """Write every solved allocation in one batch; already-allocated students are skipped."""
        if not result.allocations:
            return 0

        room_ids = self._repository.get_room_ids_by_location()
        assignments: list[Assignment] = []
        for view in result.allocations:
            room_id = room_ids.get((view.block, view.room_number))
            if room_id is None:
                raise RoomNotFoundError(f"Room not found: {view.block} {view.room_number}")
            assignments.append(Assignment(student_id=view.student_id, room_id=room_id))

        inserted = self._repository.save_allocations(
            assignments,
            notifications=build_allocation_notifications(result.allocations),
        )
        skipped = len(assignments) - len(inserted)
        logger.info(
            "Allocations persisted | run_id=%s | inserted=%s | skipped_duplicates=%s",
            result.id,
            len(inserted),
            skipped,
        )
        return len(inserted)

    def get_pre_allocation_check(self) -> PreAllocationCheck:
        approved_students = self._repository.count_eligible_students()
        rooms = self._repository.list_room_occupancy()
        available_spaces = sum(room.capacity - room.allocated for room in rooms)

        spaces_by_block: dict[str, int] = {}
        for room in rooms:
            spaces_by_block[room.block] = spaces_by_block.get(room.block, 0) + max(
                0, room.capacity - room.allocated
            )

        block_availability = []
        for block, spaces in spaces_by_block.items():
            estimated = 0
            if available_spaces > 0:
                estimated = int(math.floor(approved_students * spaces / available_spaces + 0.5))
            block_availability.append(
                BlockAvailability(
                    block=block,
                    available_spaces=spaces,
                    estimated_students=estimated,
                )
            )

        warnings: list[str] = []
        if approved_students > available_spaces:
            warnings.append(
                f"Not enough space: {approved_students} eligible students for "
                f"{available_spaces} available spaces."
            )
        if approved_students == 0:
            warnings.append("No eligible students found for allocation.")
        if available_spaces == 0:
            warnings.append("No available hostel spaces found.")

        return PreAllocationCheck(
            approved_students=approved_students,
            available_spaces=available_spaces,
            can_allocate_all=approved_students <= available_spaces,
            warnings=tuple(warnings),
            block_availability=tuple(block_availability),
        )

    def get_student_allocation(self, student_id: int) -> StudentAllocationRecord:
        record = self._repository.get_student_allocation(student_id)
        if record is None:
            raise AllocationNotFoundError("No allocation found for this student.")
        return record

    def list_all_allocations(self) -> list[StudentAllocationRecord]:
        return self._repository.list_all_allocations()
