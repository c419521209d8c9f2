"""Builds in-app notifications for students placed by an allocation run."""

from __future__ import annotations

from typing import Iterable

from backend.domain.models import AllocationView


ALLOCATION_NOTIFICATION_TITLE = "Room Allocated"


def build_allocation_notifications(
    allocations: Iterable[AllocationView],
) -> dict[int, tuple[str, str]]:
    """Return (title, message) per student id, persisted alongside the allocation row."""
    return {
        view.student_id: (
            ALLOCATION_NOTIFICATION_TITLE,
            f"Hello {view.student_name}, you have been allocated to "
            f"Block {view.block}, Room {view.room_number}.",
        )
        for view in allocations
    }
