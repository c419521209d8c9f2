from __future__ import annotations

from typing import Optional

from backend.domain.constraints import DEFAULT_ALLOCATION_POLICY, ScoringWeights
from backend.domain.models import EligibleStudent, RoomState
from backend.services.matching_service import (
    NO_ROOMS_IN_BLOCKS_ISSUE,
    NO_SUITABLE_ROOM_ISSUE,
    available_rooms_for_blocks,
    categorize_students,
    find_best_room,
    process_cohort,
    score_room,
)


WEIGHTS = ScoringWeights()


def _student(student_id: int, level: int, preferred_block: Optional[str] = None) -> EligibleStudent:
    return EligibleStudent(
        student_id=student_id,
        first_name=f"First{student_id}",
        last_name=f"Last{student_id}",
        matric_number=f"MAT/{student_id:04d}",
        level=level,
        preferred_block=preferred_block,
    )


def _room(room_id: int, block: str, capacity: int, occupants=None) -> RoomState:
    return RoomState(
        room_id=room_id,
        block=block,
        room_number=f"{block}{room_id:02d}",
        capacity=capacity,
        occupants=list(occupants or []),
    )


def test_categorize_students_partitions_by_level_and_keeps_order():
    students = [
        _student(1, 300),
        _student(2, 100),
        _student(3, 500),
        _student(4, 200),
        _student(5, 100),
        _student(6, 400),
    ]

    cohorts, uncategorized = categorize_students(students, DEFAULT_ALLOCATION_POLICY)

    by_name = {cohort.name: [s.student_id for s in cohort.students] for cohort in cohorts}
    assert [cohort.name for cohort in cohorts] == ["freshmen", "finalists", "returning"]
    assert by_name == {"freshmen": [2, 5], "finalists": [3, 6], "returning": [1, 4]}
    assert uncategorized == []


def test_categorize_students_reports_levels_outside_every_cohort():
    cohorts, uncategorized = categorize_students([_student(1, 50)], DEFAULT_ALLOCATION_POLICY)

    assert all(not cohort.students for cohort in cohorts)
    assert [student.student_id for student in uncategorized] == [1]


def test_score_room_applies_all_soft_constraints():
    occupants = [_student(10, 200), _student(11, 200), _student(12, 300)]
    room = _room(1, "B", capacity=4, occupants=occupants)

    score = score_room(_student(1, 200, preferred_block="B"), room, WEIGHTS)

    # 100 + 20 (block) + 2 * 10 (same level) - 3 * 5 (fullness)
    assert score == 125


def test_score_room_excludes_full_room():
    room = _room(1, "A", capacity=1, occupants=[_student(10, 100)])
    assert score_room(_student(1, 100), room, WEIGHTS) is None


def test_scenario_c_scores_follow_processing_order():
    room_b = _room(1, "B", capacity=2)
    prefers_b = _student(1, 200, preferred_block="B")
    prefers_c = _student(2, 300, preferred_block="C")

    assert score_room(prefers_b, room_b, WEIGHTS) == 120
    assert score_room(prefers_c, room_b, WEIGHTS) == 100

    outcome = process_cohort([prefers_b, prefers_c], [room_b], WEIGHTS)

    assert [a.student_id for a in outcome.assignments] == [1, 2]
    assert outcome.conflicts == []
    assert room_b.occupant_count == 2


def test_scenario_c_second_student_sees_fullness_penalty():
    room_b = _room(1, "B", capacity=2, occupants=[_student(1, 200, preferred_block="B")])
    assert score_room(_student(2, 300, preferred_block="C"), room_b, WEIGHTS) == 95


def test_scenario_a_single_bed_two_freshmen():
    room = _room(1, "A", capacity=1)
    students = [_student(1, 100), _student(2, 100)]

    outcome = process_cohort(students, [room], WEIGHTS)

    assert [a.student_id for a in outcome.assignments] == [1]
    assert len(outcome.conflicts) == 1
    assert outcome.conflicts[0].student_id == 2
    assert outcome.conflicts[0].issue == NO_SUITABLE_ROOM_ISSUE


def test_scenario_b_no_rooms_in_designated_blocks():
    outcome = process_cohort([_student(1, 400)], [], WEIGHTS)

    assert outcome.assignments == []
    assert len(outcome.conflicts) == 1
    assert outcome.conflicts[0].issue == NO_ROOMS_IN_BLOCKS_ISSUE
    assert outcome.conflicts[0].student_name == "First1 Last1"


def test_find_best_room_tie_breaks_on_iteration_order():
    first = _room(1, "B", capacity=2)
    second = _room(2, "C", capacity=2)
    assert find_best_room(_student(1, 200), [first, second], WEIGHTS) is first
    assert find_best_room(_student(1, 200), [second, first], WEIGHTS) is second


def test_find_best_room_prefers_level_clustering():
    mixed = _room(1, "A", capacity=4, occupants=[_student(10, 200)])
    same_level = _room(2, "A", capacity=4, occupants=[_student(11, 100)])

    assert find_best_room(_student(1, 100), [mixed, same_level], WEIGHTS) is same_level


def test_find_best_room_picks_room_even_when_score_is_negative():
    crowded = _room(1, "A", capacity=30, occupants=[_student(100 + i, 300) for i in range(25)])
    assert score_room(_student(1, 100), crowded, WEIGHTS) < 0
    assert find_best_room(_student(1, 100), [crowded], WEIGHTS) is crowded


def test_room_filling_mid_cohort_is_excluded_at_scoring_time():
    small = _room(1, "B", capacity=1)
    large = _room(2, "C", capacity=3)
    students = [_student(1, 200), _student(2, 200), _student(3, 200)]

    outcome = process_cohort(students, [small, large], WEIGHTS)

    assert [(a.student_id, a.room_id) for a in outcome.assignments] == [(1, 1), (2, 2), (3, 2)]
    assert small.occupant_count == 1


def test_shared_pool_draws_block_b_before_block_c():
    rooms = [_room(1, "C", capacity=1), _room(2, "B", capacity=1), _room(3, "A", capacity=5)]

    candidates = available_rooms_for_blocks(rooms, ("B", "C"))
    outcome = process_cohort([_student(1, 300), _student(2, 300)], candidates, WEIGHTS)

    assert [room.room_id for room in candidates] == [2, 1]
    assert [(a.student_id, a.room_id) for a in outcome.assignments] == [(1, 2), (2, 1)]


def test_available_rooms_for_blocks_skips_full_rooms():
    full = _room(1, "A", capacity=1, occupants=[_student(10, 100)])
    open_room = _room(2, "A", capacity=2)

    assert available_rooms_for_blocks([full, open_room], ("A",)) == [open_room]


def test_capacity_invariant_holds_after_matcher_pass():
    rooms = [
        _room(1, "B", capacity=2),
        _room(2, "B", capacity=3, occupants=[_student(90, 200)]),
        _room(3, "C", capacity=1),
        _room(4, "C", capacity=2, occupants=[_student(91, 300), _student(92, 300)]),
    ]
    students = [
        _student(i, 200 if i % 2 else 300, preferred_block="C" if i % 3 == 0 else None)
        for i in range(1, 13)
    ]

    outcome = process_cohort(students, available_rooms_for_blocks(rooms, ("B", "C")), WEIGHTS)

    for room in rooms:
        assert room.occupant_count <= room.capacity
    assert len(outcome.assignments) == 5
    assert len(outcome.assignments) + len(outcome.conflicts) == len(students)
