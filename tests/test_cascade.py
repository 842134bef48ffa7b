# tests for the greedy cascade fallback
# no solver involved, so these are fast and deterministic

from timetable_app.models import Block, ScheduleState, SchoolClass, SchoolSettings, Slot, Teacher
from timetable_app.solver.cascade import best_slot, cascade_move, find_conflicts
from timetable_app.solver.result import REJECTED, UNRESOLVED


def _base_state() -> ScheduleState:
    st = ScheduleState(
        settings=SchoolSettings(max_days=5, max_hours=6),
        teachers=[Teacher(id=1, name="Alice"), Teacher(id=2, name="Bob")],
        classes=[SchoolClass(id=10, name="7A"), SchoolClass(id=11, name="7B")],
    )
    st.blocks = [
        Block(id=1, class_id=10, lesson_code="MAT", teacher_ids=[1], day=1, hour=1),
        Block(id=2, class_id=11, lesson_code="ENG", teacher_ids=[1], day=1, hour=2),
        Block(id=3, class_id=11, lesson_code="BIO", teacher_ids=[2], day=1, hour=1),
    ]
    return st


def test_find_conflicts():
    st = _base_state()
    assert find_conflicts(st.blocks) == []
    st.get_block(1).hour = 2
    pairs = find_conflicts(st.blocks)
    assert [(a.id, b.id) for a, b in pairs] == [(1, 2)]


def test_free_target_moves_only_the_source():
    result = cascade_move(_base_state(), 1, 3, 4)
    assert result.success
    assert [c.block_id for c in result.changes] == [1]
    assert result.stats["iterations"] == 0


def test_displaced_block_is_relocated():
    st = _base_state()
    result = cascade_move(st, 1, 1, 2)
    assert result.success
    assert {c.block_id for c in result.changes} == {1, 2}
    assert "1 other block(s) relocated" in result.message
    result.apply_to(st)
    assert st.get_block(1).slot == Slot(1, 2)
    assert find_conflicts(st.blocks) == []


def test_displaced_block_stays_close_to_home():
    st = _base_state()
    result = cascade_move(st, 1, 1, 2)
    result.apply_to(st)
    # same day keeps the day-shift cost at zero
    assert st.get_block(2).day == 1


def test_validation_is_shared_with_the_resolver():
    st = _base_state()
    st.get_block(1).locked = True
    result = cascade_move(st, 1, 2, 2)
    assert result.failure == REJECTED


def _deadlock() -> ScheduleState:
    # one day, two hours; the displaced block can only go where a locked block sits
    st = ScheduleState(
        settings=SchoolSettings(max_days=1, max_hours=2),
        teachers=[Teacher(id=1, name="Alice"), Teacher(id=2, name="Bob")],
        classes=[SchoolClass(id=10, name="7A"), SchoolClass(id=11, name="7B")],
    )
    st.blocks = [
        Block(id=1, class_id=10, lesson_code="MAT", teacher_ids=[1], day=1, hour=1),
        Block(id=2, class_id=11, lesson_code="ENG", teacher_ids=[1], day=1, hour=2),
        Block(id=3, class_id=11, lesson_code="ART", teacher_ids=[2], day=1, hour=1,
              locked=True),
    ]
    return st


def test_deadlock_is_reported_and_input_untouched():
    st = _deadlock()
    before = st.placements()
    result = cascade_move(st, 1, 1, 2)
    assert not result.success
    assert result.failure == UNRESOLVED
    assert result.remaining_conflicts >= 1
    assert result.changes == []
    assert st.placements() == before


def test_iteration_budget():
    result = cascade_move(_deadlock(), 1, 1, 2, max_iterations=1)
    assert not result.success
    assert result.failure == UNRESOLVED


def test_best_slot_prefers_conflict_free():
    st = _base_state()
    unit = [st.get_block(2)]
    slot = best_slot(st, unit, [b for b in st.blocks if b.placed], (1, 2))
    assert slot is not None
    assert slot != Slot(1, 1)   # class 7B is busy there


def test_sibling_group_moves_together():
    st = ScheduleState(
        settings=SchoolSettings(max_days=2, max_hours=3),
        teachers=[Teacher(id=1, name="Alice"), Teacher(id=2, name="Bob")],
        classes=[SchoolClass(id=10, name="7A"), SchoolClass(id=11, name="7B"),
                 SchoolClass(id=12, name="7C")],
    )
    st.blocks = [
        Block(id=1, class_id=10, lesson_code="PE", teacher_ids=[1], group_id=5, day=1, hour=1),
        Block(id=2, class_id=11, lesson_code="PE", teacher_ids=[2], group_id=5, day=1, hour=1),
        Block(id=3, class_id=12, lesson_code="ENG", teacher_ids=[1], day=1, hour=2),
    ]
    result = cascade_move(st, 1, 1, 2)
    assert result.success
    moved = {c.block_id: (c.new_day, c.new_hour) for c in result.changes}
    assert set(moved) == {1, 2, 3}
    assert moved[1] == moved[2] == (1, 2)
    result.apply_to(st)
    assert find_conflicts(st.blocks) == []
