# tests for the incremental edit resolver (focused and free scopes)

import pytest

from timetable_app.errors import EditConflict, EditRejected
from timetable_app.models import (Block, Room, RunParams, ScheduleState, SchoolClass,
    SchoolSettings, Slot, SlotState, SolverParams, Teacher, Weights)
from timetable_app.solver import edit
from timetable_app.solver.cascade import find_conflicts
from timetable_app.solver.edit import (FocusedScope, FreeScope, get_scope, resolve_edit,
    validate_edit)
from timetable_app.solver.result import REJECTED


def _params(**kw) -> RunParams:
    return RunParams(solver=SolverParams(max_time_in_seconds=10, num_workers=1), **kw)


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


def test_move_to_free_slot_changes_only_the_source():
    st = _base_state()
    result = resolve_edit(st, 1, 2, 3, params=_params())
    assert result.success
    assert len(result.changes) == 1
    c = result.changes[0]
    assert (c.block_id, c.old_day, c.old_hour, c.new_day, c.new_hour) == (1, 1, 1, 2, 3)
    assert "moved by user" in c.description
    assert result.provenance == "manual-edit"


def test_state_is_untouched_until_applied():
    st = _base_state()
    result = resolve_edit(st, 1, 2, 3, params=_params())
    assert st.get_block(1).slot == Slot(1, 1)
    result.apply_to(st)
    assert st.get_block(1).slot == Slot(2, 3)


def test_move_and_move_back():
    st = _base_state()
    resolve_edit(st, 1, 2, 3, params=_params()).apply_to(st)
    back = resolve_edit(st, 1, 1, 1, params=_params())
    assert back.success
    back.apply_to(st)
    assert st.get_block(1).slot == Slot(1, 1)
    assert st.get_block(2).slot == Slot(1, 2)


def test_already_at_target():
    result = resolve_edit(_base_state(), 1, 1, 1, params=_params())
    assert result.success
    assert result.changes == []


def test_focused_scope_displaces_clashing_block():
    st = _base_state()
    result = resolve_edit(st, 1, 1, 2, params=_params())
    assert result.success
    moved = {c.block_id for c in result.changes}
    assert moved == {1, 2}
    result.apply_to(st)
    assert st.get_block(1).slot == Slot(1, 2)
    assert find_conflicts(st.blocks) == []


def test_focused_movable_set():
    st = _base_state()
    movable = FocusedScope().movable(st.get_block(1), Slot(1, 2), st.blocks)
    # block 2 clashes on Alice; block 3 shares class 7B with it
    assert movable == {2, 3}


def test_free_scope_movable_set():
    st = _base_state()
    st.blocks.append(Block(id=4, class_id=10, lesson_code="ART", teacher_ids=[2],
                           locked=True, day=5, hour=5))
    assert FreeScope().movable(st.get_block(1), Slot(1, 2), st.blocks) == {2, 3}


def test_unknown_block_rejected():
    result = resolve_edit(_base_state(), 42, 1, 1)
    assert not result.success
    assert result.failure == REJECTED
    with pytest.raises(EditRejected):
        result.raise_for_status()


def test_locked_block_rejected():
    st = _base_state()
    st.get_block(1).locked = True
    result = resolve_edit(st, 1, 2, 3)
    assert result.failure == REJECTED
    assert "locked" in result.message


def test_locked_sibling_rejected():
    st = _base_state()
    st.get_block(1).group_id = 8
    st.blocks.append(Block(id=4, class_id=11, lesson_code="PE", teacher_ids=[2],
                           group_id=8, locked=True, day=1, hour=1))
    st.get_block(3).unplace()
    result = resolve_edit(st, 1, 2, 3)
    assert result.failure == REJECTED
    assert "sibling" in result.message


def test_outside_grid_rejected():
    result = resolve_edit(_base_state(), 1, 6, 1)
    assert result.failure == REJECTED
    assert "grid" in result.message


def test_closed_teacher_slot_rejected():
    st = _base_state()
    st.get_teacher(1).close(2, [3])
    result = resolve_edit(st, 1, 2, 3)
    assert result.failure == REJECTED
    assert "Teacher 'Alice' is closed" in result.message


def test_closed_school_slot_rejected():
    st = _base_state()
    st.settings.availability[Slot(2, 3)] = SlotState.CLOSED
    result = resolve_edit(st, 1, 2, 3)
    assert result.failure == REJECTED
    assert "school is closed" in result.message


def test_occupied_slot_does_not_block():
    st = _base_state()
    st.get_teacher(1).availability[Slot(2, 3)] = SlotState.OCCUPIED
    assert resolve_edit(st, 1, 2, 3, params=_params()).success


def test_locked_conflict_rejected():
    st = _base_state()
    st.get_block(2).locked = True
    result = validate_edit(st, 1, Slot(1, 2))
    assert result is not None
    assert result.failure == REJECTED
    assert "locked lesson 'ENG' (#2)" in result.message


def test_group_locked_conflict_rejected():
    st = _base_state()
    st.classes.append(SchoolClass(id=12, name="7C"))
    st.get_block(2).group_id = 9
    st.blocks.append(Block(id=4, class_id=12, lesson_code="PE", teacher_ids=[2],
                           group_id=9, locked=True, day=1, hour=2))
    result = validate_edit(st, 1, Slot(1, 2))
    assert result is not None
    assert result.failure == REJECTED
    assert "group-locked lesson 'ENG' (#2)" in result.message
    assert resolve_edit(st, 1, 1, 2, params=_params()).failure == REJECTED


def _needs_free_scope() -> ScheduleState:
    # one day, two hours: block 3 must step aside, but it shares nothing
    # with the source and only a room with the displaced block
    st = ScheduleState(
        settings=SchoolSettings(max_days=1, max_hours=2),
        teachers=[Teacher(id=1, name="Alice"), Teacher(id=2, name="Bob"),
                  Teacher(id=3, name="Carol")],
        classes=[SchoolClass(id=10, name="7A"), SchoolClass(id=11, name="7B"),
                 SchoolClass(id=12, name="7C")],
        rooms=[Room(id=100, name="Lab")],
    )
    st.blocks = [
        Block(id=1, class_id=10, lesson_code="MAT", teacher_ids=[1], day=1, hour=1),
        Block(id=2, class_id=11, lesson_code="CHE", teacher_ids=[1], room_ids=[100],
              day=1, hour=2),
        Block(id=3, class_id=12, lesson_code="PHY", teacher_ids=[3], room_ids=[100],
              day=1, hour=1),
    ]
    return st


def test_focused_scope_can_fail():
    st = _needs_free_scope()
    result = resolve_edit(st, 1, 1, 2, FocusedScope(), _params())
    assert not result.success
    assert result.failure == "INFEASIBLE"
    assert "Try the free scope" in result.message
    assert st.get_block(1).slot == Slot(1, 1)
    with pytest.raises(EditConflict):
        result.raise_for_status()


def test_free_scope_succeeds_where_focused_fails():
    st = _needs_free_scope()
    result = resolve_edit(st, 1, 1, 2, FreeScope(), _params())
    assert result.success
    assert {c.block_id for c in result.changes} == {1, 2, 3}
    result.apply_to(st)
    assert find_conflicts(st.blocks) == []


def test_get_scope():
    assert isinstance(get_scope("Free"), FreeScope)
    with pytest.raises(ValueError):
        get_scope("everything")


def _siblings() -> ScheduleState:
    # blocks 1 and 2 are one group; block 3 holds Alice's second hour
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
    return st


def test_sibling_group_moves_together():
    st = _siblings()
    result = resolve_edit(st, 1, 1, 2, params=_params())
    assert result.success
    moved = {c.block_id: (c.new_day, c.new_hour) for c in result.changes}
    assert set(moved) == {1, 2, 3}
    assert moved[1] == moved[2] == (1, 2)
    result.apply_to(st)
    assert find_conflicts(st.blocks) == []


def _twins() -> ScheduleState:
    st = _base_state()
    st.blocks = [
        Block(id=1, class_id=10, lesson_code="MAT", teacher_ids=[1], day=1, hour=1),
        Block(id=2, class_id=10, lesson_code="MAT", teacher_ids=[1], day=2, hour=1),
    ]
    return st


def test_same_day_repeat_is_allowed_when_unavoidable():
    st = _twins()
    st.get_block(2).locked = True
    result = resolve_edit(st, 1, 2, 3, params=_params())
    assert result.success
    assert [c.block_id for c in result.changes] == [1]


def test_same_day_repeat_is_penalised():
    result = resolve_edit(_twins(), 1, 2, 3, params=_params())
    assert result.success
    moved = {c.block_id: c for c in result.changes}
    assert set(moved) == {1, 2}
    assert moved[2].new_day != 2


def test_same_day_repeat_without_penalty_leaves_twin_alone():
    params = _params(weights=Weights(same_day_duplicate=0))
    result = resolve_edit(_twins(), 1, 2, 3, params=params)
    assert result.success
    assert [c.block_id for c in result.changes] == [1]


def test_edit_timeout(monkeypatch):
    monkeypatch.setattr(edit, "status_str", lambda status: "TIMEOUT")
    st = _base_state()
    result = resolve_edit(st, 1, 2, 3, params=_params())
    assert not result.success
    assert result.failure == "TIMEOUT"
    assert "could not be resolved within the time limit" in result.message
    assert st.get_block(1).slot == Slot(1, 1)
    with pytest.raises(EditConflict):
        result.raise_for_status()
