"""
Incremental edit resolver: move one block, repair whatever it displaces.

The moved block (and its sibling group) is pinned to the requested slot.
A scope strategy decides which other blocks may move:

  FocusedScope  blocks that clash with the source at the target, plus
                anything sharing a class or teacher with them. Small model.
  FreeScope     every unlocked block. Bigger model, broader reshuffles.

Movable blocks get their current slot plus every statically available
slot; everything else stays pinned where it is. Resource exclusivity is
hard. Same class + lesson on one day is soft here, because existing
schedules may already break it and a hard rule would block legitimate
repairs.

Objective:
  stay               * blocks that leave their original slot
  same_day_duplicate * extra same-lesson placements per class-day

validate_edit() is the cheap synchronous gate shared with the greedy
cascade. It always runs before any model work starts.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, Set

from timetable_app.models import Block, RunParams, ScheduleState, Slot, SlotState
from timetable_app.solver.builder import ScheduleModel, make_solver, status_str
from timetable_app.solver.occupancy import blocks_conflict, find_conflict, group_units, same_group
from timetable_app.solver.result import (REJECTED, SUCCESS_STATUSES, BlockChange,
    EditResult)

logger = logging.getLogger(__name__)


class ScopeStrategy(Protocol):
    name: str

    def movable(self, source: Block, target: Slot, blocks: Sequence[Block]) -> Set[int]:
        ...


def _candidates(source: Block, blocks: Sequence[Block]) -> List[Block]:
    return [b for b in blocks
            if b.id != source.id and not same_group(b, source)
            and b.placed and not b.locked]


class FocusedScope:
    name = "focused"

    def movable(self, source: Block, target: Slot, blocks: Sequence[Block]) -> Set[int]:
        movers = [b for b in blocks if b.id == source.id or same_group(b, source)]
        free_classes:  Set[int] = set()
        free_teachers: Set[int] = set()
        for b in _candidates(source, blocks):
            clash = any(blocks_conflict(m, b, at_a=target) for m in movers)
            twin  = any(b.class_id == m.class_id and b.lesson_code == m.lesson_code
                        and b.day == target.day for m in movers)
            if clash or twin:
                free_classes.add(b.class_id)
                free_teachers.update(b.teacher_ids)
        return {
            b.id for b in _candidates(source, blocks)
            if b.class_id in free_classes or free_teachers.intersection(b.teacher_ids)
        }


class FreeScope:
    name = "free"

    def movable(self, source: Block, target: Slot, blocks: Sequence[Block]) -> Set[int]:
        return {b.id for b in _candidates(source, blocks)}


SCOPES = {"focused": FocusedScope, "free": FreeScope}


def get_scope(name: str) -> ScopeStrategy:
    try:
        return SCOPES[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown edit scope: {name!r}") from None


def _reject(message: str) -> EditResult:
    logger.info("Edit rejected: %s", message)
    return EditResult(success=False, message=message, failure=REJECTED)


def validate_edit(state: ScheduleState, block_id: int, target: Slot) -> Optional[EditResult]:
    """
    Cheap checks before any model is built. Returns a finished EditResult
    (rejection, or success with no changes) or None when solving is needed.
    """
    source = state.get_block(block_id)
    if source is None:
        return _reject(f"Block {block_id} does not exist.")
    if source.locked:
        return _reject(f"Block {source.label} is locked and cannot be moved.")

    movers = state.siblings(source)
    mover_ids = {b.id for b in movers}
    locked_sibling = next((b for b in movers if b.locked), None)
    if locked_sibling is not None:
        return _reject(f"Block {source.label} is tied to locked sibling "
                       f"{locked_sibling.label}.")

    s = state.settings
    for b in movers:
        if not state.in_grid(b.duration, target.day, target.hour):
            return _reject(
                f"Block {b.label} ({b.duration}h) does not fit at day {target.day} "
                f"hour {target.hour}; the grid has {s.max_days} day(s) of "
                f"{s.max_hours} hour(s).")

    # only administrative closure blocks; OCCUPIED is a conflict to resolve
    for b in movers:
        for h in b.hours(target.hour):
            if not s.is_open(target.day, h):
                return _reject(f"The school is closed on day {target.day} hour {h}.")
            for res in state.resources_of(b):
                if res.state_at(target.day, h) is SlotState.CLOSED:
                    return _reject(f"{res.kind.value.capitalize()} '{res.name}' is "
                                   f"closed on day {target.day} hour {h}.")

    if all(b.slot == target for b in movers):
        return EditResult(success=True, message="Block is already at the target slot.")

    # a block tied to a locked sibling is pinned by the resolver as well
    held = {b.id for g in state.groups().values() if any(b.locked for b in g) for b in g}
    held.update(b.id for b in state.blocks if b.locked)
    for other in state.blocks:
        if other.id not in held or not other.placed or other.id in mover_ids:
            continue
        for m in movers:
            key = find_conflict(m, other, at_a=target)
            if key is not None:
                how = "locked" if other.locked else "group-locked"
                return _reject(
                    f"Day {target.day} hour {key.hour} is held by {how} lesson "
                    f"'{other.lesson_code}' (#{other.id}) sharing {key.describe()}.")
    return None


def resolve_edit(state: ScheduleState, block_id: int, day: int, hour: int,
                 scope: Optional[ScopeStrategy] = None,
                 params: Optional[RunParams] = None) -> EditResult:
    scope  = scope or FocusedScope()
    params = params or RunParams()
    target = Slot(day, hour)

    early = validate_edit(state, block_id, target)
    if early is not None:
        return early

    work   = state.snapshot()
    source = work.get_block(block_id)
    movers = {b.id for b in work.siblings(source)}
    movable = scope.movable(source, target, work.blocks)
    before  = {b.id: (b.day, b.hour) for b in work.blocks}
    logger.info("Edit %s -> d%d h%d: %d movable block(s) (%s scope)",
                source.label, day, hour, len(movable), scope.name)

    sm = ScheduleModel(work)
    participants = [b for b in work.blocks if b.placed or b.id in movers]
    for unit in group_units(participants):
        if any(b.id in movers for b in unit):
            sm.add_unit(unit, pin=target)
            continue
        origin = unit[0].slot
        free = (any(b.id in movable for b in unit)
                and not any(b.locked for b in unit))
        if free:
            sm.add_unit(unit, include=[origin], origin=origin)
        else:
            sm.add_unit(unit, pin=origin)

    sm.add_exclusivity()
    w = params.weights
    terms = sm.stay_terms(w.stay)
    if w.same_day_duplicate:
        terms += [w.same_day_duplicate * e for e in sm.same_lesson_day_excess()]
    sm.model.minimize(sum(terms) if terms else 0)
    sm.add_origin_hints()
    sm.log_size("edit")

    solver = make_solver(params.solver)
    status = status_str(solver.solve(sm.model))
    stats  = {
        "scope":          scope.name,
        "movable_blocks": len(movable),
        "variables":      sm.num_candidates,
        "wall_time_s":    round(solver.wall_time, 3),
    }

    if status not in SUCCESS_STATUSES:
        message = {
            "INFEASIBLE":    "No conflict-free arrangement exists for this move.",
            "MODEL_INVALID": "The edit model was rejected by the solver.",
        }.get(status, "The edit could not be resolved within the time limit.")
        message += (f" ({scope.name} scope, {len(movable)} movable block(s), "
                    f"{sm.num_candidates} variable(s))")
        if scope.name != "free":
            message += " Try the free scope or another slot."
        logger.info("Edit failed: %s", message)
        return EditResult(success=False, message=message, failure=status, stats=stats)

    changes: List[BlockChange] = []
    for u in sm.units:
        slot = u.chosen(solver)
        for b in u.blocks:
            old_day, old_hour = before[b.id]
            if (old_day, old_hour) == (slot.day, slot.hour):
                continue
            why = ("moved by user" if b.id in movers
                   else f"moved to make room for {source.label}")
            changes.append(BlockChange(
                block_id    = b.id,
                old_day     = old_day,
                old_hour    = old_hour,
                new_day     = slot.day,
                new_hour    = slot.hour,
                description = f"{b.label}: d{old_day} h{old_hour} -> "
                              f"d{slot.day} h{slot.hour} ({why})",
            ))

    moved_others = sum(1 for c in changes if c.block_id not in movers)
    return EditResult(
        success = True,
        message = f"Moved {source.label}; {moved_others} other block(s) relocated.",
        changes = changes,
        stats   = stats,
    )
