"""
Greedy cascade fallback: repair a single move without a solver.

Works on a private copy with the moved block (and its siblings) already at
the target. Each iteration finds every clashing pair through the shared
blocks_conflict predicate and relocates each clashing unit that is still
allowed to move:

  - best conflict-free slot by score, if one exists
  - otherwise the slot with the fewest clashes (forced progress)

Score (lower is better):
  |day - original day| * 1000 + |hour - original hour| * 500 + hour * 100
  + per teacher: gap * 2000, or -3000 for a gap-free day
  + 5000 if the class already has that lesson on the day

Stops on success, on a deadlock (nothing moved in one iteration) or when
the iteration budget runs out. The caller's state is never touched.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set, Tuple

from timetable_app.models import Block, ScheduleState, Slot
from timetable_app.solver.builder import unit_key
from timetable_app.solver.edit import validate_edit
from timetable_app.solver.occupancy import blocks_conflict, group_units
from timetable_app.solver.result import UNRESOLVED, BlockChange, EditResult

logger = logging.getLogger(__name__)

MAX_ITERATIONS      = 200
MAX_MOVES_PER_BLOCK = 5

W_DAY_SHIFT    = 1000
W_HOUR_SHIFT   = 500
W_LATE_HOUR    = 100
W_TEACHER_GAP  = 2000
W_NO_GAP_BONUS = 3000
W_SAME_LESSON  = 5000


def find_conflicts(blocks: Sequence[Block]) -> List[Tuple[Block, Block]]:
    by_day: Dict[int, List[Block]] = defaultdict(list)
    for b in blocks:
        if b.placed:
            by_day[b.day].append(b)
    pairs = []
    for day_blocks in by_day.values():
        for i, a in enumerate(day_blocks):
            for b in day_blocks[i + 1:]:
                if blocks_conflict(a, b):
                    pairs.append((a, b))
    return pairs


def _clashes(unit: List[Block], slot: Slot, placed: Sequence[Block]) -> int:
    ids = {b.id for b in unit}
    return sum(
        1 for o in placed
        if o.id not in ids and o.day == slot.day
        and any(blocks_conflict(m, o, at_a=slot) for m in unit)
    )


def _score(unit: List[Block], slot: Slot, placed: Sequence[Block],
           origin: Tuple[int, int]) -> int:
    ids = {b.id for b in unit}
    od, oh = origin
    score = (abs(slot.day - od) * W_DAY_SHIFT + abs(slot.hour - oh) * W_HOUR_SHIFT
             + slot.hour * W_LATE_HOUR)

    others = [o for o in placed if o.id not in ids and o.day == slot.day]
    for t in sorted({t for b in unit for t in b.teacher_ids}):
        hours: Set[int] = set()
        for o in others:
            if t in o.teacher_ids:
                hours.update(o.hours())
        for b in unit:
            if t in b.teacher_ids:
                hours.update(b.hours(slot.hour))
        gap = max(hours) - min(hours) + 1 - len(hours)
        score += gap * W_TEACHER_GAP if gap > 0 else -W_NO_GAP_BONUS

    for b in unit:
        if any(o.class_id == b.class_id and o.lesson_code == b.lesson_code for o in others):
            score += W_SAME_LESSON
    return score


def best_slot(state: ScheduleState, unit: List[Block], placed: Sequence[Block],
              origin: Tuple[int, int]) -> Optional[Slot]:
    current = unit[0].slot
    free:   List[Tuple[int, Slot]]      = []
    forced: List[Tuple[int, int, Slot]] = []
    for s in state.settings.slots():
        if s == current:
            continue
        if not all(state.fits(b, s.day, s.hour) for b in unit):
            continue
        n     = _clashes(unit, s, placed)
        score = _score(unit, s, placed, origin)
        if n == 0:
            free.append((score, s))
        else:
            forced.append((n, score, s))
    if free:
        return min(free)[1]
    if forced:
        return min(forced)[2]
    return None


def cascade_move(state: ScheduleState, block_id: int, day: int, hour: int,
                 max_iterations: int = MAX_ITERATIONS,
                 max_moves_per_block: int = MAX_MOVES_PER_BLOCK) -> EditResult:
    target = Slot(day, hour)
    early = validate_edit(state, block_id, target)
    if early is not None:
        return early

    work     = state.snapshot()
    source   = work.get_block(block_id)
    original = {b.id: (b.day, b.hour) for b in work.blocks}
    for b in work.siblings(source):
        b.place(day, hour)

    placed = [b for b in work.blocks if b.placed]
    units  = {unit_key(u): u for u in group_units(placed)}
    unit_of = {b.id: k for k, u in units.items() for b in u}
    src_key = unit_of[source.id]
    moves: Dict[str, int] = defaultdict(int)
    moves[src_key] = 1

    def reject(message: str, remaining: int, iterations: int) -> EditResult:
        logger.info("Cascade rejected: %s", message)
        return EditResult(success=False, message=message, failure=UNRESOLVED,
                          remaining_conflicts=remaining,
                          stats={"iterations": iterations, "moves": sum(moves.values())})

    iteration = 0
    conflicts = find_conflicts(placed)
    while conflicts:
        if iteration >= max_iterations:
            return reject(f"Gave up after {max_iterations} iteration(s) with "
                          f"{len(conflicts)} conflict(s) left.", len(conflicts), iteration)
        iteration += 1

        keys = list(dict.fromkeys(unit_of[b.id] for pair in conflicts for b in pair))
        moved = False
        for key in keys:
            unit = units[key]
            if key == src_key or any(b.locked for b in unit):
                continue
            if moves[key] >= max_moves_per_block:
                continue
            # an earlier move this round may already have freed it
            if _clashes(unit, unit[0].slot, placed) == 0:
                continue
            slot = best_slot(work, unit, placed, original[unit[0].id])
            if slot is None:
                continue
            for b in unit:
                b.place(slot.day, slot.hour)
            moves[key] += 1
            moved = True
            logger.debug("Cascade iteration %d: %s -> d%d h%d",
                         iteration, key, slot.day, slot.hour)

        conflicts = find_conflicts(placed)
        if not moved and conflicts:
            return reject(f"Deadlock after {iteration} iteration(s): "
                          f"{len(conflicts)} conflict(s) remain and no block can move.",
                          len(conflicts), iteration)

    changes = []
    for b in work.blocks:
        old_day, old_hour = original[b.id]
        if (b.day, b.hour) == (old_day, old_hour):
            continue
        why = ("moved by user" if unit_of.get(b.id) == src_key
               else f"moved to make room for {source.label}")
        changes.append(BlockChange(
            block_id    = b.id,
            old_day     = old_day,
            old_hour    = old_hour,
            new_day     = b.day,
            new_hour    = b.hour,
            description = f"{b.label}: d{old_day} h{old_hour} -> d{b.day} h{b.hour} ({why})",
        ))

    others = sum(1 for c in changes if unit_of.get(c.block_id) != src_key)
    return EditResult(
        success = True,
        message = f"Moved {source.label}; {others} other block(s) relocated.",
        changes = changes,
        stats   = {"iterations": iteration, "moves": sum(moves.values())},
    )
