"""
Pre-solve capacity diagnostics that run before (and after) the solver.

Catching structurally infeasible snapshots here means the user sees
plain-English messages naming the teacher, class, room or block at fault
rather than a raw INFEASIBLE solver status. Everything in this module is a
pure function over a ScheduleState; no model is built.

Checks:
  - per teacher / class / room: required hours vs open slots
  - per teacher: required hours vs max_hours_per_day across open days
  - per block: at least one statically available start slot
  - per lesson split into k blocks: at least k usable days
  - per sibling group: non-empty common availability
  - pinned blocks never overlap each other or overrun a teacher's daily cap
  - pinned repeats of one lesson on one day (tolerated, reported as warnings)
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from timetable_app.errors import StructuralInfeasibility
from timetable_app.models import Block, Resource, ResourceKind, ScheduleState, Slot
from timetable_app.solver.occupancy import find_conflict, group_units

TIGHT_OCCUPANCY = {
    ResourceKind.TEACHER: 0.90,
    ResourceKind.CLASS:   0.95,
    ResourceKind.ROOM:    0.90,
}


@dataclass(frozen=True)
class Bottleneck:
    kind:        ResourceKind
    resource_id: int
    name:        str
    load:        int
    capacity:    int

    @property
    def occupancy(self) -> float:
        return self.load / self.capacity if self.capacity else math.inf

    @property
    def overloaded(self) -> bool:
        return self.load > self.capacity

    @property
    def resource(self) -> str:
        return f"{self.kind.value} '{self.name}'"

    def describe(self) -> str:
        if self.overloaded:
            return (f"{self.kind.value.capitalize()} '{self.name}' needs {self.load} hour(s) but only "
                    f"{self.capacity} slot(s) are open.")
        return (f"{self.kind.value.capitalize()} '{self.name}' is {self.occupancy:.0%} booked "
                f"({self.load}/{self.capacity}).")


@dataclass
class CapacityReport:
    errors:      List[str]        = field(default_factory=list)
    warnings:    List[str]        = field(default_factory=list)
    bottlenecks: List[Bottleneck] = field(default_factory=list)
    unplaceable: List[int]        = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def default_pins(state: ScheduleState) -> Set[int]:
    return {b.id for b in state.blocks if b.locked and b.placed}


def _ids(block: Block, kind: ResourceKind) -> List[int]:
    if kind is ResourceKind.TEACHER:
        return list(block.teacher_ids)
    if kind is ResourceKind.CLASS:
        return [block.class_id]
    return list(block.room_ids)


def _resources(state: ScheduleState, kind: ResourceKind) -> List[Resource]:
    if kind is ResourceKind.TEACHER:
        return list(state.teachers)
    if kind is ResourceKind.CLASS:
        return list(state.classes)
    return list(state.rooms)


def resource_loads(state: ScheduleState, kind: ResourceKind) -> Dict[int, int]:
    """Required hours per resource. A sibling group counts once per resource."""
    loads: Dict[int, int] = defaultdict(int)
    for unit in group_units(state.blocks):
        per: Dict[int, int] = {}
        for b in unit:
            for rid in _ids(b, kind):
                per[rid] = max(per.get(rid, 0), b.duration)
        for rid, hours in per.items():
            loads[rid] += hours
    return dict(loads)


def open_slots(state: ScheduleState, res: Resource) -> List[Slot]:
    return [s for s in state.settings.slots()
            if state.settings.is_open(s.day, s.hour) and res.is_open(s.day, s.hour)]


def capacity_bottlenecks(state: ScheduleState) -> List[Bottleneck]:
    """Every resource whose load reaches its tightness threshold, worst first."""
    found: List[Bottleneck] = []
    for kind in ResourceKind:
        loads = resource_loads(state, kind)
        for res in _resources(state, kind):
            load = loads.get(res.id, 0)
            if not load:
                continue
            bn = Bottleneck(kind, res.id, res.name, load, len(open_slots(state, res)))
            if bn.occupancy >= TIGHT_OCCUPANCY[kind]:
                found.append(bn)
    found.sort(key=lambda bn: bn.occupancy, reverse=True)
    return found


def _daily_capacity(state: ScheduleState, res: Resource, per_day: int) -> int:
    by_day: Dict[int, int] = defaultdict(int)
    for s in open_slots(state, res):
        by_day[s.day] += 1
    return sum(min(per_day, n) for n in by_day.values())


def _culprits(state: ScheduleState, block: Block) -> List[str]:
    """Resources that alone leave the block no window at all."""
    names = []
    for res in state.resources_of(block):
        if not any(state.window_open([res], block.duration, s.day, s.hour)
                   for s in state.settings.slots()):
            names.append(f"{res.kind.value} '{res.name}'")
    return names


def _class_name(state: ScheduleState, cid: int) -> str:
    c = state.get_class(cid)
    return c.name if c else str(cid)


def precheck(state: ScheduleState, pinned: Optional[Iterable[int]] = None) -> CapacityReport:
    """
    Return a CapacityReport. report.errors = definitely infeasible.

    pinned holds the ids of blocks that keep their current slot; they are
    exempt from the availability checks but must not overlap each other.
    Defaults to every locked, placed block.
    """
    report = CapacityReport()
    pins   = set(default_pins(state) if pinned is None else pinned)

    # ── 1. load vs capacity ───────────────────────────────────────────────────
    for bn in capacity_bottlenecks(state):
        report.bottlenecks.append(bn)
        (report.errors if bn.overloaded else report.warnings).append(bn.describe())

    teacher_loads = resource_loads(state, ResourceKind.TEACHER)
    for t in state.teachers:
        load = teacher_loads.get(t.id, 0)
        cap  = _daily_capacity(state, t, t.max_hours_per_day)
        if cap < load <= len(open_slots(state, t)):
            report.errors.append(
                f"Teacher '{t.name}' needs {load} hour(s) but max_hours_per_day="
                f"{t.max_hours_per_day} allows only {cap} across the open days."
            )

    # ── 2. static candidates per block ────────────────────────────────────────
    static: Dict[int, List[Slot]] = {
        b.id: state.static_slots(b) for b in state.blocks if b.id not in pins
    }

    units = group_units(state.blocks)
    for unit in units:
        if any(b.id in pins for b in unit):
            continue
        if len(unit) == 1:
            b = unit[0]
            if not static[b.id]:
                culprits = _culprits(state, b)
                why = (", ".join(culprits) if culprits
                       else "the combination of its class, teachers and rooms")
                report.errors.append(
                    f"Block {b.label} of class '{_class_name(state, b.class_id)}' "
                    f"has no usable slot: blocked by {why}."
                )
                report.unplaceable.append(b.id)
            continue

        # sibling group
        common = set(static[unit[0].id])
        for b in unit[1:]:
            common &= set(static[b.id])
        if not common:
            detail = ", ".join(
                f"{b.label} [{_class_name(state, b.class_id)}]: {len(static[b.id])} slot(s)"
                for b in unit
            )
            report.errors.append(
                f"Sibling group {unit[0].group_id} has no common slot ({detail})."
            )
            report.unplaceable.extend(b.id for b in unit)
        if len({b.duration for b in unit}) > 1:
            report.warnings.append(
                f"Sibling group {unit[0].group_id} mixes durations "
                f"{sorted({b.duration for b in unit})}."
            )

    # ── 3. lesson split across days ───────────────────────────────────────────
    lessons: Dict[Tuple[int, str], List[Block]] = defaultdict(list)
    for b in state.blocks:
        lessons[b.class_id, b.lesson_code].append(b)
    for (cid, code), blocks in lessons.items():
        if len(blocks) < 2:
            continue
        days: Set[int] = set()
        for b in blocks:
            if b.id in pins:
                days.add(b.day)
            else:
                days.update(s.day for s in static[b.id])
        if len(days) < len(blocks):
            ids = ", ".join(str(b.id) for b in blocks)
            report.errors.append(
                f"Class '{_class_name(state, cid)}' lesson '{code}' is split into "
                f"{len(blocks)} blocks ({ids}) but only {len(days)} day(s) have a "
                f"usable slot."
            )

    # ── 4. pinned blocks must not collide ─────────────────────────────────────
    pinned_blocks = [b for b in state.blocks if b.id in pins and b.placed]
    for i, a in enumerate(pinned_blocks):
        for b in pinned_blocks[i + 1:]:
            key = find_conflict(a, b)
            if key is not None:
                report.errors.append(
                    f"Fixed blocks {a.label} and {b.label} overlap on day {key.day} "
                    f"hour {key.hour} ({key.describe()})."
                )

    by_lesson_day: Dict[Tuple[int, str, int], List[Block]] = defaultdict(list)
    for b in pinned_blocks:
        by_lesson_day[b.class_id, b.lesson_code, b.day].append(b)
    for (cid, code, day), blocks in sorted(by_lesson_day.items()):
        if len(blocks) > 1:
            report.warnings.append(
                f"Fixed blocks {', '.join(b.label for b in blocks)} repeat lesson "
                f"'{code}' for class '{_class_name(state, cid)}' on day {day}."
            )

    fixed_hours: Dict[Tuple[int, int], int] = defaultdict(int)
    for unit in group_units(pinned_blocks):
        per: Dict[int, int] = {}
        for b in unit:
            for tid in b.teacher_ids:
                per[tid] = max(per.get(tid, 0), b.duration)
        for tid, hours in per.items():
            fixed_hours[tid, unit[0].day] += hours
    for t in state.teachers:
        for day in range(1, state.settings.max_days + 1):
            hours = fixed_hours.get((t.id, day), 0)
            if hours > t.max_hours_per_day:
                report.errors.append(
                    f"Teacher '{t.name}' has {hours} fixed hour(s) on day {day} "
                    f"but max_hours_per_day={t.max_hours_per_day}."
                )

    return report


def ensure_ok(state: ScheduleState, pinned: Optional[Iterable[int]] = None) -> CapacityReport:
    report = precheck(state, pinned)
    if report.errors:
        raise StructuralInfeasibility("\n".join(report.errors), report)
    return report
