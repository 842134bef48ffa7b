"""
CP-SAT model scaffold shared by the rebuild, best-effort, diagnostic and
edit solvers.

One boolean x[unit, day, hour] is created per statically available start
slot. A unit is a single block or a whole sibling group; group members
share the unit's variables, which is what keeps them on one identical slot.

Hard constraints:
  - exactly one start per unit (or sum == placed when placement is optional)
  - at most one selected literal per contested (resource, day, hour) cell
  - same class + lesson code at most once per day (pinned units already on
    a day count as one placement there, so fixed duplicates are tolerated)
  - teacher daily load <= max_hours_per_day

Teacher-day objective terms follow the usual gap formulation: busy[h]
indicators per hour, load = sum(busy), first/last hour through
add_min_equality / add_max_equality over indicator-gated hour values.
Reference: OR-Tools CP-SAT Python API — CpModel.add_min_equality
https://developers.google.com/optimization/reference/python/sat/python/cp_model
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from ortools.sat.python import cp_model

from timetable_app.errors import StructuralInfeasibility
from timetable_app.models import (Block, ResourceKind, ScheduleState, Slot,
    SolverParams, Teacher, Weights)
from timetable_app.solver.occupancy import OccupancyIndex, OccupancyKey

logger = logging.getLogger(__name__)


def status_str(s: object) -> str:
    """Convert a CP-SAT solver status value to a readable string."""
    mapping = {
        int(cp_model.OPTIMAL):       "OPTIMAL",
        int(cp_model.FEASIBLE):      "FEASIBLE",
        int(cp_model.INFEASIBLE):    "INFEASIBLE",
        int(cp_model.MODEL_INVALID): "MODEL_INVALID",
    }
    # UNKNOWN only happens when a limit was hit before a definitive answer
    return mapping.get(int(s), "TIMEOUT")  # type: ignore[call-overload]


def make_solver(params: SolverParams, time_limit: Optional[float] = None) -> cp_model.CpSolver:
    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = time_limit or params.max_time_in_seconds
    solver.parameters.num_workers         = params.num_workers
    solver.parameters.random_seed         = params.random_seed
    return solver


def unit_key(blocks: List[Block]) -> str:
    head = blocks[0]
    return f"g{head.group_id}" if head.group_id else f"b{head.id}"


def unit_slots(state: ScheduleState, blocks: List[Block],
               include: Iterable[Slot] = ()) -> List[Slot]:
    """Start slots where every member of the unit is statically available."""
    members = [(b, state.resources_of(b)) for b in blocks]
    slots = [
        s for s in state.settings.slots()
        if all(state.window_open(res, b.duration, s.day, s.hour) for b, res in members)
    ]
    for s in include:
        if s not in slots and all(state.in_grid(b.duration, s.day, s.hour) for b in blocks):
            slots.append(s)
    return slots


@dataclass
class Candidate:
    day:  int
    hour: int
    var:  cp_model.IntVar

    @property
    def slot(self) -> Slot:
        return Slot(self.day, self.hour)


@dataclass
class Unit:
    key:        str
    blocks:     List[Block]
    candidates: List[Candidate]          = field(default_factory=list)
    pinned:     bool                     = False
    origin:     Optional[Slot]           = None
    placed:     Optional[cp_model.IntVar] = None

    @property
    def size(self) -> int:
        return len(self.blocks)

    @property
    def label(self) -> str:
        return ", ".join(b.label for b in self.blocks)

    def candidate_at(self, slot: Slot) -> Optional[Candidate]:
        return next((c for c in self.candidates if c.slot == slot), None)

    def chosen(self, solver: cp_model.CpSolver) -> Optional[Slot]:
        for c in self.candidates:
            if solver.boolean_value(c.var):
                return c.slot
        return None


class ScheduleModel:
    """
    Holds one CpModel plus the bookkeeping needed to read a solution back.

    optional=False  every unit must be placed (rebuild, edit)
    optional=True   every unit gets a placed literal (best effort, unplaced
                    diagnostic); a pinned unit may then only sit on its pin
                    or drop out, which is how clashing pins get reported
    """

    def __init__(self, state: ScheduleState, optional: bool = False) -> None:
        self.state    = state
        self.optional = optional
        self.model    = cp_model.CpModel()
        self.index: OccupancyIndex[cp_model.IntVar] = OccupancyIndex()
        self.units:   List[Unit] = []
        self.empty:   List[Unit] = []

    # ── variables ─────────────────────────────────────────────────────────────

    def add_unit(self, blocks: List[Block],
                 pin: Optional[Slot] = None,
                 include: Iterable[Slot] = (),
                 origin: Optional[Slot] = None) -> Unit:
        key  = unit_key(blocks)
        unit = Unit(key=key, blocks=blocks, pinned=pin is not None, origin=origin)
        slots = [pin] if pin is not None else unit_slots(self.state, blocks, include)

        if not slots:
            if not self.optional:
                raise StructuralInfeasibility(
                    f"{unit.label} has no statically available slot.")
            self.empty.append(unit)
            return unit

        for s in slots:
            var = self.model.new_bool_var(f"x_{key}_d{s.day}_h{s.hour}")
            unit.candidates.append(Candidate(s.day, s.hour, var))
            for b in blocks:
                self.index.add((key, s), b, s.day, s.hour, var)

        lits = [c.var for c in unit.candidates]
        if self.optional:
            unit.placed = self.model.new_bool_var(f"placed_{key}")
            self.model.add(sum(lits) == unit.placed)
        else:
            self.model.add_exactly_one(lits)

        self.units.append(unit)
        return unit

    @property
    def num_candidates(self) -> int:
        return sum(len(u.candidates) for u in self.units)

    # ── hard constraints ──────────────────────────────────────────────────────

    def add_exclusivity(self) -> int:
        n = 0
        for _, lits in self.index.contested():
            self.model.add_at_most_one(lits)
            n += 1
        return n

    def lesson_groups(self) -> Dict[Tuple[int, str], List[Unit]]:
        groups: Dict[Tuple[int, str], List[Unit]] = defaultdict(list)
        for u in self.units:
            seen: Set[Tuple[int, str]] = set()
            for b in u.blocks:
                k = (b.class_id, b.lesson_code)
                if k not in seen:
                    groups[k].append(u)
                    seen.add(k)
        return groups

    def _day_literals(self, units: List[Unit], day: int) -> List[cp_model.IntVar]:
        return [c.var for u in units for c in u.candidates if c.day == day]

    def add_same_lesson_per_day(self) -> None:
        """
        At most one placement per (class, lesson code, day). Pinned units are
        not constrained against each other: any number of them on a day
        counts as one, and then no free unit of the lesson may join them.
        """
        for units in self.lesson_groups().values():
            if len(units) < 2:
                continue
            free   = [u for u in units if not u.pinned]
            pinned = [u for u in units if u.pinned]
            for d in range(1, self.state.settings.max_days + 1):
                lits = self._day_literals(free, d)
                if not lits:
                    continue
                fixed = self._day_literals(pinned, d)
                if not fixed and len(lits) > 1:
                    self.model.add_at_most_one(lits)
                for p in fixed:
                    self.model.add(sum(lits) + p <= 1)

    def same_lesson_day_excess(self) -> List[cp_model.IntVar]:
        """Soft variant: one int var per (lesson, day) counting extra placements."""
        excess = []
        for (cid, code), units in self.lesson_groups().items():
            if len(units) < 2 or all(u.pinned for u in units):
                continue
            for d in range(1, self.state.settings.max_days + 1):
                lits = self._day_literals(units, d)
                if len(lits) < 2:
                    continue
                e = self.model.new_int_var(0, len(lits) - 1, f"dup_c{cid}_{code}_d{d}")
                self.model.add(e >= sum(lits) - 1)
                excess.append(e)
        return excess

    def _teacher_days(self) -> Iterator[Tuple[Teacher, int, Dict[int, cp_model.IntVar]]]:
        """Yield (teacher, day, busy) where busy maps hour -> 0/1 literal."""
        active = self.index.resources(ResourceKind.TEACHER)
        s = self.state.settings
        for t in self.state.teachers:
            if t.id not in active:
                continue
            for d in range(1, s.max_days + 1):
                busy: Dict[int, cp_model.IntVar] = {}
                for h in range(1, s.max_hours + 1):
                    lits = self.index.tokens(OccupancyKey(ResourceKind.TEACHER, t.id, d, h))
                    if len(lits) == 1:
                        busy[h] = lits[0]
                    elif lits:
                        b = self.model.new_bool_var(f"busy_t{t.id}_d{d}_h{h}")
                        self.model.add(b == sum(lits))
                        busy[h] = b
                if busy:
                    yield t, d, busy

    def add_daily_caps(self) -> None:
        """Teacher load per day <= max_hours_per_day, without objective terms."""
        for t, d, busy in self._teacher_days():
            if len(busy) > t.max_hours_per_day:
                self.model.add(sum(busy.values()) <= t.max_hours_per_day)

    # ── soft objectives ───────────────────────────────────────────────────────

    def teacher_day_terms(self, w: Weights,
                          condensed: Iterable[Tuple[int, int]] = ()) -> list:
        """
        Add per-teacher, per-day load/gap structure and return the weighted
        objective terms. Also enforces the daily cap.

        condensed lists (teacher_id, day) pairs that pay day_condensation
        whenever the teacher works that day.
        """
        m     = self.model
        H     = self.state.settings.max_hours
        off   = set(condensed)
        terms = []

        for t, d, busy in self._teacher_days():
            tag  = f"t{t.id}_d{d}"
            load = m.new_int_var(0, len(busy), f"load_{tag}")
            m.add(load == sum(busy.values()))
            if len(busy) > t.max_hours_per_day:
                m.add(load <= t.max_hours_per_day)

            working = m.new_bool_var(f"working_{tag}")
            m.add(load >= 1).only_enforce_if(working)
            m.add(load == 0).only_enforce_if(working.Not())

            if (t.id, d) in off and w.day_condensation:
                terms.append(w.day_condensation * working)

            if w.single_lesson:
                single = m.new_bool_var(f"single_{tag}")
                m.add(load != 1).only_enforce_if(single.Not())
                terms.append(w.single_lesson * single)

            if len(busy) < 2:
                continue

            low = m.new_bool_var(f"low_{tag}")
            m.add(load <= 2).only_enforce_if(low)
            m.add(load >= 3).only_enforce_if(low.Not())

            # first / last hour: idle hours map to H+1 / 0 so min / max skip them
            first_vals, last_vals = [], []
            for h, b in busy.items():
                fv = m.new_int_var(h, H + 1, f"fv_{tag}_h{h}")
                m.add(fv == h).only_enforce_if(b)
                m.add(fv == H + 1).only_enforce_if(b.Not())
                lv = m.new_int_var(0, h, f"lv_{tag}_h{h}")
                m.add(lv == h).only_enforce_if(b)
                m.add(lv == 0).only_enforce_if(b.Not())
                first_vals.append(fv)
                last_vals.append(lv)
            first = m.new_int_var(1, H + 1, f"first_{tag}")
            last  = m.new_int_var(0, H, f"last_{tag}")
            m.add_min_equality(first, first_vals)
            m.add_max_equality(last, last_vals)

            gap = m.new_int_var(0, H, f"gap_{tag}")
            m.add(gap == last - first + 1 - load).only_enforce_if(working)
            m.add(gap == 0).only_enforce_if(working.Not())
            if w.gap:
                terms.append(w.gap * gap)

            if w.large_gap:
                large = m.new_bool_var(f"large_gap_{tag}")
                m.add(gap <= w.large_gap_threshold).only_enforce_if(large.Not())
                terms.append(w.large_gap * large)

            if w.fragmentation:
                has_gap = m.new_bool_var(f"has_gap_{tag}")
                m.add(gap == 0).only_enforce_if(has_gap.Not())
                split = m.new_bool_var(f"split_{tag}")
                m.add_bool_or([low.Not(), has_gap.Not(), split])
                terms.append(w.fragmentation * split)

            if w.adjacency:
                for h, b in busy.items():
                    nxt = busy.get(h + 1)
                    if nxt is None:
                        continue
                    adj = m.new_bool_var(f"adj_{tag}_h{h}")
                    m.add_implication(adj, b)
                    m.add_implication(adj, nxt)
                    terms.append(-w.adjacency * adj)
                    if w.low_load_adjacency:
                        low_adj = m.new_bool_var(f"low_adj_{tag}_h{h}")
                        m.add_implication(low_adj, adj)
                        m.add_implication(low_adj, low)
                        terms.append(-w.adjacency * w.low_load_adjacency * low_adj)

        return terms

    def morning_terms(self, weight: int) -> list:
        if not weight:
            return []
        terms = []
        for u in self.units:
            prio = sum(b.morning_priority for b in u.blocks)
            if prio and not u.pinned:
                terms.extend(c.hour * prio * weight * c.var for c in u.candidates)
        return terms

    def stay_terms(self, weight: int) -> list:
        """weight per block that leaves its origin slot."""
        if not weight:
            return []
        terms = []
        for u in self.units:
            if u.pinned or u.origin is None:
                continue
            c = u.candidate_at(u.origin)
            if c is None:
                terms.append(weight * u.size)
            else:
                terms.append(weight * u.size * (1 - c.var))
        return terms

    def add_origin_hints(self) -> None:
        for u in self.units:
            if u.pinned or u.origin is None:
                continue
            for c in u.candidates:
                self.model.add_hint(c.var, 1 if c.slot == u.origin else 0)

    def log_size(self, what: str) -> None:
        logger.debug("%s model: %d unit(s), %d candidate var(s), %d cell(s)",
                     what, len(self.units), self.num_candidates, len(self.index))
