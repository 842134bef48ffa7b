"""
Full rebuild solver: one global CP-SAT model over every unpinned block.

Flow:
  1. copy the snapshot and apply the retention mode
  2. capacity diagnostics; structural errors raise before any model exists
  3. up to max_attempts solves, attempt N using relaxation profile N
  4. after the last failure: bottleneck report, then (if that finds no
     overloaded resource) a relaxed model that lets blocks go unplaced and
     names the ones that could not be placed

Timeouts are treated like infeasibility by the retry loop; the final
result still distinguishes them through its status.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from timetable_app.errors import StructuralInfeasibility
from timetable_app.events import (AttemptFailed, AttemptStarted, Diagnostic,
    EventSink, Solved, emitter)
from timetable_app.models import (Block, ResourceKind, RetentionMode, RunParams,
    ScheduleState, Weights)
from timetable_app.solver.builder import ScheduleModel, make_solver, status_str
from timetable_app.solver.occupancy import group_units
from timetable_app.solver.precheck import capacity_bottlenecks, precheck, resource_loads
from timetable_app.solver.relaxation import (RELAXATION_PROFILES, RelaxationProfile,
    schedule_for)
from timetable_app.solver.result import (KEPT, LOCKED, REBUILD, SUCCESS_STATUSES,
    TIMEOUT, PlacementEntry, SolveResult, UnplacedBlock)

logger = logging.getLogger(__name__)

MAX_REPORTED_UNPLACED = 15


def apply_retention(state: ScheduleState, mode: RetentionMode) -> Dict[int, str]:
    """
    Prepare the private copy for a rebuild. Returns {block_id: provenance}
    for every block pinned to its current slot.
    """
    pins: Dict[int, str] = {}
    for b in state.blocks:
        if mode is RetentionMode.CLEAR_ALL:
            b.locked = False
            b.unplace()
            continue
        if not b.placed:
            continue
        if b.locked:
            pins[b.id] = LOCKED
        elif mode is RetentionMode.KEEP_PLACED:
            pins[b.id] = KEPT
        elif mode is RetentionMode.KEEP_MANUAL and b.manual:
            pins[b.id] = KEPT
        elif mode is not RetentionMode.KEEP_CURRENT:
            b.unplace()
    return pins


def preferred_days_off(max_days: int) -> List[int]:
    """Last day, second-last, first, then the rest from latest to earliest."""
    order = list(dict.fromkeys(d for d in (max_days, max_days - 1, 1) if d >= 1))
    order += [d for d in range(max_days, 0, -1) if d not in order]
    return order


def condensation_targets(state: ScheduleState, load_limit: int) -> List[Tuple[int, int]]:
    """
    Pick at most one (teacher_id, day) per lightly loaded teacher where
    working should cost extra. Days are walked in preferred_days_off() order;
    the walk stops at a day the teacher already has off, and days holding
    one of the teacher's locked lessons are skipped.
    """
    s     = state.settings
    loads = resource_loads(state, ResourceKind.TEACHER)
    out: List[Tuple[int, int]] = []
    for t in state.teachers:
        load = loads.get(t.id, 0)
        if not 0 < load <= load_limit:
            continue
        locked_days = {b.day for b in state.blocks
                       if b.locked and b.placed and t.id in b.teacher_ids}
        for d in preferred_days_off(s.max_days):
            hours = range(1, s.max_hours + 1)
            if all(not (s.is_open(d, h) and t.is_open(d, h)) for h in hours):
                break
            if d in locked_days:
                continue
            out.append((t.id, d))
            break
    return out


def build_schedule_model(state: ScheduleState, pins: Dict[int, str], weights: Weights,
                         condensed: Iterable[Tuple[int, int]] = (),
                         optional: bool = False) -> Tuple[ScheduleModel, list]:
    """Variables, hard constraints and the weighted quality terms."""
    sm = ScheduleModel(state, optional=optional)
    for unit in group_units(state.blocks):
        anchor = next((b for b in unit if b.id in pins), None)
        if anchor is not None:
            sm.add_unit(unit, pin=anchor.slot)
            continue
        origin = unit[0].slot
        if origin is not None and any(b.slot != origin for b in unit):
            origin = None
        sm.add_unit(unit, origin=origin)

    sm.add_exclusivity()
    sm.add_same_lesson_per_day()

    # ── soft objectives ───────────────────────────────────────────────────────
    terms = sm.teacher_day_terms(weights, condensed)
    terms += sm.morning_terms(weights.morning)
    # only KEEP_CURRENT leaves unpinned blocks placed, so only it has origins
    terms += sm.stay_terms(weights.stay)
    sm.add_origin_hints()
    return sm, terms


def extract(sm: ScheduleModel, solver, pins: Dict[int, str],
            tag: str) -> Tuple[List[PlacementEntry], List[UnplacedBlock]]:
    entries:  List[PlacementEntry] = []
    unplaced: List[UnplacedBlock]  = []
    for u in sm.units:
        slot = u.chosen(solver)
        prov = tag
        if u.pinned:
            prov = next(pins[b.id] for b in u.blocks if b.id in pins)
        for b in u.blocks:
            if slot is None:
                reason = (f"fixed slot day {b.day} hour {b.hour} cannot coexist with "
                          f"the other fixed blocks" if u.pinned
                          else "no conflict-free slot left")
                unplaced.append(UnplacedBlock(b.id, b.class_id, b.lesson_code, reason))
            else:
                entries.append(PlacementEntry(b.id, b.class_id, b.lesson_code,
                                              slot.day, slot.hour, prov))
    for u in sm.empty:
        unplaced.extend(UnplacedBlock(b.id, b.class_id, b.lesson_code, "no usable slot")
                        for b in u.blocks)
    return entries, unplaced


def pin_weight(sm: ScheduleModel) -> int:
    """Multiplier that makes dropping a pinned unit worse than dropping every free one."""
    return 1 + sum(b.duration for u in sm.units if not u.pinned for b in u.blocks)


def describe_block(state: ScheduleState, b: Block) -> str:
    c = state.get_class(b.class_id)
    return f"{c.name if c else b.class_id} - {b.lesson_code} ({b.id})"


def find_unplaceable(state: ScheduleState, pins: Dict[int, str],
                     params: RunParams) -> Tuple[str, List[UnplacedBlock]]:
    """
    Relaxed diagnostic: same hard rules, placement optional, minimise the
    number of unplaced blocks. No quality terms. Pinned units may drop out
    too, but only when no choice of free blocks would make room for them.
    """
    sm = ScheduleModel(state, optional=True)
    for unit in group_units(state.blocks):
        anchor = next((b for b in unit if b.id in pins), None)
        sm.add_unit(unit, pin=anchor.slot if anchor is not None else None)
    sm.add_exclusivity()
    sm.add_same_lesson_per_day()
    sm.add_daily_caps()
    fixed = pin_weight(sm)
    sm.model.minimize(sum(u.size * (fixed if u.pinned else 1) * (1 - u.placed)
                          for u in sm.units if u.placed is not None))
    sm.log_size("unplaced diagnostic")

    solver = make_solver(params.solver, params.solver.diagnostic_time_in_seconds)
    status = status_str(solver.solve(sm.model))
    if status not in SUCCESS_STATUSES:
        return status, []
    _, unplaced = extract(sm, solver, pins, REBUILD)
    return status, unplaced


def explain_failure(state: ScheduleState, pins: Dict[int, str], params: RunParams,
                    last_status: str, emit: EventSink) -> Tuple[List[str], List[UnplacedBlock]]:
    diagnostics: List[str] = []
    unplaced:    List[UnplacedBlock] = []

    if last_status == TIMEOUT:
        diagnostics.append(
            f"No definitive answer within {params.solver.max_time_in_seconds:g}s per "
            f"attempt; raise max_time_in_seconds.")

    # ── cheap structural pass ─────────────────────────────────────────────────
    bottlenecks = capacity_bottlenecks(state)
    for bn in bottlenecks:
        diagnostics.append(bn.describe())
        emit(Diagnostic(bn.resource, bn.describe(), bn.load, bn.capacity))
    if any(bn.overloaded for bn in bottlenecks):
        return diagnostics, unplaced

    # ── relaxed model naming the blocks that do not fit ───────────────────────
    status, unplaced = find_unplaceable(state, pins, params)
    if status not in SUCCESS_STATUSES:
        diagnostics.append(
            f"Unplaced-block diagnostic returned {status}; check the fixed blocks "
            f"({len(pins)}) for clashes, same-day duplicates and daily-cap overruns.")
    elif not unplaced:
        diagnostics.append(
            "Every block fits once placement is optional; the strict model most "
            "likely ran out of time. Raise max_time_in_seconds.")
    else:
        by_id = {b.id: b for b in state.blocks}
        diagnostics.append(f"{len(unplaced)} block(s) cannot be placed:")
        for u in unplaced[:MAX_REPORTED_UNPLACED]:
            line = describe_block(state, by_id[u.block_id])
            diagnostics.append(f"  {line}")
            emit(Diagnostic(line, "cannot be placed"))
        if len(unplaced) > MAX_REPORTED_UNPLACED:
            diagnostics.append(f"  ... and {len(unplaced) - MAX_REPORTED_UNPLACED} more")
    return diagnostics, unplaced


def solve_rebuild(state: ScheduleState,
                  params: Optional[RunParams] = None,
                  sink: Optional[EventSink] = None,
                  profiles: Sequence[RelaxationProfile] = RELAXATION_PROFILES) -> SolveResult:
    params = params or RunParams()
    params.validate()
    emit = emitter(sink)

    work = state.snapshot()
    work.validate()
    pins = apply_retention(work, params.retention)

    report = precheck(work, pins)
    for bn in report.bottlenecks:
        emit(Diagnostic(bn.resource, bn.describe(), bn.load, bn.capacity))
    if report.errors:
        for e in report.errors:
            logger.warning(e)
        raise StructuralInfeasibility("\n".join(report.errors), report)

    condensed = (condensation_targets(work, params.condense_load_limit)
                 if params.minimize_working_days else [])

    plan = schedule_for(params.solver.max_attempts, profiles)
    last_status = TIMEOUT
    for attempt, profile in enumerate(plan, 1):
        emit(AttemptStarted(attempt, len(plan), profile.name))
        sm, terms = build_schedule_model(work, pins, profile.apply(params.weights), condensed)
        sm.model.minimize(sum(terms) if terms else 0)
        sm.log_size(f"rebuild attempt {attempt}")

        solver = make_solver(params.solver)
        status = status_str(solver.solve(sm.model))

        if status in SUCCESS_STATUSES:
            entries, unplaced = extract(sm, solver, pins, REBUILD)
            emit(Solved(status, len(entries), len(unplaced), solver.wall_time))
            return SolveResult(
                status          = status,
                objective_value = int(solver.objective_value),
                entries         = entries,
                unplaced        = unplaced,
                diagnostics     = report.warnings,
                stats           = {
                    "attempts":    attempt,
                    "profile":     profile.name,
                    "units":       len(sm.units),
                    "variables":   sm.num_candidates,
                    "placed":      len(entries),
                    "wall_time_s": round(solver.wall_time, 3),
                },
            )

        last_status = status
        reason = ("time budget exhausted" if status == TIMEOUT
                  else "model admits no solution")
        emit(AttemptFailed(attempt, status, reason))

    diagnostics, unplaced = explain_failure(work, pins, params, last_status, emit)
    emit(Solved(last_status, 0, len(work.blocks), 0.0))
    return SolveResult(
        status      = last_status,
        unplaced    = unplaced,
        diagnostics = diagnostics,
        stats       = {"attempts": len(plan)},
    )
