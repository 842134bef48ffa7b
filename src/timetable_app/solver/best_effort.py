"""
Best-effort solver: the rebuild model with optional placement.

Each free unit gets a placed literal and "exactly one start" becomes
"sum of starts == placed". Every unplaced lesson-hour costs more than the
worst the quality terms could ever add up to, so the solver places as much
as it possibly can before it starts trading schedule quality.

Capacity diagnostics are informational here: they are reported but never
stop the solve. Pinned blocks get a placed literal as well, fixed to their
pin. When fixed blocks overlap, repeat a lesson on one day or overrun a
teacher's daily cap, the fewest of them drop out and are reported as
unplaced instead of turning the whole model INFEASIBLE.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from timetable_app.events import AttemptStarted, Diagnostic, EventSink, Solved, emitter
from timetable_app.models import ResourceKind, RunParams, ScheduleState, Weights
from timetable_app.solver.builder import ScheduleModel, make_solver, status_str
from timetable_app.solver.precheck import precheck
from timetable_app.solver.rebuild import (apply_retention, build_schedule_model,
    condensation_targets, describe_block, extract, pin_weight)
from timetable_app.solver.result import BEST_EFFORT, SUCCESS_STATUSES, SolveResult

logger = logging.getLogger(__name__)

UNPLACED_PENALTY_FLOOR = 1_000_000


def unplaced_weight(sm: ScheduleModel, w: Weights) -> int:
    """Penalty per unplaced hour, strictly above any achievable quality swing."""
    s        = sm.state.settings
    teachers = len(sm.index.resources(ResourceKind.TEACHER))
    per_day  = (w.gap * s.max_hours + w.large_gap + w.fragmentation
                + w.single_lesson + w.day_condensation)
    rewards  = w.adjacency * (1 + w.low_load_adjacency) * max(s.max_hours - 1, 0)
    morning  = sum(s.max_hours * w.morning * sum(b.morning_priority for b in u.blocks)
                   for u in sm.units)
    stay     = w.stay * sum(u.size for u in sm.units)
    bound    = (per_day + rewards) * teachers * s.max_days + morning + stay
    return max(UNPLACED_PENALTY_FLOOR, bound + 1)


def solve_best_effort(state: ScheduleState,
                      params: Optional[RunParams] = None,
                      sink: Optional[EventSink] = None) -> SolveResult:
    params = params or RunParams()
    params.validate()
    emit = emitter(sink)

    work = state.snapshot()
    work.validate()
    pins = apply_retention(work, params.retention)

    report = precheck(work, pins)
    for bn in report.bottlenecks:
        emit(Diagnostic(bn.resource, bn.describe(), bn.load, bn.capacity))
    diagnostics: List[str] = report.errors + report.warnings

    condensed = (condensation_targets(work, params.condense_load_limit)
                 if params.minimize_working_days else [])

    emit(AttemptStarted(1, 1, "best-effort"))
    sm, terms = build_schedule_model(work, pins, params.weights, condensed, optional=True)
    penalty = unplaced_weight(sm, params.weights)
    fixed   = pin_weight(sm)
    for u in sm.units:
        if u.placed is not None:
            hours = sum(b.duration for b in u.blocks) * (fixed if u.pinned else 1)
            terms.append(penalty * hours * (1 - u.placed))
    sm.model.minimize(sum(terms) if terms else 0)
    sm.log_size("best-effort")

    solver = make_solver(params.solver)
    status = status_str(solver.solve(sm.model))

    if status not in SUCCESS_STATUSES:
        emit(Solved(status, 0, len(work.blocks), solver.wall_time))
        return SolveResult(
            status      = status,
            diagnostics = diagnostics + [f"Best-effort model returned {status}."],
            stats       = {"wall_time_s": round(solver.wall_time, 3)},
        )

    entries, unplaced = extract(sm, solver, pins, BEST_EFFORT)
    by_id = {b.id: b for b in work.blocks}
    if unplaced:
        diagnostics.append(f"{len(unplaced)} block(s) left unplaced:")
        diagnostics.extend(f"  {describe_block(work, by_id[u.block_id])}: {u.reason}"
                           for u in unplaced)
    emit(Solved(status, len(entries), len(unplaced), solver.wall_time))

    return SolveResult(
        status          = status,
        objective_value = int(solver.objective_value),
        entries         = entries,
        unplaced        = unplaced,
        diagnostics     = diagnostics,
        stats           = {
            "placed":          len(entries),
            "unplaced":        len(unplaced),
            "unplaced_hours":  sum(by_id[u.block_id].duration for u in unplaced),
            "unplaced_weight": penalty,
            "variables":       sm.num_candidates,
            "wall_time_s":     round(solver.wall_time, 3),
        },
    )
