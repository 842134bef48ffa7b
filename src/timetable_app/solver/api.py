from __future__ import annotations

from typing import Optional

from timetable_app.events import EventSink
from timetable_app.models import OperationMode, RunParams, ScheduleState
from timetable_app.solver.best_effort import solve_best_effort
from timetable_app.solver.cascade import cascade_move
from timetable_app.solver.edit import get_scope, resolve_edit
from timetable_app.solver.rebuild import solve_rebuild
from timetable_app.solver.result import EditResult, SolveResult


def solve(state: ScheduleState, params: Optional[RunParams] = None,
          sink: Optional[EventSink] = None) -> SolveResult:
    params = params or RunParams()
    if params.mode is OperationMode.REBUILD:
        return solve_rebuild(state, params, sink)
    if params.mode is OperationMode.BEST_EFFORT:
        return solve_best_effort(state, params, sink)
    raise ValueError(f"Unknown solver mode: {params.mode!r} (use edit() for edits)")


def edit(state: ScheduleState, block_id: int, day: int, hour: int,
         strategy: str = "focused", params: Optional[RunParams] = None) -> EditResult:
    strategy = (strategy or "").lower()
    if strategy in ("greedy", "cascade"):
        return cascade_move(state, block_id, day, hour)
    if strategy in ("focused", "free"):
        return resolve_edit(state, block_id, day, hour, get_scope(strategy), params)
    raise ValueError(f"Unknown edit strategy: {strategy!r}")
