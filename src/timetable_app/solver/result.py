from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from timetable_app.errors import EditConflict, EditRejected, SolverInfeasible, SolverTimeout
from timetable_app.models import ScheduleState, Slot

SUCCESS_STATUSES = ("OPTIMAL", "FEASIBLE")

# placement provenance tags
REBUILD     = "rebuild"
BEST_EFFORT = "best-effort"
MANUAL_EDIT = "manual-edit"
LOCKED      = "locked"
KEPT        = "kept"

# edit failure kinds
REJECTED      = "REJECTED"
INFEASIBLE    = "INFEASIBLE"
MODEL_INVALID = "MODEL_INVALID"
TIMEOUT       = "TIMEOUT"
UNRESOLVED    = "UNRESOLVED"


@dataclass(frozen=True)
class PlacementEntry:
    block_id:    int
    class_id:    int
    lesson_code: str
    day:         int
    hour:        int
    provenance:  str


@dataclass(frozen=True)
class UnplacedBlock:
    block_id:    int
    class_id:    int
    lesson_code: str
    reason:      str = ""


@dataclass
class SolveResult:
    status:          str                    # OPTIMAL/FEASIBLE/INFEASIBLE/MODEL_INVALID/TIMEOUT
    objective_value: Optional[int]        = None
    entries:         List[PlacementEntry] = field(default_factory=list)
    unplaced:        List[UnplacedBlock]  = field(default_factory=list)
    diagnostics:     List[str]            = field(default_factory=list)
    stats:           Dict[str, Any]       = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES

    def placements(self) -> Dict[int, Slot]:
        return {e.block_id: Slot(e.day, e.hour) for e in self.entries}

    def apply_to(self, state: ScheduleState) -> None:
        """Commit helper for callers: write the result into a state."""
        if not self.ok:
            return
        placed = self.placements()
        dropped = {u.block_id for u in self.unplaced}
        for b in state.blocks:
            if b.id in placed:
                b.place(placed[b.id].day, placed[b.id].hour)
            elif b.id in dropped:
                b.unplace()

    def raise_for_status(self) -> None:
        if self.ok:
            return
        msg = "\n".join(self.diagnostics) or self.status
        if self.status == TIMEOUT:
            raise SolverTimeout(msg, self)
        raise SolverInfeasible(msg, self)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BlockChange:
    block_id:    int
    old_day:     int
    old_hour:    int
    new_day:     int
    new_hour:    int
    description: str = ""


@dataclass
class EditResult:
    success:             bool
    message:             str               = ""
    changes:             List[BlockChange] = field(default_factory=list)
    failure:             Optional[str]     = None   # REJECTED/INFEASIBLE/MODEL_INVALID/TIMEOUT/UNRESOLVED
    remaining_conflicts: int               = 0
    provenance:          str               = MANUAL_EDIT
    stats:               Dict[str, Any]    = field(default_factory=dict)

    def apply_to(self, state: ScheduleState) -> None:
        if not self.success:
            return
        moved = {c.block_id: c for c in self.changes}
        for b in state.blocks:
            c = moved.get(b.id)
            if c is not None:
                b.place(c.new_day, c.new_hour)

    def raise_for_status(self) -> None:
        if self.success:
            return
        if self.failure == REJECTED:
            raise EditRejected(self.message, self)
        raise EditConflict(self.message, self)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
