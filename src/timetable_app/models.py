"""
Data model layer for the weekly school timetable engine.

Every domain object is a plain Python dataclass. The @dataclass decorator
generates __init__, __repr__ and __eq__ automatically from field declarations.

Reference: Python Software Foundation. "dataclasses — Data Classes."
https://docs.python.org/3/library/dataclasses.html

Design note: flat entities with ID references:
  Blocks hold class_id / teacher_ids / room_ids rather than embedding the
  resource objects. ScheduleState is the only aggregate and answers the
  availability questions the solvers ask.

Availability is tri-state:
  OPEN      the slot can be used.
  CLOSED    administratively closed; never usable.
  OCCUPIED  flagged only because some placement already sits there.
            That is a conflict a solver can resolve, not a closure.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence

MAX_TEACHERS_PER_BLOCK = 7
MAX_ROOMS_PER_BLOCK    = 7


@dataclass(frozen=True, order=True)
class Slot:
    """One cell of the weekly grid. day and hour are both 1-based."""
    day:  int
    hour: int

    @property
    def key(self) -> str:
        return f"d_{self.day}_{self.hour}"

    @classmethod
    def from_key(cls, key: str) -> "Slot":
        parts = key.split("_")
        if len(parts) != 3 or parts[0] != "d":
            raise ValueError(f"Malformed slot key: {key!r}")
        return cls(int(parts[1]), int(parts[2]))


class SlotState(str, Enum):
    OPEN     = "open"
    CLOSED   = "closed"
    OCCUPIED = "occupied"

    @property
    def blocking(self) -> bool:
        return self is SlotState.CLOSED


class ResourceKind(str, Enum):
    TEACHER = "teacher"
    CLASS   = "class"
    ROOM    = "room"


class OperationMode(str, Enum):
    REBUILD     = "rebuild"
    BEST_EFFORT = "best-effort"
    EDIT        = "edit"


class RetentionMode(str, Enum):
    """Which existing placements survive a rebuild."""
    CLEAR_ALL    = "clear-all"
    KEEP_PLACED  = "keep-placed"
    KEEP_MANUAL  = "keep-manual"
    KEEP_LOCKED  = "keep-locked"
    KEEP_CURRENT = "keep-current"


@dataclass
class Resource:
    id:           int
    name:         str
    availability: Dict[Slot, SlotState] = field(default_factory=dict)

    def state_at(self, day: int, hour: int) -> SlotState:
        return self.availability.get(Slot(day, hour), SlotState.OPEN)

    def is_open(self, day: int, hour: int) -> bool:
        return not self.state_at(day, hour).blocking

    def close(self, day: int, hours: Iterable[int]) -> None:
        for h in hours:
            self.availability[Slot(day, h)] = SlotState.CLOSED


@dataclass
class Teacher(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.TEACHER
    max_hours_per_day: int = 8


@dataclass
class SchoolClass(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.CLASS


@dataclass
class Room(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.ROOM


@dataclass
class Block:
    id:               int
    class_id:         int
    lesson_code:      str
    duration:         int       = 1
    teacher_ids:      List[int] = field(default_factory=list)
    room_ids:         List[int] = field(default_factory=list)
    locked:           bool      = False
    manual:           bool      = False
    group_id:         int       = 0    # sibling group, 0 = none
    day:              int       = 0    # 0 = unplaced
    hour:             int       = 0
    morning_priority: int       = 0

    @property
    def placed(self) -> bool:
        return self.day > 0 and self.hour > 0

    @property
    def slot(self) -> Optional[Slot]:
        return Slot(self.day, self.hour) if self.placed else None

    @property
    def label(self) -> str:
        return f"{self.lesson_code} (#{self.id})"

    def hours(self, start: Optional[int] = None) -> range:
        first = self.hour if start is None else start
        return range(first, first + self.duration)

    def place(self, day: int, hour: int) -> None:
        self.day, self.hour = day, hour

    def unplace(self) -> None:
        self.day, self.hour = 0, 0


@dataclass
class SchoolSettings:
    name:         str                   = ""
    max_days:     int                   = 5
    max_hours:    int                   = 8
    availability: Dict[Slot, SlotState] = field(default_factory=dict)

    def is_open(self, day: int, hour: int) -> bool:
        return not self.availability.get(Slot(day, hour), SlotState.OPEN).blocking

    def slots(self) -> List[Slot]:
        return [Slot(d, h)
                for d in range(1, self.max_days + 1)
                for h in range(1, self.max_hours + 1)]


@dataclass
class Weights:
    """Soft-objective coefficients. 0 = ignore that term."""
    gap:                 int = 800
    large_gap:           int = 5000
    large_gap_threshold: int = 3
    morning:             int = 3
    adjacency:           int = 10
    low_load_adjacency:  int = 10    # multiplier on days with load <= 2
    fragmentation:       int = 5000
    single_lesson:       int = 2000
    day_condensation:    int = 500
    # edit resolver / KEEP_CURRENT retention
    stay:                int = 1000
    same_day_duplicate:  int = 5000


@dataclass
class SolverParams:
    max_time_in_seconds:        float = 30.0
    # 0 = use all available cores (OR-Tools default).
    num_workers:                int   = 0
    max_attempts:               int   = 3
    random_seed:                int   = 42
    diagnostic_time_in_seconds: float = 10.0


@dataclass
class RunParams:
    mode:                  OperationMode = OperationMode.REBUILD
    retention:             RetentionMode = RetentionMode.KEEP_LOCKED
    weights:               Weights       = field(default_factory=Weights)
    solver:                SolverParams  = field(default_factory=SolverParams)
    minimize_working_days: bool          = False
    condense_load_limit:   int           = 24

    def validate(self) -> None:
        w = asdict(self.weights)
        negative = sorted(k for k, v in w.items() if v < 0)
        if negative:
            raise ValueError(f"Objective weights must be >= 0: {negative}")
        if self.solver.max_time_in_seconds <= 0:
            raise ValueError("solver.max_time_in_seconds must be > 0")
        if self.solver.max_attempts < 1:
            raise ValueError("solver.max_attempts must be >= 1")
        if self.solver.num_workers < 0:
            raise ValueError("solver.num_workers must be >= 0")


@dataclass
class ScheduleState:
    settings: SchoolSettings    = field(default_factory=SchoolSettings)
    teachers: List[Teacher]     = field(default_factory=list)
    classes:  List[SchoolClass] = field(default_factory=list)
    rooms:    List[Room]        = field(default_factory=list)
    blocks:   List[Block]       = field(default_factory=list)

    def snapshot(self) -> "ScheduleState":
        """Private deep copy; solvers only ever mutate this."""
        return copy.deepcopy(self)

    # ── lookups ──────────────────────────────────────────────────────────────

    def get_teacher(self, tid: int) -> Optional[Teacher]:
        return next((t for t in self.teachers if t.id == tid), None)

    def get_class(self, cid: int) -> Optional[SchoolClass]:
        return next((c for c in self.classes if c.id == cid), None)

    def get_room(self, rid: int) -> Optional[Room]:
        return next((r for r in self.rooms if r.id == rid), None)

    def get_block(self, bid: int) -> Optional[Block]:
        return next((b for b in self.blocks if b.id == bid), None)

    def get_resource(self, kind: ResourceKind, rid: int) -> Optional[Resource]:
        if kind is ResourceKind.TEACHER:
            return self.get_teacher(rid)
        if kind is ResourceKind.CLASS:
            return self.get_class(rid)
        return self.get_room(rid)

    def resources_of(self, block: Block) -> List[Resource]:
        """Class, teachers and rooms a block touches (unknown ids skipped)."""
        found: List[Optional[Resource]] = [self.get_class(block.class_id)]
        found += [self.get_teacher(t) for t in block.teacher_ids]
        found += [self.get_room(r) for r in block.room_ids]
        return [r for r in found if r is not None]

    def siblings(self, block: Block) -> List[Block]:
        """All members of block's sibling group, block itself included."""
        if not block.group_id:
            return [block]
        return [b for b in self.blocks if b.group_id == block.group_id]

    def groups(self) -> Dict[int, List[Block]]:
        out: Dict[int, List[Block]] = defaultdict(list)
        for b in self.blocks:
            if b.group_id:
                out[b.group_id].append(b)
        return dict(out)

    def placements(self) -> Dict[int, Slot]:
        return {b.id: Slot(b.day, b.hour) for b in self.blocks if b.placed}

    # ── availability ─────────────────────────────────────────────────────────

    def is_open(self, kind: ResourceKind, rid: int, day: int, hour: int) -> bool:
        if not self.settings.is_open(day, hour):
            return False
        res = self.get_resource(kind, rid)
        return res is None or res.is_open(day, hour)

    def in_grid(self, duration: int, day: int, hour: int) -> bool:
        s = self.settings
        return (1 <= day <= s.max_days and hour >= 1
                and hour + duration - 1 <= s.max_hours)

    def window_open(self, resources: Sequence[Resource], duration: int,
                    day: int, hour: int) -> bool:
        """True when the school and every resource are open for the window."""
        if not self.in_grid(duration, day, hour):
            return False
        for h in range(hour, hour + duration):
            if not self.settings.is_open(day, h):
                return False
            if any(not r.is_open(day, h) for r in resources):
                return False
        return True

    def fits(self, block: Block, day: int, hour: int) -> bool:
        return self.window_open(self.resources_of(block), block.duration, day, hour)

    def static_slots(self, block: Block) -> List[Slot]:
        resources = self.resources_of(block)
        return [s for s in self.settings.slots()
                if self.window_open(resources, block.duration, s.day, s.hour)]

    def validate(self) -> None:
        s = self.settings
        if s.max_days < 1 or s.max_hours < 1:
            raise ValueError("settings.max_days and settings.max_hours must be >= 1")
        for label, items in (("teachers", self.teachers), ("classes", self.classes),
                             ("rooms", self.rooms), ("blocks", self.blocks)):
            ids = [i.id for i in items]
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            if dupes:
                raise ValueError(f"Duplicate ids in {label}: {dupes}")
        teacher_ids = {t.id for t in self.teachers}
        class_ids   = {c.id for c in self.classes}
        room_ids    = {r.id for r in self.rooms}
        for b in self.blocks:
            if not 1 <= b.duration <= s.max_hours:
                raise ValueError(
                    f"Block {b.id} duration {b.duration} outside 1..{s.max_hours}")
            if not 1 <= len(b.teacher_ids) <= MAX_TEACHERS_PER_BLOCK:
                raise ValueError(
                    f"Block {b.id} needs 1..{MAX_TEACHERS_PER_BLOCK} teachers, "
                    f"got {len(b.teacher_ids)}")
            if len(b.room_ids) > MAX_ROOMS_PER_BLOCK:
                raise ValueError(
                    f"Block {b.id} has more than {MAX_ROOMS_PER_BLOCK} rooms")
            if b.class_id not in class_ids:
                raise ValueError(f"Block {b.id} references unknown class {b.class_id}")
            unknown = [t for t in b.teacher_ids if t not in teacher_ids]
            if unknown:
                raise ValueError(f"Block {b.id} references unknown teacher(s) {unknown}")
            unknown = [r for r in b.room_ids if r not in room_ids]
            if unknown:
                raise ValueError(f"Block {b.id} references unknown room(s) {unknown}")
            if b.placed and not self.in_grid(b.duration, b.day, b.hour):
                raise ValueError(
                    f"Block {b.id} placed at d{b.day} h{b.hour} outside the grid")


@dataclass
class Config:
    """One loaded snapshot plus the parameters to run it with."""
    meta:   Dict[str, Any] = field(default_factory=dict)
    state:  ScheduleState  = field(default_factory=ScheduleState)
    params: RunParams      = field(default_factory=RunParams)

    def validate(self) -> None:
        self.state.validate()
        self.params.validate()
