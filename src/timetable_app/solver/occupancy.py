"""
Occupancy index and the shared conflict predicate.

The CP-SAT builders and the greedy cascade ask the same question: which
(resource, day, hour) cells does a block cover when it starts at a given
slot? occupancy_keys() is the single answer to it, and blocks_conflict()
is defined purely in terms of those keys.

Members of one sibling group are taught together, so they never conflict
with each other even when they share a class or teacher.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Generic, Hashable, Iterator, List, Optional, Set, Tuple, TypeVar

from timetable_app.models import Block, ResourceKind, Slot

T = TypeVar("T")


@dataclass(frozen=True)
class OccupancyKey:
    kind:        ResourceKind
    resource_id: int
    day:         int
    hour:        int

    def describe(self) -> str:
        return f"{self.kind.value} {self.resource_id}"


def occupancy_keys(block: Block, day: int, hour: int) -> List[OccupancyKey]:
    keys: List[OccupancyKey] = []
    for h in block.hours(hour):
        keys.append(OccupancyKey(ResourceKind.CLASS, block.class_id, day, h))
        keys.extend(OccupancyKey(ResourceKind.TEACHER, t, day, h) for t in block.teacher_ids)
        keys.extend(OccupancyKey(ResourceKind.ROOM, r, day, h) for r in block.room_ids)
    return keys


def same_group(a: Block, b: Block) -> bool:
    return bool(a.group_id) and a.group_id == b.group_id


def find_conflict(a: Block, b: Block,
                  at_a: Optional[Slot] = None,
                  at_b: Optional[Slot] = None) -> Optional[OccupancyKey]:
    """
    Return the first cell a and b would both occupy, or None.

    at_a / at_b override the blocks' current placement so callers can test
    hypothetical positions without mutating anything.
    """
    if a.id == b.id or same_group(a, b):
        return None
    sa = at_a or a.slot
    sb = at_b or b.slot
    if sa is None or sb is None or sa.day != sb.day:
        return None
    if sa.hour + a.duration <= sb.hour or sb.hour + b.duration <= sa.hour:
        return None
    theirs = set(occupancy_keys(b, sb.day, sb.hour))
    return next((k for k in occupancy_keys(a, sa.day, sa.hour) if k in theirs), None)


def blocks_conflict(a: Block, b: Block,
                    at_a: Optional[Slot] = None,
                    at_b: Optional[Slot] = None) -> bool:
    return find_conflict(a, b, at_a, at_b) is not None


class OccupancyIndex(Generic[T]):
    """
    Maps every OccupancyKey to the tokens that would cover it.

    A token is whatever the caller tracks: a CP-SAT literal in the builders,
    a Block in the cascade. Each token is registered under an owner key;
    registering the same owner twice on one cell keeps a single entry, which
    is how sibling members sharing one variable are counted once.
    """

    def __init__(self) -> None:
        self._cells: Dict[OccupancyKey, Dict[Hashable, T]] = defaultdict(dict)

    def add(self, owner: Hashable, block: Block, day: int, hour: int, token: T) -> None:
        for key in occupancy_keys(block, day, hour):
            self._cells[key].setdefault(owner, token)

    def tokens(self, key: OccupancyKey) -> List[T]:
        cell = self._cells.get(key)
        return list(cell.values()) if cell else []

    def contested(self) -> Iterator[Tuple[OccupancyKey, List[T]]]:
        """Cells covered by more than one token: the exclusivity candidates."""
        for key, cell in self._cells.items():
            if len(cell) > 1:
                yield key, list(cell.values())

    def resources(self, kind: ResourceKind) -> Set[int]:
        return {k.resource_id for k in self._cells if k.kind is kind}

    def __contains__(self, key: object) -> bool:
        return key in self._cells

    def __len__(self) -> int:
        return len(self._cells)


def group_units(blocks: List[Block]) -> List[List[Block]]:
    """
    Split blocks into placement units: one list per sibling group, one
    singleton list per ungrouped block. Order follows first appearance.
    """
    units: List[List[Block]] = []
    by_group: Dict[int, List[Block]] = {}
    for b in blocks:
        if not b.group_id:
            units.append([b])
        elif b.group_id in by_group:
            by_group[b.group_id].append(b)
        else:
            by_group[b.group_id] = [b]
            units.append(by_group[b.group_id])
    return units
