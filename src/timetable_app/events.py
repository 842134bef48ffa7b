"""
Progress events emitted during long solves.

A sink is any callable that accepts an Event. Solvers never format text
for the UI; they emit typed events and let the sink decide.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptStarted:
    attempt:      int
    max_attempts: int
    profile:      str


@dataclass(frozen=True)
class AttemptFailed:
    attempt: int
    status:  str
    reason:  str


@dataclass(frozen=True)
class Diagnostic:
    resource: str
    message:  str
    load:     Optional[int] = None
    capacity: Optional[int] = None


@dataclass(frozen=True)
class Solved:
    status:    str
    placed:    int
    unplaced:  int
    wall_time: float = 0.0


Event     = Union[AttemptStarted, AttemptFailed, Diagnostic, Solved]
EventSink = Callable[[Event], None]


class LoggingSink:
    """Default sink: forwards every event to the module logger."""

    def __call__(self, event: Event) -> None:
        if isinstance(event, AttemptStarted):
            logger.info("Attempt %d/%d (%s profile)",
                        event.attempt, event.max_attempts, event.profile)
        elif isinstance(event, AttemptFailed):
            logger.info("Attempt %d failed: %s (%s)",
                        event.attempt, event.status, event.reason)
        elif isinstance(event, Diagnostic):
            logger.warning("%s: %s", event.resource, event.message)
        elif isinstance(event, Solved):
            logger.info("%s: %d placed, %d unplaced in %.2fs",
                        event.status, event.placed, event.unplaced, event.wall_time)


@dataclass
class CollectingSink:
    events: List[Event] = field(default_factory=list)

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, kind: type) -> List[Event]:
        return [e for e in self.events if isinstance(e, kind)]


def emitter(sink: Optional[EventSink]) -> EventSink:
    return sink if sink is not None else LoggingSink()
