"""
Exception taxonomy for the timetable engine.

Structural problems found before any model is built are raised.
Solver and edit outcomes come back as result objects; their
raise_for_status() turns a failed result into one of the exceptions below.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from timetable_app.solver.precheck import CapacityReport


class SchedulingError(Exception):
    """Base class for every engine failure."""


class StructuralInfeasibility(SchedulingError, ValueError):
    """Raised when some block or sibling group has no usable slot at all."""

    def __init__(self, message: str, report: Optional["CapacityReport"] = None) -> None:
        super().__init__(message)
        self.report = report


class SolverInfeasible(SchedulingError):
    """Raised when the model is proven to have no solution."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class SolverTimeout(SchedulingError):
    """Raised when no definitive answer was found within the time budget."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class EditRejected(SchedulingError):
    """Raised when an edit fails pre-validation."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class EditConflict(SchedulingError):
    """Raised when an edit could not be resolved; nothing was changed."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result
