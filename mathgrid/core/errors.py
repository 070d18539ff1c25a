"""
Error kinds raised by the session engine and its collaborators.

- InvalidTransition: state-machine misuse, non-fatal for the caller
- ValidationError: bad input rejected before any state is mutated
- PersistenceFailure: fetch or flush failed; carries the untouched deltas
- NotAuthenticated: no learner identity, nothing was created
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from mathgrid.core.grid import GridCell


class MathGridError(Exception):
    """Base class for all engine errors."""


class InvalidTransition(MathGridError):
    """Raised when an operation is invoked from a state that does not allow it."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while session is {state}")


class ValidationError(MathGridError):
    """Raised when input is rejected before mutating state."""
    pass


class PersistenceFailure(MathGridError):
    """
    Raised when the grid store could not fetch or persist.

    The deltas that were being flushed are attached unchanged so the caller
    can resubmit the same batch.
    """

    def __init__(self, message: str, deltas: Sequence[GridCell] = ()):
        self.deltas: list[GridCell] = list(deltas)
        super().__init__(message)


class NotAuthenticated(MathGridError):
    """Raised when no learner identity is available."""
    pass
