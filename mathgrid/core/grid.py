"""
Grid Model.

Canonical representation of one student's 12x12 fact-mastery grid.

The Grid is a single-writer aggregate: it is owned by exactly one student,
is the unit of persistence, and is only mutated by applying cells produced
by the mastery engine (see mathgrid.core.mastery.update).

Design:
- TimeClass: answer latency bucket (fast / medium / slow)
- CellStatus: display categorization of a cell
- GridCell: immutable per-fact state; deltas are whole cells
- Grid: 12x12 container + guardrail + running totals
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Iterable, Iterator

from mathgrid.core.facts import GRID_SIZE, Fact, Guardrail

MASTERY_THRESHOLD = 3


class TimeClass(str, Enum):
    """Latency bucket of an answer."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class MasteryScope(str, Enum):
    """Which cells count as eligible for mastery percentage."""

    ALL = "all"
    GUARDRAIL = "guardrail"


class CellStatus(str, Enum):
    """Display categorization of a grid cell."""

    NOT_STARTED = "not_started"
    LEARNING = "learning"
    MASTERED = "mastered"

    @classmethod
    def from_cell(cls, cell: GridCell) -> CellStatus:
        if cell.is_mastered:
            return cls.MASTERED
        elif cell.attempts > 0:
            return cls.LEARNING
        return cls.NOT_STARTED

    @property
    def symbol(self) -> str:
        return {
            CellStatus.NOT_STARTED: "○",
            CellStatus.LEARNING: "◑",
            CellStatus.MASTERED: "●",
        }[self]


def percentage(numerator: int | float, denominator: int | float) -> int:
    """
    Integer percentage rounded half-up.

    Raises ZeroDivisionError on an empty denominator; callers decide
    whether that is a contract violation.
    """
    return int(math.floor(numerator / denominator * 100 + 0.5))


@dataclass(frozen=True)
class GridCell:
    """Mastery state for a single fact."""

    fact: Fact
    consecutive_correct: int = 0
    last_attempt_correct: bool = False
    attempts: int = 0
    is_locked: bool = False
    average_time_seconds: float = 0.0
    total_time_spent: float = 0.0
    last_time_class: TimeClass | None = None
    mastered_at: datetime | None = None

    def __post_init__(self):
        if self.attempts < 0 or self.consecutive_correct < 0:
            raise ValueError(f"Negative counters on cell {self.fact.label}")
        if self.consecutive_correct > self.attempts:
            raise ValueError(
                f"consecutive_correct ({self.consecutive_correct}) exceeds "
                f"attempts ({self.attempts}) on cell {self.fact.label}"
            )
        if self.total_time_spent < 0:
            raise ValueError(f"Negative time spent on cell {self.fact.label}")

    @property
    def multiplicand(self) -> int:
        return self.fact.multiplicand

    @property
    def multiplier(self) -> int:
        return self.fact.multiplier

    @property
    def is_mastered(self) -> bool:
        """Mastery is permanent once reached."""
        return self.mastered_at is not None

    @property
    def status(self) -> CellStatus:
        return CellStatus.from_cell(self)

    @classmethod
    def empty(cls, fact: Fact) -> GridCell:
        return cls(fact=fact)


@dataclass
class Grid:
    """
    A student's 12x12 fact-mastery grid.

    Cells are keyed by (multiplicand - 1, multiplier - 1).
    """

    student_id: str | None = None
    guardrail: Guardrail = Guardrail.ONE_TO_NINE
    total_correct: int = 0
    total_attempts: int = 0
    updated_at: datetime | None = None
    _cells: list[list[GridCell]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self._cells:
            self._cells = [
                [GridCell.empty(Fact.from_key(row, col)) for col in range(GRID_SIZE)]
                for row in range(GRID_SIZE)
            ]
        if len(self._cells) != GRID_SIZE or any(len(r) != GRID_SIZE for r in self._cells):
            raise ValueError("Grid must be 12x12")
        if self.total_attempts < 0 or self.total_correct < 0:
            raise ValueError("Grid totals cannot be negative")

    @classmethod
    def fresh(
        cls,
        student_id: str | None = None,
        guardrail: Guardrail = Guardrail.ONE_TO_NINE,
    ) -> Grid:
        """Zeroed grid, nothing locked, default guardrail 1-9."""
        return cls(student_id=student_id, guardrail=guardrail)

    @classmethod
    def from_cells(
        cls,
        cells: Iterable[GridCell],
        student_id: str | None = None,
        guardrail: Guardrail = Guardrail.ONE_TO_NINE,
        total_correct: int = 0,
        total_attempts: int = 0,
        updated_at: datetime | None = None,
    ) -> Grid:
        """Build a grid from stored cells; missing cells default to empty."""
        grid = cls.fresh(student_id=student_id, guardrail=guardrail)
        for cell in cells:
            row, col = cell.fact.key
            grid._cells[row][col] = cell
        grid.total_correct = total_correct
        grid.total_attempts = total_attempts
        grid.updated_at = updated_at
        return grid

    # ========================================
    # Access
    # ========================================

    def cell_for(self, fact: Fact) -> GridCell:
        row, col = fact.key
        return self._cells[row][col]

    def cells(self) -> Iterator[GridCell]:
        """All 144 cells, row-major."""
        for row in self._cells:
            yield from row

    def eligible_cells(self) -> list[GridCell]:
        """Cells open for practice: inside the guardrail, unlocked, unmastered."""
        return [
            cell
            for cell in self.cells()
            if self.guardrail.contains(cell.fact)
            and not cell.is_locked
            and not cell.is_mastered
        ]

    def mastered_count(self, scope: MasteryScope = MasteryScope.ALL) -> int:
        return sum(1 for cell in self._scoped_cells(scope) if cell.is_mastered)

    def mastery_percentage(self, scope: MasteryScope | str = MasteryScope.ALL) -> int:
        """Mastered cells as a rounded percentage of the scope's cells."""
        scope = MasteryScope(scope)
        eligible = self._scoped_cells(scope)
        mastered = sum(1 for cell in eligible if cell.is_mastered)
        return percentage(mastered, len(eligible))

    def status_counts(self) -> dict[CellStatus, int]:
        counts = {status: 0 for status in CellStatus}
        for cell in self.cells():
            counts[cell.status] += 1
        return counts

    @property
    def accuracy(self) -> int:
        """Lifetime accuracy across all persisted attempts (0 when none)."""
        if self.total_attempts == 0:
            return 0
        return percentage(self.total_correct, self.total_attempts)

    def _scoped_cells(self, scope: MasteryScope) -> list[GridCell]:
        if scope == MasteryScope.GUARDRAIL:
            return [c for c in self.cells() if self.guardrail.contains(c.fact)]
        return list(self.cells())

    # ========================================
    # Mutation
    # ========================================

    def apply(self, delta: GridCell) -> GridCell:
        """
        Merge a delta cell into the grid (last write wins per field).

        Running totals are not touched; see apply_batch.
        """
        row, col = delta.fact.key
        self._cells[row][col] = delta
        return delta

    def apply_batch(self, deltas: Iterable[GridCell]) -> int:
        """
        Apply deltas in order and increment running totals.

        Each delta represents one attempt. Returns the number applied.
        """
        applied = 0
        for delta in deltas:
            self.apply(delta)
            self.total_attempts += 1
            if delta.last_attempt_correct:
                self.total_correct += 1
            applied += 1
        if applied:
            self.updated_at = datetime.now(UTC)
        return applied

    def set_guardrail(self, guardrail: Guardrail | str) -> None:
        """Explicit guardrail change; clears every lock. Same guardrail is a no-op."""
        guardrail = Guardrail.parse(guardrail)
        if guardrail == self.guardrail:
            return
        self.guardrail = guardrail
        for row in self._cells:
            for col, cell in enumerate(row):
                if cell.is_locked:
                    row[col] = replace(cell, is_locked=False)

    def reset_cell(self, fact: Fact) -> GridCell:
        """
        Administrative reset of one cell.

        Clears the streak, lock and timing fields. Attempts and mastered_at
        are history and stay.
        """
        cell = self.cell_for(fact)
        reset = replace(
            cell,
            consecutive_correct=0,
            last_attempt_correct=False,
            is_locked=False,
            average_time_seconds=0.0,
            total_time_spent=0.0,
            last_time_class=None,
        )
        return self.apply(reset)

    def copy(self) -> Grid:
        return Grid.from_cells(
            self.cells(),
            student_id=self.student_id,
            guardrail=self.guardrail,
            total_correct=self.total_correct,
            total_attempts=self.total_attempts,
            updated_at=self.updated_at,
        )
