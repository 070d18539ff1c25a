"""
Unit tests for the grid model.
"""

from dataclasses import replace
from datetime import UTC, datetime

import pytest

from mathgrid.core.facts import Fact, Guardrail, facts_within
from mathgrid.core.grid import (
    CellStatus,
    Grid,
    GridCell,
    MasteryScope,
    TimeClass,
    percentage,
)

MASTERED_AT = datetime(2024, 1, 1, tzinfo=UTC)


def mastered(fact: Fact) -> GridCell:
    return GridCell(
        fact=fact,
        consecutive_correct=3,
        last_attempt_correct=True,
        attempts=3,
        is_locked=True,
        mastered_at=MASTERED_AT,
    )


def master_all(grid: Grid, guardrail: Guardrail) -> None:
    for fact in facts_within(guardrail):
        grid.apply(mastered(fact))


class TestGridCell:
    def test_empty_cell_defaults(self):
        cell = GridCell.empty(Fact(2, 3))
        assert cell.attempts == 0
        assert cell.consecutive_correct == 0
        assert cell.is_locked is False
        assert cell.mastered_at is None
        assert cell.status == CellStatus.NOT_STARTED

    def test_streak_cannot_exceed_attempts(self):
        with pytest.raises(ValueError):
            GridCell(fact=Fact(2, 3), consecutive_correct=2, attempts=1)

    def test_negative_counters_rejected(self):
        with pytest.raises(ValueError):
            GridCell(fact=Fact(2, 3), attempts=-1)
        with pytest.raises(ValueError):
            GridCell(fact=Fact(2, 3), total_time_spent=-0.5)

    def test_status_symbols(self):
        learning = GridCell(fact=Fact(2, 3), attempts=1)
        assert learning.status == CellStatus.LEARNING
        assert mastered(Fact(2, 3)).status.symbol == "●"


class TestGrid:
    def test_fresh_grid(self):
        grid = Grid.fresh("s1")
        cells = list(grid.cells())
        assert len(cells) == 144
        assert grid.guardrail == Guardrail.ONE_TO_NINE
        assert all(c.attempts == 0 and not c.is_locked for c in cells)
        assert grid.total_attempts == 0
        assert grid.accuracy == 0

    def test_apply_does_not_touch_totals(self):
        grid = Grid.fresh()
        grid.apply(GridCell(fact=Fact(4, 4), attempts=1, last_attempt_correct=True, consecutive_correct=1))
        assert grid.cell_for(Fact(4, 4)).attempts == 1
        assert grid.total_attempts == 0

    def test_apply_batch_increments_totals_per_delta(self):
        grid = Grid.fresh()
        fact = Fact(6, 7)
        first = GridCell(fact=fact, attempts=1, last_attempt_correct=False)
        second = GridCell(fact=fact, attempts=2, consecutive_correct=1, last_attempt_correct=True)
        assert grid.apply_batch([first, second]) == 2
        assert grid.total_attempts == 2
        assert grid.total_correct == 1
        assert grid.cell_for(fact) == second
        assert grid.updated_at is not None

    def test_eligible_cells_respect_guardrail_lock_and_mastery(self):
        grid = Grid.fresh(guardrail=Guardrail.ONE_TO_FIVE)
        grid.apply(mastered(Fact(1, 1)))
        grid.apply(GridCell(fact=Fact(1, 2), is_locked=True))
        eligible = {c.fact for c in grid.eligible_cells()}
        assert len(eligible) == 23
        assert Fact(1, 1) not in eligible
        assert Fact(1, 2) not in eligible
        assert Fact(6, 1) not in eligible

    def test_mastery_percentage_scopes(self):
        grid = Grid.fresh(guardrail=Guardrail.ONE_TO_FIVE)
        master_all(grid, Guardrail.ONE_TO_FIVE)
        assert grid.mastery_percentage(MasteryScope.GUARDRAIL) == 100
        # 25 / 144 = 17.36%
        assert grid.mastery_percentage("all") == 17
        assert grid.mastered_count() == 25

    def test_set_guardrail_clears_locks(self):
        grid = Grid.fresh(guardrail=Guardrail.ONE_TO_FIVE)
        master_all(grid, Guardrail.ONE_TO_FIVE)
        grid.set_guardrail("1-9")
        assert grid.guardrail == Guardrail.ONE_TO_NINE
        assert not any(c.is_locked for c in grid.cells())
        # still mastered, so still not eligible
        assert len(grid.eligible_cells()) == 81 - 25

    def test_same_guardrail_keeps_locks(self):
        grid = Grid.fresh(guardrail=Guardrail.ONE_TO_FIVE)
        master_all(grid, Guardrail.ONE_TO_FIVE)
        grid.set_guardrail(Guardrail.ONE_TO_FIVE)
        assert all(c.is_locked for c in grid.cells() if Guardrail.ONE_TO_FIVE.contains(c.fact))

    def test_reset_cell_keeps_history(self):
        grid = Grid.fresh()
        fact = Fact(8, 8)
        grid.apply(replace(mastered(fact), attempts=5, total_time_spent=9.0, last_time_class=TimeClass.MEDIUM))
        reset = grid.reset_cell(fact)
        assert reset.consecutive_correct == 0
        assert reset.is_locked is False
        assert reset.total_time_spent == 0.0
        assert reset.last_time_class is None
        assert reset.attempts == 5
        assert reset.mastered_at == MASTERED_AT

    def test_copy_is_independent(self):
        grid = Grid.fresh("s1")
        clone = grid.copy()
        clone.apply(mastered(Fact(2, 2)))
        assert not grid.cell_for(Fact(2, 2)).is_mastered
        assert clone.student_id == "s1"

    def test_status_counts(self):
        grid = Grid.fresh()
        grid.apply(mastered(Fact(2, 2)))
        grid.apply(GridCell(fact=Fact(3, 3), attempts=1))
        counts = grid.status_counts()
        assert counts[CellStatus.MASTERED] == 1
        assert counts[CellStatus.LEARNING] == 1
        assert counts[CellStatus.NOT_STARTED] == 142


class TestPercentage:
    @pytest.mark.parametrize(
        "num,den,expected",
        [(19, 20, 95), (1, 3, 33), (2, 3, 67), (1, 8, 13), (0, 5, 0)],
    )
    def test_rounds_half_up(self, num, den, expected):
        assert percentage(num, den) == expected
