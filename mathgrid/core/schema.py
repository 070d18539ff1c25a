"""
Versioned storage schema for grid blobs.

Stored grid state is JSON. Absent fields load as the documented defaults
below, never as missing attributes:

    consecutive_correct = 0      attempts = 0
    last_attempt_correct = False is_locked = False
    average_time_seconds = 0.0   total_time_spent = 0.0
    last_time_class = None       mastered_at = None

Versions:
- v1: legacy camelCase blob, a 12x12 list of lists of cells
- v2: {"schema_version": 2, "cells": [...]} with snake_case cells
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from mathgrid.core.facts import Fact, Guardrail
from mathgrid.core.grid import MASTERY_THRESHOLD, Grid, GridCell, TimeClass

SCHEMA_VERSION = 2


class GridCellRecord(BaseModel):
    """Stored form of a GridCell."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    multiplicand: int = Field(..., ge=1, le=12)
    multiplier: int = Field(..., ge=1, le=12)
    consecutive_correct: int = Field(
        0, ge=0, validation_alias=AliasChoices("consecutive_correct", "consecutiveCorrect")
    )
    last_attempt_correct: bool = Field(
        False, validation_alias=AliasChoices("last_attempt_correct", "lastAttemptCorrect")
    )
    attempts: int = Field(0, ge=0)
    is_locked: bool = Field(False, validation_alias=AliasChoices("is_locked", "isLocked"))
    average_time_seconds: float = Field(
        0.0, ge=0, validation_alias=AliasChoices("average_time_seconds", "averageTimeSeconds")
    )
    total_time_spent: float = Field(
        0.0, ge=0, validation_alias=AliasChoices("total_time_spent", "totalTimeSpent")
    )
    last_time_class: TimeClass | None = Field(
        None,
        validation_alias=AliasChoices(
            "last_time_class", "lastTimeClass", "lastAttemptTimeClassification"
        ),
    )
    mastered_at: datetime | None = Field(
        None,
        validation_alias=AliasChoices("mastered_at", "masteredAt", "masteryAchievedAt"),
    )

    @field_validator("consecutive_correct", "attempts", "total_time_spent", "average_time_seconds", mode="before")
    @classmethod
    def _null_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("last_attempt_correct", "is_locked", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    def to_cell(self) -> GridCell:
        attempts = self.attempts
        if self.consecutive_correct > attempts:
            logger.warning(
                f"Cell {self.multiplicand}x{self.multiplier} has streak "
                f"{self.consecutive_correct} > attempts {attempts}; raising attempts"
            )
            attempts = self.consecutive_correct
        return GridCell(
            fact=Fact(self.multiplicand, self.multiplier),
            consecutive_correct=self.consecutive_correct,
            last_attempt_correct=self.last_attempt_correct,
            attempts=attempts,
            is_locked=self.is_locked,
            average_time_seconds=self.average_time_seconds,
            total_time_spent=self.total_time_spent,
            last_time_class=self.last_time_class,
            mastered_at=self.mastered_at,
        )

    @classmethod
    def from_cell(cls, cell: GridCell) -> GridCellRecord:
        return cls(
            multiplicand=cell.multiplicand,
            multiplier=cell.multiplier,
            consecutive_correct=cell.consecutive_correct,
            last_attempt_correct=cell.last_attempt_correct,
            attempts=cell.attempts,
            is_locked=cell.is_locked,
            average_time_seconds=cell.average_time_seconds,
            total_time_spent=cell.total_time_spent,
            last_time_class=cell.last_time_class,
            mastered_at=cell.mastered_at,
        )


class GridRecord(BaseModel):
    """Full stored form of a Grid (cells + guardrail + totals)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schema_version: int = SCHEMA_VERSION
    student_id: str | None = None
    guardrail: Guardrail = Field(
        Guardrail.ONE_TO_NINE,
        validation_alias=AliasChoices("guardrail", "currentGuardrail", "guardrails_level"),
    )
    total_correct: int = Field(
        0,
        ge=0,
        validation_alias=AliasChoices("total_correct", "totalCorrectAnswers", "total_correct_answers"),
    )
    total_attempts: int = Field(
        0,
        ge=0,
        validation_alias=AliasChoices("total_attempts", "totalAttempts"),
    )
    updated_at: datetime | None = None
    cells: list[GridCellRecord] = Field(default_factory=list)

    def to_grid(self) -> Grid:
        return Grid.from_cells(
            (record.to_cell() for record in self.cells),
            student_id=self.student_id,
            guardrail=self.guardrail,
            total_correct=self.total_correct,
            total_attempts=self.total_attempts,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_grid(cls, grid: Grid) -> GridRecord:
        return cls(
            student_id=grid.student_id,
            guardrail=grid.guardrail,
            total_correct=grid.total_correct,
            total_attempts=grid.total_attempts,
            updated_at=grid.updated_at,
            cells=[GridCellRecord.from_cell(cell) for cell in grid.cells()],
        )


# ============================================================================
# Blob helpers
# ============================================================================


def dump_cells(cells: list[GridCell] | Grid) -> dict[str, Any]:
    """Serialize cells as a current-version grid_state blob."""
    if isinstance(cells, Grid):
        cells = list(cells.cells())
    return {
        "schema_version": SCHEMA_VERSION,
        "cells": [GridCellRecord.from_cell(c).model_dump(mode="json") for c in cells],
    }


def load_cells(blob: Any, *, migrated_at: datetime | None = None) -> list[GridCell]:
    """
    Load cells from a stored grid_state blob of any known version.

    Legacy v1 cells that already reached the mastery streak but carry no
    timestamp get `migrated_at` as their mastered_at (when given).
    """
    if blob is None:
        return []

    if isinstance(blob, list):
        version = 1
        raw_cells = [cell for row in blob for cell in (row if isinstance(row, list) else [row])]
    elif isinstance(blob, dict):
        version = int(blob.get("schema_version", 1))
        raw_cells = blob.get("cells", [])
    else:
        raise ValueError(f"Unrecognized grid_state blob type: {type(blob).__name__}")

    if version > SCHEMA_VERSION:
        raise ValueError(f"grid_state schema_version {version} is newer than {SCHEMA_VERSION}")

    cells = []
    for raw in raw_cells:
        record = GridCellRecord.model_validate(raw)
        if (
            version == 1
            and record.mastered_at is None
            and record.consecutive_correct >= MASTERY_THRESHOLD
            and migrated_at is not None
        ):
            record.mastered_at = migrated_at
        cells.append(record.to_cell())

    if version < SCHEMA_VERSION:
        logger.debug(f"Migrated {len(cells)} cells from grid_state v{version}")
    return cells
