"""
Core Module - Facts, grid model and mastery rules.

Components:
- facts: Fact, Guardrail, DifficultyBand
- grid: GridCell, Grid, TimeClass, MasteryScope
- mastery: Attempt, TimeBucketConfig, update(), MasteryEngine
- schema: versioned storage records for grid blobs
- errors: engine error kinds

Design Principle:
Session and selection code in mathgrid.study imports from here and never
writes grid fields directly; all cell changes flow through mastery.update.
"""

from mathgrid.core.errors import (
    InvalidTransition,
    MathGridError,
    NotAuthenticated,
    PersistenceFailure,
    ValidationError,
)
from mathgrid.core.facts import DifficultyBand, Fact, Guardrail, all_facts, facts_within
from mathgrid.core.grid import (
    MASTERY_THRESHOLD,
    CellStatus,
    Grid,
    GridCell,
    MasteryScope,
    TimeClass,
)
from mathgrid.core.mastery import (
    Attempt,
    MasteryEngine,
    TimeBucketConfig,
    classify_time,
    update,
)

__all__ = [
    # Facts
    "Fact",
    "Guardrail",
    "DifficultyBand",
    "all_facts",
    "facts_within",
    # Grid
    "Grid",
    "GridCell",
    "CellStatus",
    "MasteryScope",
    "TimeClass",
    "MASTERY_THRESHOLD",
    # Mastery
    "Attempt",
    "MasteryEngine",
    "TimeBucketConfig",
    "classify_time",
    "update",
    # Errors
    "MathGridError",
    "InvalidTransition",
    "ValidationError",
    "PersistenceFailure",
    "NotAuthenticated",
]
