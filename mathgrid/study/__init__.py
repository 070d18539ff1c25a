"""
Study Module for multiplication-fact sessions.

Provides:
- Problem selection (deterministic placement, adaptive practice)
- Placement scoring into a starting guardrail
- Batched grid-delta flushing
- The placement/practice session state machine
"""

from mathgrid.study.grid_sync import GridSyncQueue
from mathgrid.study.placement import recommend_guardrail
from mathgrid.study.selector import (
    PlacementPolicy,
    PracticePolicy,
    ProblemSelector,
    Selection,
    SelectionKind,
)
from mathgrid.study.session_engine import (
    AnswerResult,
    EngineConfig,
    RevealTimer,
    Session,
    SessionEngine,
    SessionState,
)

__all__ = [
    "ProblemSelector",
    "PlacementPolicy",
    "PracticePolicy",
    "Selection",
    "SelectionKind",
    "recommend_guardrail",
    "GridSyncQueue",
    "SessionEngine",
    "EngineConfig",
    "Session",
    "SessionState",
    "AnswerResult",
    "RevealTimer",
]
