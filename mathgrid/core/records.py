"""
Session audit records and learner journey state.

The audit trail (session records + attempts) is append-only and lives in
the grid store, independent of the in-memory Session. Journey state is
derived from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Iterable

from mathgrid.core.facts import Fact, Guardrail


class SessionType(str, Enum):
    """Kind of session being run."""

    PLACEMENT = "placement"
    PRACTICE = "practice"


class SessionStatus(str, Enum):
    """Status of an audit-trail session record."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class JourneyState(str, Enum):
    """Where a learner is in the placement -> practice journey."""

    NEEDS_PLACEMENT = "needs_placement"
    PLACEMENT_IN_PROGRESS = "placement_in_progress"
    PLACEMENT_COMPLETED = "placement_completed"
    PRACTICE_READY = "practice_ready"

    @property
    def can_practice(self) -> bool:
        return self in (JourneyState.PLACEMENT_COMPLETED, JourneyState.PRACTICE_READY)


@dataclass
class SessionRecord:
    """One row of the session audit trail."""

    session_id: str
    student_id: str
    session_type: SessionType
    total_items: int
    status: SessionStatus = SessionStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    summary: dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionSummary:
    """Result of a completed session."""

    session_id: str
    session_type: SessionType
    total_problems: int
    correct_answers: int
    accuracy: int
    duration_seconds: float = 0.0
    average_time_per_question: float = 0.0
    fast_count: int = 0
    medium_count: int = 0
    slow_count: int = 0
    incorrect_facts: list[Fact] = field(default_factory=list)
    guardrail: Guardrail | None = None
    recommended_guardrail: Guardrail | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dictionary for the audit trail."""
        return {
            "session_id": self.session_id,
            "session_type": self.session_type.value,
            "total_problems": self.total_problems,
            "correct_answers": self.correct_answers,
            "accuracy": self.accuracy,
            "duration_seconds": round(self.duration_seconds, 3),
            "average_time_per_question": round(self.average_time_per_question, 3),
            "fast_count": self.fast_count,
            "medium_count": self.medium_count,
            "slow_count": self.slow_count,
            "incorrect_facts": [[f.multiplicand, f.multiplier] for f in self.incorrect_facts],
            "guardrail": self.guardrail.value if self.guardrail else None,
            "recommended_guardrail": (
                self.recommended_guardrail.value if self.recommended_guardrail else None
            ),
        }


def derive_journey_state(records: Iterable[SessionRecord]) -> JourneyState:
    """
    Derive the journey state from a learner's session records.

    - completed placement and any practice session -> practice_ready
    - completed placement                          -> placement_completed
    - placement still in progress                  -> placement_in_progress
    - otherwise                                    -> needs_placement
    """
    records = list(records)
    placement_done = any(
        r.session_type == SessionType.PLACEMENT and r.status == SessionStatus.COMPLETED
        for r in records
    )
    if placement_done:
        if any(r.session_type == SessionType.PRACTICE for r in records):
            return JourneyState.PRACTICE_READY
        return JourneyState.PLACEMENT_COMPLETED

    if any(
        r.session_type == SessionType.PLACEMENT and r.status == SessionStatus.IN_PROGRESS
        for r in records
    ):
        return JourneyState.PLACEMENT_IN_PROGRESS
    return JourneyState.NEEDS_PLACEMENT
