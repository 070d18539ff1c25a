"""
Grid Store contract and in-memory implementation.

The session engine depends only on the GridStore protocol:

- fetch_grid: idempotent get-or-create of a zeroed grid
- persist_grid_deltas: atomic batch apply + running total increments
- set_guardrail
- create_session_record / record_attempt / complete_session_record /
  abandon_session_record: append-only audit trail
- get_journey_state: derived from the audit trail
- get_time_bucket_config / set_time_bucket_config: app configuration

InMemoryGridStore is used by tests and offline runs.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Protocol, Sequence, runtime_checkable

from loguru import logger

from mathgrid.core.errors import ValidationError
from mathgrid.core.facts import Guardrail
from mathgrid.core.grid import Grid, GridCell
from mathgrid.core.mastery import Attempt, TimeBucketConfig
from mathgrid.core.records import (
    JourneyState,
    SessionRecord,
    SessionStatus,
    SessionSummary,
    SessionType,
    derive_journey_state,
)


@runtime_checkable
class GridStore(Protocol):
    """Persistence collaborator for the session engine."""

    async def fetch_grid(self, student_id: str) -> Grid: ...

    async def persist_grid_deltas(self, student_id: str, deltas: Sequence[GridCell]) -> None: ...

    async def set_guardrail(self, student_id: str, guardrail: Guardrail) -> None: ...

    async def create_session_record(
        self, student_id: str, session_type: SessionType, total_items: int
    ) -> str: ...

    async def record_attempt(self, session_id: str, attempt: Attempt) -> None: ...

    async def complete_session_record(self, session_id: str, summary: SessionSummary) -> None: ...

    async def abandon_session_record(self, session_id: str) -> None: ...

    async def get_journey_state(self, student_id: str) -> JourneyState: ...

    async def get_time_bucket_config(self) -> TimeBucketConfig: ...

    async def set_time_bucket_config(self, config: TimeBucketConfig) -> None: ...


class InMemoryGridStore:
    """
    Dict-backed GridStore.

    Batches are applied to a copy of the grid and swapped in under a lock,
    so readers never observe a partially applied batch.
    """

    def __init__(self, default_guardrail: Guardrail = Guardrail.ONE_TO_NINE):
        self.default_guardrail = default_guardrail
        self.grids: dict[str, Grid] = {}
        self.sessions: dict[str, SessionRecord] = {}
        self.attempts: dict[str, list[Attempt]] = {}
        self.time_buckets = TimeBucketConfig()
        self.flush_count = 0
        self._lock = asyncio.Lock()

    async def fetch_grid(self, student_id: str) -> Grid:
        async with self._lock:
            grid = self.grids.get(student_id)
            if grid is None:
                grid = Grid.fresh(student_id=student_id, guardrail=self.default_guardrail)
                grid.updated_at = datetime.now(UTC)
                self.grids[student_id] = grid
                logger.info(f"Created grid for student {student_id}")
            return grid.copy()

    async def persist_grid_deltas(self, student_id: str, deltas: Sequence[GridCell]) -> None:
        if not deltas:
            return
        async with self._lock:
            current = self.grids.get(student_id)
            if current is None:
                current = Grid.fresh(student_id=student_id, guardrail=self.default_guardrail)
            staged = current.copy()
            staged.apply_batch(deltas)
            self.grids[student_id] = staged
            self.flush_count += 1
        logger.debug(f"Persisted {len(deltas)} grid deltas for {student_id}")

    async def set_guardrail(self, student_id: str, guardrail: Guardrail) -> None:
        async with self._lock:
            grid = self.grids.get(student_id)
            if grid is None:
                grid = Grid.fresh(student_id=student_id, guardrail=self.default_guardrail)
                self.grids[student_id] = grid
            grid.set_guardrail(guardrail)
            grid.updated_at = datetime.now(UTC)

    async def create_session_record(
        self, student_id: str, session_type: SessionType, total_items: int
    ) -> str:
        session_id = str(uuid.uuid4())
        self.sessions[session_id] = SessionRecord(
            session_id=session_id,
            student_id=student_id,
            session_type=SessionType(session_type),
            total_items=total_items,
        )
        self.attempts[session_id] = []
        return session_id

    async def record_attempt(self, session_id: str, attempt: Attempt) -> None:
        recorded = self._attempts_for(session_id)
        if any(a.attempt_number == attempt.attempt_number for a in recorded):
            raise ValidationError(
                f"Attempt number {attempt.attempt_number} already recorded for session {session_id}"
            )
        recorded.append(attempt)

    async def complete_session_record(self, session_id: str, summary: SessionSummary) -> None:
        record = self._record(session_id)
        record.status = SessionStatus.COMPLETED
        record.completed_at = datetime.now(UTC)
        record.summary = summary.to_dict()

    async def abandon_session_record(self, session_id: str) -> None:
        record = self._record(session_id)
        if record.status == SessionStatus.IN_PROGRESS:
            record.status = SessionStatus.ABANDONED
            record.completed_at = datetime.now(UTC)

    async def get_journey_state(self, student_id: str) -> JourneyState:
        records = [r for r in self.sessions.values() if r.student_id == student_id]
        return derive_journey_state(records)

    async def get_time_bucket_config(self) -> TimeBucketConfig:
        return self.time_buckets

    async def set_time_bucket_config(self, config: TimeBucketConfig) -> None:
        self.time_buckets = config

    def _record(self, session_id: str) -> SessionRecord:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise ValidationError(f"Unknown session {session_id}") from None

    def _attempts_for(self, session_id: str) -> list[Attempt]:
        self._record(session_id)
        return self.attempts.setdefault(session_id, [])
