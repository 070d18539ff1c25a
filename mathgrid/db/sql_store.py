"""
SQLAlchemy-backed GridStore.

Each operation runs one `session_scope()` transaction in a worker thread
(asyncio.to_thread) so the event loop never blocks on the database.

- persist_grid_deltas reads the grid row under a row lock, applies the
  batch, writes the blob and increments the totals in SQL inside a single
  transaction. A failure rolls the whole batch back. Grid writes for one
  student are also serialized in-process, since SQLite ignores FOR UPDATE.
- Database errors surface as PersistenceFailure; contract violations
  (duplicate attempt numbers, unknown sessions) as ValidationError.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Callable, Sequence, TypeVar

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from mathgrid.core.errors import PersistenceFailure, ValidationError
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
from mathgrid.core.schema import dump_cells, load_cells
from mathgrid.db.database import (
    build_engine,
    build_session_factory,
    get_session_factory,
    init_db,
    session_scope,
)
from mathgrid.db.models import AppConfig, LearningSession, MathGridProgress, QuestionAttempt

T = TypeVar("T")

TIME_BUCKETS_KEY = "time_buckets"


class SqlGridStore:
    """GridStore over the math_grid_progress / learning_sessions tables."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        default_guardrail: Guardrail = Guardrail.ONE_TO_NINE,
        default_buckets: TimeBucketConfig | None = None,
    ):
        self._factory = session_factory or get_session_factory()
        self.default_guardrail = default_guardrail
        self.default_buckets = default_buckets or TimeBucketConfig()
        self._grid_locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SqlGridStore:
        """Store on the configured database, creating tables if needed."""
        settings = settings or get_settings()
        engine = build_engine(settings.database_url, echo=settings.log_level == "DEBUG")
        init_db(engine)
        return cls(
            build_session_factory(engine),
            default_guardrail=Guardrail.parse(settings.default_guardrail),
            default_buckets=TimeBucketConfig(**settings.get_time_buckets()),
        )

    async def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        def _in_transaction() -> T:
            with session_scope(self._factory) as session:
                return work(session)

        try:
            return await asyncio.to_thread(_in_transaction)
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}")
            raise PersistenceFailure(f"{operation} failed: {e}") from e
        except (PydanticValidationError, ValueError) as e:
            logger.error(f"Unreadable stored data during {operation}: {e}")
            raise PersistenceFailure(f"{operation} failed: stored data is invalid: {e}") from e

    def _grid_lock(self, student_id: str) -> asyncio.Lock:
        lock = self._grid_locks.get(student_id)
        if lock is None:
            lock = self._grid_locks[student_id] = asyncio.Lock()
        return lock

    # ========================================
    # Grid
    # ========================================

    def _get_or_create_row(self, session: Session, student_id: str) -> MathGridProgress:
        row = session.scalars(
            select(MathGridProgress)
            .where(MathGridProgress.student_id == student_id)
            .with_for_update()
        ).one_or_none()
        if row is None:
            fresh = Grid.fresh(student_id=student_id, guardrail=self.default_guardrail)
            row = MathGridProgress(
                student_id=student_id,
                grid_state=dump_cells(fresh),
                guardrails_level=fresh.guardrail.value,
                total_correct_answers=0,
                total_attempts=0,
                updated_at=datetime.now(UTC),
            )
            session.add(row)
            session.flush()
            logger.info(f"Created grid for student {student_id}")
        return row

    @staticmethod
    def _row_to_grid(row: MathGridProgress) -> Grid:
        return Grid.from_cells(
            load_cells(row.grid_state, migrated_at=row.updated_at),
            student_id=row.student_id,
            guardrail=Guardrail.parse(row.guardrails_level),
            total_correct=row.total_correct_answers,
            total_attempts=row.total_attempts,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _write_grid(row: MathGridProgress, grid: Grid) -> None:
        row.grid_state = dump_cells(grid)
        row.guardrails_level = grid.guardrail.value
        row.updated_at = datetime.now(UTC)

    async def fetch_grid(self, student_id: str) -> Grid:
        def work(session: Session) -> Grid:
            return self._row_to_grid(self._get_or_create_row(session, student_id))

        async with self._grid_lock(student_id):
            return await self._run("fetch_grid", work)

    async def persist_grid_deltas(self, student_id: str, deltas: Sequence[GridCell]) -> None:
        if not deltas:
            return
        deltas = list(deltas)
        correct = sum(1 for d in deltas if d.last_attempt_correct)

        def work(session: Session) -> None:
            row = self._get_or_create_row(session, student_id)
            grid = self._row_to_grid(row)
            grid.apply_batch(deltas)
            self._write_grid(row, grid)
            row.total_attempts = MathGridProgress.total_attempts + len(deltas)
            row.total_correct_answers = MathGridProgress.total_correct_answers + correct

        async with self._grid_lock(student_id):
            await self._run("persist_grid_deltas", work)
        logger.debug(f"Persisted {len(deltas)} grid deltas for {student_id}")

    async def set_guardrail(self, student_id: str, guardrail: Guardrail) -> None:
        def work(session: Session) -> None:
            row = self._get_or_create_row(session, student_id)
            grid = self._row_to_grid(row)
            grid.set_guardrail(guardrail)
            self._write_grid(row, grid)

        async with self._grid_lock(student_id):
            await self._run("set_guardrail", work)

    # ========================================
    # Audit trail
    # ========================================

    async def create_session_record(
        self, student_id: str, session_type: SessionType, total_items: int
    ) -> str:
        session_id = str(uuid.uuid4())

        def work(session: Session) -> None:
            session.add(
                LearningSession(
                    id=session_id,
                    student_id=student_id,
                    session_type=SessionType(session_type).value,
                    status=SessionStatus.IN_PROGRESS.value,
                    total_items=total_items,
                    started_at=datetime.now(UTC),
                )
            )

        await self._run("create_session_record", work)
        return session_id

    @staticmethod
    def _session_row(session: Session, session_id: str) -> LearningSession:
        row = session.get(LearningSession, session_id)
        if row is None:
            raise ValidationError(f"Unknown session {session_id}")
        return row

    async def record_attempt(self, session_id: str, attempt: Attempt) -> None:
        def work(session: Session) -> None:
            self._session_row(session, session_id)
            duplicate = session.scalar(
                select(QuestionAttempt.id).where(
                    QuestionAttempt.session_id == session_id,
                    QuestionAttempt.attempt_number == attempt.attempt_number,
                )
            )
            if duplicate is not None:
                raise ValidationError(
                    f"Attempt number {attempt.attempt_number} already recorded for session {session_id}"
                )
            session.add(
                QuestionAttempt(
                    session_id=session_id,
                    attempt_number=attempt.attempt_number,
                    multiplicand=attempt.fact.multiplicand,
                    multiplier=attempt.fact.multiplier,
                    user_answer=attempt.user_answer,
                    correct_answer=attempt.correct_answer,
                    is_correct=attempt.correct,
                    time_spent_seconds=attempt.time_spent_seconds,
                    time_classification=attempt.time_class.value,
                    answered_at=attempt.recorded_at,
                )
            )

        await self._run("record_attempt", work)

    async def complete_session_record(self, session_id: str, summary: SessionSummary) -> None:
        def work(session: Session) -> None:
            row = self._session_row(session, session_id)
            row.status = SessionStatus.COMPLETED.value
            row.completed_at = datetime.now(UTC)
            row.summary = summary.to_dict()

        await self._run("complete_session_record", work)

    async def abandon_session_record(self, session_id: str) -> None:
        def work(session: Session) -> None:
            row = self._session_row(session, session_id)
            if row.status == SessionStatus.IN_PROGRESS.value:
                row.status = SessionStatus.ABANDONED.value
                row.completed_at = datetime.now(UTC)

        await self._run("abandon_session_record", work)

    async def get_journey_state(self, student_id: str) -> JourneyState:
        def work(session: Session) -> list[SessionRecord]:
            rows = session.scalars(
                select(LearningSession).where(LearningSession.student_id == student_id)
            ).all()
            return [
                SessionRecord(
                    session_id=row.id,
                    student_id=row.student_id,
                    session_type=SessionType(row.session_type),
                    total_items=row.total_items,
                    status=SessionStatus(row.status),
                    started_at=row.started_at,
                    completed_at=row.completed_at,
                    summary=row.summary or {},
                )
                for row in rows
            ]

        return derive_journey_state(await self._run("get_journey_state", work))

    # ========================================
    # App config
    # ========================================

    async def get_time_bucket_config(self) -> TimeBucketConfig:
        def work(session: Session) -> TimeBucketConfig:
            row = session.get(AppConfig, TIME_BUCKETS_KEY)
            if row is None:
                return self.default_buckets
            return TimeBucketConfig.model_validate(row.value)

        return await self._run("get_time_bucket_config", work)

    async def set_time_bucket_config(self, config: TimeBucketConfig) -> None:
        def work(session: Session) -> None:
            row = session.get(AppConfig, TIME_BUCKETS_KEY)
            value = config.model_dump()
            if row is None:
                session.add(
                    AppConfig(
                        key=TIME_BUCKETS_KEY,
                        value=value,
                        description="Answer latency thresholds in seconds",
                    )
                )
            else:
                row.value = value

        await self._run("set_time_bucket_config", work)
