"""
Session Engine for Placement and Practice.

Orchestrates one session as a state machine:

    NOT_STARTED -> IN_PROGRESS -> AWAITING_ANSWER <-> SHOWING_RESULT -> COMPLETED
                                           (any non-terminal) -> ABANDONED

Session Flow:
1. start(): fetch (or create) the grid, build the queue, open an audit record
2. submit_answer(): score, run the mastery engine, queue the grid delta
3. advance(): next problem, or COMPLETED when the queue/selector is done
4. complete(): flush all deltas as one batch, close the audit record

Every operation checks the current state before touching anything and
raises InvalidTransition otherwise. The reveal-then-advance delay is a
RevealTimer owned by the session; it is cancelled by any transition that
makes it stale.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable

from loguru import logger

from config import Settings, get_settings
from mathgrid.core.errors import (
    InvalidTransition,
    MathGridError,
    NotAuthenticated,
    PersistenceFailure,
    ValidationError,
)
from mathgrid.core.facts import Fact, Guardrail
from mathgrid.core.grid import Grid, GridCell, TimeClass, percentage
from mathgrid.core.mastery import Attempt, MasteryEngine, TimeBucketConfig, normalize_time
from mathgrid.core.records import SessionSummary, SessionType
from mathgrid.db.store import GridStore
from mathgrid.study.grid_sync import GridSyncQueue
from mathgrid.study.placement import recommend_guardrail
from mathgrid.study.selector import (
    PlacementPolicy,
    PracticePolicy,
    ProblemSelector,
    SelectionKind,
)


class SessionState(str, Enum):
    """Lifecycle state of a running session."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    AWAITING_ANSWER = "awaiting_answer"
    SHOWING_RESULT = "showing_result"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ABANDONED)


@dataclass
class Session:
    """
    In-memory state of one placement or practice run.

    Owned by the engine running it; discarded on completion or abandonment.
    """

    session_id: str
    session_type: SessionType
    student_id: str
    problem_queue: list[Fact] = field(default_factory=list)
    current_index: int = 0
    incorrect_facts: set[Fact] = field(default_factory=set)
    review_queue: list[Fact] = field(default_factory=list)
    pending_grid_updates: list[GridCell] = field(default_factory=list)
    attempts: list[Attempt] = field(default_factory=list)
    unsynced_attempts: list[Attempt] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_monotonic: float = 0.0
    ended_monotonic: float | None = None

    @property
    def current_problem(self) -> Fact | None:
        if 0 <= self.current_index < len(self.problem_queue):
            return self.problem_queue[self.current_index]
        return None

    @property
    def shown(self) -> list[Fact]:
        """Facts presented so far, oldest first."""
        return self.problem_queue[: self.current_index + 1]

    @property
    def next_attempt_number(self) -> int:
        return self.attempts[-1].attempt_number + 1 if self.attempts else 1

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.attempts if a.correct)

    def record(self, attempt: Attempt) -> None:
        """Append an attempt; attempt numbers must strictly increase."""
        if attempt.attempt_number != self.next_attempt_number:
            raise ValidationError(
                f"Attempt number {attempt.attempt_number} out of sequence "
                f"(expected {self.next_attempt_number})"
            )
        self.attempts.append(attempt)


@dataclass(frozen=True)
class AnswerResult:
    """What the UI shows after an answer."""

    correct: bool
    correct_answer: int
    time_spent: float
    time_class: TimeClass
    attempt_number: int
    mastered: bool = False


class RevealTimer:
    """
    Cancellable "show result, then advance" token.

    Wraps a loop.call_later handle. Cancelling is idempotent and a
    cancelled timer never fires.
    """

    def __init__(self, delay: float, callback: Callable[[], Any]):
        self.delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self.fired = False
        self.cancelled = False

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        self.fired = True
        self._handle = None
        self._callback()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if not self.fired:
            self.cancelled = True

    @property
    def pending(self) -> bool:
        return self._handle is not None and not self.cancelled and not self.fired


@dataclass
class EngineConfig:
    """Session engine tuning, usually built from Settings."""

    placement_length: int = 20
    practice_max_problems: int = 50
    practice_time_limit_seconds: float = 600.0
    reveal_seconds: float = 0.0
    review_gap: int = 3
    mastery_threshold: int = 3
    placement_pass_accuracy: float = 0.80
    flush_retry_attempts: int = 0
    flush_retry_backoff_seconds: float = 0.5
    time_buckets: TimeBucketConfig = field(default_factory=TimeBucketConfig)

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineConfig:
        return cls(
            placement_length=settings.placement_length,
            practice_max_problems=settings.practice_max_problems,
            practice_time_limit_seconds=settings.practice_time_limit_minutes * 60,
            reveal_seconds=settings.reveal_seconds,
            review_gap=settings.review_gap,
            mastery_threshold=settings.mastery_threshold,
            placement_pass_accuracy=settings.placement_pass_accuracy,
            flush_retry_attempts=settings.flush_retry_attempts,
            flush_retry_backoff_seconds=settings.flush_retry_backoff_seconds,
            time_buckets=TimeBucketConfig(**settings.get_time_buckets()),
        )


class SessionEngine:
    """
    Drives a single placement or practice session for one student.

    Single actor: one caller drives one session at a time. The only awaits
    are store calls (grid fetch, audit records, batched flush).
    """

    def __init__(
        self,
        store: GridStore,
        student_id: str | None,
        grade_level: str | int = "3",
        *,
        config: EngineConfig | None = None,
        selector: ProblemSelector | None = None,
        mastery: MasteryEngine | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_advance: Callable[[Fact | None], Any] | None = None,
    ):
        self.store = store
        self.student_id = student_id
        self.grade_level = grade_level
        self.config = config or EngineConfig()
        self.selector = selector or ProblemSelector(
            placement=PlacementPolicy(length=self.config.placement_length),
            practice=PracticePolicy(
                review_gap=self.config.review_gap,
                threshold=self.config.mastery_threshold,
            ),
        )
        self._mastery = mastery
        self._clock = clock
        self.on_advance = on_advance

        self._state = SessionState.NOT_STARTED
        self.session: Session | None = None
        self.grid: Grid | None = None
        self.sync: GridSyncQueue | None = None
        self.reveal_timer: RevealTimer | None = None
        self.pending_guardrail: Guardrail | None = None
        self.stored_guardrail: Guardrail | None = None
        self.summary: SessionSummary | None = None
        self._finalized = False

    @classmethod
    def from_settings(
        cls,
        store: GridStore,
        student_id: str | None,
        grade_level: str | int = "3",
        settings: Settings | None = None,
        **kwargs,
    ) -> SessionEngine:
        settings = settings or get_settings()
        return cls(
            store,
            student_id,
            grade_level,
            config=EngineConfig.from_settings(settings),
            **kwargs,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_problem(self) -> Fact | None:
        if self.session is None or self._state not in (
            SessionState.AWAITING_ANSWER,
            SessionState.SHOWING_RESULT,
        ):
            return None
        return self.session.current_problem

    def _require(self, operation: str, *allowed: SessionState) -> None:
        if self._state not in allowed:
            raise InvalidTransition(operation, self._state.value)

    # ========================================
    # start
    # ========================================

    async def start(
        self,
        session_type: SessionType | str,
        guardrail: Guardrail | str | None = None,
    ) -> Fact:
        """
        Begin a session and return the first problem.

        Args:
            session_type: placement or practice
            guardrail: Optional guardrail override for a practice session

        Raises:
            NotAuthenticated: no student identity
            InvalidTransition: already started
            ValidationError: nothing left to practice
            PersistenceFailure: grid fetch failed
        """
        self._require("start", SessionState.NOT_STARTED)
        if not self.student_id:
            raise NotAuthenticated("A student identity is required to start a session")

        session_type = SessionType(session_type)
        grid = await self.store.fetch_grid(self.student_id)
        self.stored_guardrail = grid.guardrail
        if guardrail is not None:
            guardrail = Guardrail.parse(guardrail)
            if guardrail != grid.guardrail:
                grid.set_guardrail(guardrail)
                self.pending_guardrail = guardrail

        if self._mastery is None:
            buckets = await self._load_buckets()
            self._mastery = MasteryEngine(buckets=buckets, threshold=self.config.mastery_threshold)

        if session_type == SessionType.PLACEMENT:
            queue = self.selector.placement_queue(self.student_id, self.grade_level)
            total_items = len(queue)
        else:
            first = self._select_practice(grid, history=[], review_queue=[])
            if first is None:
                raise ValidationError("Every fact is mastered; there is nothing to practice")
            queue = [first]
            total_items = self.config.practice_max_problems

        session_id = await self.store.create_session_record(
            self.student_id, session_type, total_items
        )

        self.grid = grid
        self.sync = GridSyncQueue(
            self.store,
            self.student_id,
            retry_attempts=self.config.flush_retry_attempts,
            retry_backoff_seconds=self.config.flush_retry_backoff_seconds,
        )
        self.session = Session(
            session_id=session_id,
            session_type=session_type,
            student_id=self.student_id,
            problem_queue=queue,
            started_monotonic=self._clock(),
        )
        self._state = SessionState.IN_PROGRESS
        logger.info(
            f"Started {session_type.value} session {session_id} for {self.student_id} "
            f"(guardrail {grid.guardrail.value}, {len(queue)} queued)"
        )
        self._state = SessionState.AWAITING_ANSWER
        return queue[0]

    async def _load_buckets(self) -> TimeBucketConfig:
        try:
            return await self.store.get_time_bucket_config()
        except PersistenceFailure as e:
            logger.warning(f"Using configured time buckets; config fetch failed: {e}")
            return self.config.time_buckets

    # ========================================
    # submit_answer
    # ========================================

    async def submit_answer(self, value: Any, time_spent: float) -> AnswerResult:
        """
        Score an answer to the current problem.

        Raises:
            InvalidTransition: not awaiting an answer
            ValidationError: value is not an integer
        """
        self._require("submit an answer", SessionState.AWAITING_ANSWER)
        answer = parse_answer(value)
        seconds = _parse_time(time_spent)

        self._cancel_reveal()
        session = self.session
        fact = session.current_problem
        attempt = self._mastery.score(fact, answer, seconds, session.next_attempt_number)
        session.record(attempt)

        cell = self.grid.cell_for(fact)
        new_cell = self._mastery.update(cell, attempt)
        self.grid.apply(new_cell)
        session.pending_grid_updates.append(new_cell)

        if not attempt.correct:
            session.incorrect_facts.add(fact)
            if session.session_type == SessionType.PRACTICE and fact not in session.review_queue:
                session.review_queue.append(fact)

        self._state = SessionState.SHOWING_RESULT
        await self._record_attempt(attempt)

        logger.debug(
            f"#{attempt.attempt_number} {fact.label}={answer} "
            f"{'correct' if attempt.correct else 'wrong'} in {attempt.time_spent_seconds:.1f}s "
            f"({attempt.time_class.value})"
        )

        if self.config.reveal_seconds > 0:
            self.reveal_timer = RevealTimer(self.config.reveal_seconds, self._auto_advance)
            self.reveal_timer.start()

        return AnswerResult(
            correct=attempt.correct,
            correct_answer=fact.answer,
            time_spent=attempt.time_spent_seconds,
            time_class=attempt.time_class,
            attempt_number=attempt.attempt_number,
            mastered=new_cell.is_mastered and not cell.is_mastered,
        )

    async def _record_attempt(self, attempt: Attempt) -> None:
        try:
            await self.store.record_attempt(self.session.session_id, attempt)
        except MathGridError as e:
            logger.warning(f"Attempt #{attempt.attempt_number} not recorded yet: {e}")
            self.session.unsynced_attempts.append(attempt)

    # ========================================
    # advance
    # ========================================

    def advance(self) -> Fact | None:
        """
        Move past the shown result.

        Returns:
            The next problem, or None when the session is now COMPLETED
        """
        self._require("advance", SessionState.SHOWING_RESULT)
        self._cancel_reveal()
        session = self.session

        if session.session_type == SessionType.PLACEMENT:
            next_fact = self._next_placement()
        else:
            next_fact = self._next_practice()

        if next_fact is None:
            self._state = SessionState.COMPLETED
            session.ended_monotonic = self._clock()
            logger.info(
                f"Session {session.session_id} finished after {len(session.attempts)} problems"
            )
        else:
            self._state = SessionState.IN_PROGRESS
            self._state = SessionState.AWAITING_ANSWER

        if self.on_advance is not None:
            self.on_advance(next_fact)
        return next_fact

    def _next_placement(self) -> Fact | None:
        session = self.session
        if session.current_index + 1 >= len(session.problem_queue):
            return None
        session.current_index += 1
        return session.problem_queue[session.current_index]

    def _next_practice(self) -> Fact | None:
        session = self.session
        if len(session.attempts) >= self.config.practice_max_problems:
            logger.info(f"Practice problem cap {self.config.practice_max_problems} reached")
            return None
        elapsed = self._clock() - session.started_monotonic
        if elapsed >= self.config.practice_time_limit_seconds:
            logger.info(f"Practice time limit reached after {elapsed:.0f}s")
            return None

        fact = self._select_practice(self.grid, session.shown, session.review_queue)
        if fact is None:
            return None
        if fact in session.review_queue:
            session.review_queue.remove(fact)
        session.problem_queue.append(fact)
        session.current_index = len(session.problem_queue) - 1
        return fact

    def _select_practice(self, grid: Grid, history, review_queue) -> Fact | None:
        """Ask the practice policy, widening the guardrail as requested."""
        while True:
            selection = self.selector.next_practice(grid, history, review_queue)
            if selection.kind == SelectionKind.PROBLEM:
                return selection.fact
            if selection.kind == SelectionKind.COMPLETE:
                return None
            logger.info(
                f"Widening guardrail {grid.guardrail.value} -> {selection.guardrail.value} "
                f"for {self.student_id}"
            )
            grid.set_guardrail(selection.guardrail)
            self.pending_guardrail = selection.guardrail

    def _auto_advance(self) -> None:
        if self._state != SessionState.SHOWING_RESULT:
            return
        self.advance()

    def _cancel_reveal(self) -> None:
        if self.reveal_timer is not None:
            self.reveal_timer.cancel()
            self.reveal_timer = None

    # ========================================
    # complete / abandon
    # ========================================

    async def complete(self) -> SessionSummary:
        """
        Flush all grid deltas as one batch and close the audit record.

        Safe to call again after a PersistenceFailure: the same deltas are
        resubmitted. Once finalized, returns the same summary.

        Raises:
            InvalidTransition: session not COMPLETED
            ValidationError: no problems were answered
            PersistenceFailure: flush failed (deltas attached, still pending)
        """
        self._require("complete", SessionState.COMPLETED)
        if self._finalized:
            return self.summary

        session = self.session
        summary = self._build_summary()

        if session.pending_grid_updates:
            self.sync.enqueue(session.pending_grid_updates)
            session.pending_grid_updates = []
        await self.sync.flush()

        # After the flush, so the change also unlocks cells locked by this session
        guardrail = summary.recommended_guardrail or self.pending_guardrail
        if guardrail is not None and guardrail != self.stored_guardrail:
            await self.store.set_guardrail(self.student_id, guardrail)
            self.grid.set_guardrail(guardrail)
            self.stored_guardrail = guardrail
        self.pending_guardrail = None

        while session.unsynced_attempts:
            await self.store.record_attempt(session.session_id, session.unsynced_attempts[0])
            session.unsynced_attempts.pop(0)

        await self.store.complete_session_record(session.session_id, summary)
        self.summary = summary
        self._finalized = True
        logger.info(
            f"Completed {session.session_type.value} session {session.session_id}: "
            f"{summary.correct_answers}/{summary.total_problems} ({summary.accuracy}%)"
        )
        return summary

    async def abandon(self) -> None:
        """Cancel the session. Pending deltas are discarded, not flushed."""
        if self._state.is_terminal:
            raise InvalidTransition("abandon", self._state.value)
        self._cancel_reveal()
        previous = self._state
        self._state = SessionState.ABANDONED
        if self.session is not None:
            logger.info(
                f"Abandoned session {self.session.session_id} with "
                f"{len(self.session.pending_grid_updates)} unflushed deltas"
            )
            self.session.pending_grid_updates = []
            if previous != SessionState.NOT_STARTED:
                try:
                    await self.store.abandon_session_record(self.session.session_id)
                except PersistenceFailure as e:
                    logger.warning(f"Could not mark session abandoned: {e}")

    def _build_summary(self) -> SessionSummary:
        session = self.session
        total = len(session.attempts)
        if total == 0:
            raise ValidationError("Cannot summarize a session with no answered problems")

        correct = session.correct_count
        total_time = sum(a.time_spent_seconds for a in session.attempts)
        classes = [a.time_class for a in session.attempts]
        ended = session.ended_monotonic if session.ended_monotonic is not None else self._clock()

        recommended = None
        if session.session_type == SessionType.PLACEMENT:
            recommended = recommend_guardrail(
                session.attempts, pass_accuracy=self.config.placement_pass_accuracy
            )

        return SessionSummary(
            session_id=session.session_id,
            session_type=session.session_type,
            total_problems=total,
            correct_answers=correct,
            accuracy=percentage(correct, total),
            duration_seconds=max(ended - session.started_monotonic, 0.0),
            average_time_per_question=total_time / total,
            fast_count=classes.count(TimeClass.FAST),
            medium_count=classes.count(TimeClass.MEDIUM),
            slow_count=classes.count(TimeClass.SLOW),
            incorrect_facts=sorted(session.incorrect_facts),
            guardrail=recommended or self.grid.guardrail,
            recommended_guardrail=recommended,
        )


def parse_answer(value: Any) -> int:
    """Accept an int or an integer string; reject everything else."""
    if isinstance(value, bool):
        raise ValidationError(f"Answer must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
    raise ValidationError(f"Answer must be an integer, got {value!r}")


def _parse_time(time_spent: Any) -> float:
    if isinstance(time_spent, bool) or not isinstance(time_spent, (int, float)):
        raise ValidationError(f"time_spent must be a number of seconds, got {time_spent!r}")
    if math.isinf(time_spent):
        raise ValidationError(f"time_spent must be finite, got {time_spent!r}")
    if time_spent < 0:
        logger.warning(f"Negative time_spent {time_spent}; clamping to 0")
    return normalize_time(float(time_spent))
