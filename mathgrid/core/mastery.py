"""
Mastery Engine.

Pure state transitions for grid cells. Given a cell and a scored attempt,
`update` returns the next cell; it performs no I/O and reads no clock
unless `now` is omitted. Persistence happens later, in the batched flush.

Rules, in order:
1. attempts + 1
2. last_attempt_correct = attempt.correct
3. consecutive_correct + 1 on correct, reset to 0 on incorrect
4. time classification against fast/medium thresholds
5. total_time_spent += time; average = total / attempts
6. mastered_at is set once, when the streak first reaches the threshold
7. a mastered cell is locked; nothing here ever unlocks
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from mathgrid.core.facts import Fact
from mathgrid.core.grid import MASTERY_THRESHOLD, GridCell, TimeClass


class TimeBucketConfig(BaseModel):
    """Latency thresholds in seconds: < fast is fast, < medium is medium."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    fast_threshold: float = Field(
        5.0, gt=0, validation_alias=AliasChoices("fast_threshold", "fastThreshold")
    )
    medium_threshold: float = Field(
        15.0, gt=0, validation_alias=AliasChoices("medium_threshold", "mediumThreshold")
    )

    @model_validator(mode="after")
    def _ordered(self) -> TimeBucketConfig:
        if self.medium_threshold <= self.fast_threshold:
            raise ValueError("medium_threshold must be greater than fast_threshold")
        return self


DEFAULT_BUCKETS = TimeBucketConfig()


def classify_time(seconds: float, buckets: TimeBucketConfig | None = None) -> TimeClass:
    """
    Bucket an answer latency.

    Zero, negative and NaN latencies clamp to FAST instead of raising.
    """
    buckets = buckets or DEFAULT_BUCKETS
    if seconds is None or math.isnan(seconds) or seconds <= 0:
        return TimeClass.FAST
    if seconds < buckets.fast_threshold:
        return TimeClass.FAST
    elif seconds < buckets.medium_threshold:
        return TimeClass.MEDIUM
    return TimeClass.SLOW


def normalize_time(seconds: float | None) -> float:
    """
    Clamp a latency to a non-negative number of seconds.

    Raises:
        ValueError: the latency is infinite
    """
    if seconds is None or math.isnan(seconds) or seconds < 0:
        return 0.0
    if math.isinf(seconds):
        raise ValueError("Time spent must be finite")
    return float(seconds)


@dataclass(frozen=True)
class Attempt:
    """One scored answer. Immutable once recorded."""

    fact: Fact
    user_answer: int
    correct: bool
    time_spent_seconds: float
    attempt_number: int
    time_class: TimeClass = TimeClass.FAST
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self):
        if self.attempt_number < 1:
            raise ValueError(f"attempt_number must be >= 1, got {self.attempt_number}")

    @property
    def correct_answer(self) -> int:
        return self.fact.answer

    @classmethod
    def score(
        cls,
        fact: Fact,
        user_answer: int,
        time_spent_seconds: float,
        attempt_number: int,
        buckets: TimeBucketConfig | None = None,
        recorded_at: datetime | None = None,
    ) -> Attempt:
        """Score an answer against the fact and classify its latency."""
        seconds = normalize_time(time_spent_seconds)
        return cls(
            fact=fact,
            user_answer=user_answer,
            correct=user_answer == fact.answer,
            time_spent_seconds=seconds,
            attempt_number=attempt_number,
            time_class=classify_time(seconds, buckets),
            recorded_at=recorded_at or datetime.now(UTC),
        )


def update(
    cell: GridCell,
    attempt: Attempt,
    *,
    now: datetime | None = None,
    buckets: TimeBucketConfig | None = None,
    threshold: int = MASTERY_THRESHOLD,
) -> GridCell:
    """
    Compute the next state of a cell after an attempt.

    Args:
        cell: Current cell state
        attempt: Scored attempt on the same fact
        now: Timestamp used if mastery is reached (defaults to UTC now)
        buckets: Time classification thresholds
        threshold: Consecutive correct answers needed for mastery

    Returns:
        New GridCell; the input is not modified
    """
    if attempt.fact != cell.fact:
        raise ValueError(
            f"Attempt on {attempt.fact.label} applied to cell {cell.fact.label}"
        )

    attempts = cell.attempts + 1
    consecutive = cell.consecutive_correct + 1 if attempt.correct else 0
    seconds = normalize_time(attempt.time_spent_seconds)
    total_time = cell.total_time_spent + seconds

    mastered_at = cell.mastered_at
    if mastered_at is None and consecutive >= threshold:
        mastered_at = now or datetime.now(UTC)

    return replace(
        cell,
        attempts=attempts,
        last_attempt_correct=attempt.correct,
        consecutive_correct=consecutive,
        last_time_class=classify_time(seconds, buckets),
        total_time_spent=total_time,
        average_time_seconds=total_time / attempts,
        mastered_at=mastered_at,
        is_locked=cell.is_locked or mastered_at is not None,
    )


def is_mastered(cell: GridCell) -> bool:
    return cell.mastered_at is not None


class MasteryEngine:
    """
    Configured wrapper around `update`.

    Holds the time buckets, mastery threshold and clock so callers can
    apply attempts without threading configuration through every call.
    """

    def __init__(
        self,
        buckets: TimeBucketConfig | None = None,
        threshold: int = MASTERY_THRESHOLD,
        clock=None,
    ):
        if threshold < 1:
            raise ValueError("Mastery threshold must be at least 1")
        self.buckets = buckets or DEFAULT_BUCKETS
        self.threshold = threshold
        self._clock = clock or (lambda: datetime.now(UTC))

    def score(self, fact: Fact, user_answer: int, time_spent: float, attempt_number: int) -> Attempt:
        return Attempt.score(
            fact,
            user_answer,
            time_spent,
            attempt_number,
            buckets=self.buckets,
            recorded_at=self._clock(),
        )

    def update(self, cell: GridCell, attempt: Attempt) -> GridCell:
        new_cell = update(
            cell,
            attempt,
            now=self._clock(),
            buckets=self.buckets,
            threshold=self.threshold,
        )
        if new_cell.is_mastered and not cell.is_mastered:
            logger.info(f"Fact {cell.fact.label} mastered after {new_cell.attempts} attempts")
        return new_cell
