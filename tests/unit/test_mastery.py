"""
Unit tests for the mastery engine.

Pure state transitions, so no store or event loop is needed.
"""

import math
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from mathgrid.core.facts import Fact
from mathgrid.core.grid import GridCell, TimeClass
from mathgrid.core.mastery import (
    Attempt,
    MasteryEngine,
    TimeBucketConfig,
    classify_time,
    is_mastered,
    normalize_time,
    update,
)

NOW = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)
FACT = Fact(7, 8)


def attempt(correct: bool, seconds: float = 2.0, number: int = 1) -> Attempt:
    answer = FACT.answer if correct else FACT.answer + 1
    return Attempt.score(FACT, answer, seconds, number)


def run(outcomes, cell=None, now=NOW):
    cell = cell or GridCell.empty(FACT)
    for i, correct in enumerate(outcomes, start=1):
        cell = update(cell, attempt(correct, number=i), now=now)
    return cell


class TestClassifyTime:
    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (0.5, TimeClass.FAST),
            (4.99, TimeClass.FAST),
            (5.0, TimeClass.MEDIUM),
            (14.9, TimeClass.MEDIUM),
            (15.0, TimeClass.SLOW),
            (120.0, TimeClass.SLOW),
        ],
    )
    def test_default_buckets(self, seconds, expected):
        assert classify_time(seconds) == expected

    @pytest.mark.parametrize("seconds", [0.0, -3.0, math.nan])
    def test_degenerate_times_clamp_to_fast(self, seconds):
        assert classify_time(seconds) == TimeClass.FAST

    def test_custom_buckets(self):
        buckets = TimeBucketConfig(fast_threshold=2, medium_threshold=4)
        assert classify_time(3.0, buckets) == TimeClass.MEDIUM
        assert classify_time(4.0, buckets) == TimeClass.SLOW

    def test_bucket_config_accepts_stored_camel_case(self):
        buckets = TimeBucketConfig.model_validate({"fastThreshold": 3, "mediumThreshold": 9})
        assert buckets.fast_threshold == 3
        assert buckets.medium_threshold == 9

    def test_bucket_config_rejects_inverted_thresholds(self):
        with pytest.raises(PydanticValidationError):
            TimeBucketConfig(fast_threshold=10, medium_threshold=5)

    def test_normalize_time(self):
        assert normalize_time(math.nan) == 0.0
        assert normalize_time(-1) == 0.0
        assert normalize_time(3) == 3.0

    def test_normalize_time_rejects_infinity(self):
        with pytest.raises(ValueError):
            normalize_time(math.inf)


class TestUpdate:
    def test_correct_answer_rules(self):
        cell = update(GridCell.empty(FACT), attempt(True, seconds=6.0), now=NOW)
        assert cell.attempts == 1
        assert cell.consecutive_correct == 1
        assert cell.last_attempt_correct is True
        assert cell.last_time_class == TimeClass.MEDIUM
        assert cell.total_time_spent == 6.0
        assert cell.average_time_seconds == 6.0
        assert cell.mastered_at is None
        assert cell.is_locked is False

    def test_incorrect_answer_resets_streak(self):
        cell = run([True, True, False])
        assert cell.consecutive_correct == 0
        assert cell.attempts == 3
        assert cell.last_attempt_correct is False

    def test_average_time_over_all_attempts(self):
        cell = GridCell.empty(FACT)
        cell = update(cell, attempt(True, seconds=2.0, number=1), now=NOW)
        cell = update(cell, attempt(False, seconds=10.0, number=2), now=NOW)
        assert cell.total_time_spent == 12.0
        assert cell.average_time_seconds == 6.0

    def test_two_wrong_then_three_right_masters(self):
        cell = run([False, False, True, True, True])
        assert cell.attempts == 5
        assert cell.consecutive_correct == 3
        assert cell.mastered_at == NOW
        assert cell.is_locked is True
        assert is_mastered(cell)

    def test_two_right_is_not_mastered(self):
        cell = run([False, False, True, True])
        assert cell.mastered_at is None
        assert cell.is_locked is False

    def test_mastery_is_never_revoked(self):
        cell = run([True, True, True])
        later = NOW + timedelta(days=1)
        cell = update(cell, attempt(False, number=4), now=later)
        assert cell.mastered_at == NOW
        assert cell.is_locked is True
        assert cell.consecutive_correct == 0

    def test_mastered_at_set_only_once(self):
        cell = run([True, True, True])
        cell = update(cell, attempt(True, number=4), now=NOW + timedelta(hours=1))
        assert cell.mastered_at == NOW

    def test_attempts_and_time_are_monotonic(self):
        cell = GridCell.empty(FACT)
        outcomes = [True, False, True, True, False, True, True, True]
        for i, correct in enumerate(outcomes, start=1):
            nxt = update(cell, attempt(correct, seconds=i, number=i), now=NOW)
            assert nxt.attempts == cell.attempts + 1
            assert nxt.total_time_spent >= cell.total_time_spent
            if cell.mastered_at is not None:
                assert nxt.mastered_at == cell.mastered_at
            cell = nxt

    def test_input_cell_is_not_modified(self):
        cell = GridCell.empty(FACT)
        update(cell, attempt(True), now=NOW)
        assert cell.attempts == 0

    def test_fact_mismatch_rejected(self):
        with pytest.raises(ValueError):
            update(GridCell.empty(Fact(2, 2)), attempt(True), now=NOW)

    def test_reproducible_with_injected_clock(self):
        assert run([True] * 3) == run([True] * 3)

    def test_custom_threshold(self):
        cell = update(GridCell.empty(FACT), attempt(True), now=NOW, threshold=1)
        assert cell.is_mastered


class TestAttempt:
    def test_score_marks_correctness_and_class(self):
        scored = Attempt.score(FACT, 56, 20.0, 1)
        assert scored.correct is True
        assert scored.correct_answer == 56
        assert scored.time_class == TimeClass.SLOW

    def test_attempt_number_must_be_positive(self):
        with pytest.raises(ValueError):
            Attempt(fact=FACT, user_answer=56, correct=True, time_spent_seconds=1.0, attempt_number=0)


class TestMasteryEngine:
    def test_uses_configured_buckets_and_clock(self):
        engine = MasteryEngine(
            buckets=TimeBucketConfig(fast_threshold=1, medium_threshold=2),
            threshold=2,
            clock=lambda: NOW,
        )
        cell = GridCell.empty(FACT)
        for n in (1, 2):
            scored = engine.score(FACT, 56, 1.5, n)
            assert scored.time_class == TimeClass.MEDIUM
            assert scored.recorded_at == NOW
            cell = engine.update(cell, scored)
        assert cell.mastered_at == NOW

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            MasteryEngine(threshold=0)
