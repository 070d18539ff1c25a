"""
Unit tests for placement scoring and journey state derivation.
"""

from mathgrid.core.facts import Fact, Guardrail
from mathgrid.core.mastery import Attempt
from mathgrid.core.records import (
    JourneyState,
    SessionRecord,
    SessionStatus,
    SessionSummary,
    SessionType,
    derive_journey_state,
)
from mathgrid.study.placement import band_accuracy, recommend_guardrail


def answers(*pairs):
    """Attempts from (fact, correct) pairs."""
    out = []
    for n, (fact, correct) in enumerate(pairs, start=1):
        out.append(Attempt.score(fact, fact.answer if correct else 0, 2.0, n))
    return out


class TestRecommendGuardrail:
    def test_no_attempts_starts_small(self):
        assert recommend_guardrail([]) == Guardrail.ONE_TO_FIVE

    def test_weak_basics_stay_at_five(self):
        attempts = answers(
            (Fact(2, 3), True),
            (Fact(4, 5), False),
            (Fact(3, 3), False),
            (Fact(7, 8), True),
        )
        assert recommend_guardrail(attempts) == Guardrail.ONE_TO_FIVE

    def test_strong_basics_weak_middle(self):
        attempts = answers(
            (Fact(2, 3), True),
            (Fact(4, 5), True),
            (Fact(6, 7), False),
            (Fact(8, 9), False),
            (Fact(2, 12), True),
        )
        assert recommend_guardrail(attempts) == Guardrail.ONE_TO_NINE

    def test_strong_throughout(self):
        attempts = answers(
            (Fact(2, 3), True),
            (Fact(6, 7), True),
            (Fact(9, 12), True),
        )
        assert recommend_guardrail(attempts) == Guardrail.ONE_TO_TWELVE

    def test_band_accuracy_is_cumulative(self):
        attempts = answers((Fact(2, 3), True), (Fact(7, 8), False))
        assert band_accuracy(attempts, 5) == 1.0
        assert band_accuracy(attempts, 9) == 0.5
        assert band_accuracy(answers((Fact(9, 9), True)), 5) is None


def record(session_type, status):
    return SessionRecord(
        session_id=f"{session_type}-{status}",
        student_id="s1",
        session_type=SessionType(session_type),
        total_items=20,
        status=SessionStatus(status),
    )


class TestJourneyState:
    def test_no_sessions(self):
        assert derive_journey_state([]) == JourneyState.NEEDS_PLACEMENT

    def test_placement_in_progress(self):
        state = derive_journey_state([record("placement", "in_progress")])
        assert state == JourneyState.PLACEMENT_IN_PROGRESS
        assert not state.can_practice

    def test_abandoned_placement_needs_placement(self):
        assert derive_journey_state([record("placement", "abandoned")]) == JourneyState.NEEDS_PLACEMENT

    def test_completed_placement(self):
        state = derive_journey_state([record("placement", "completed")])
        assert state == JourneyState.PLACEMENT_COMPLETED
        assert state.can_practice

    def test_practice_ready(self):
        records = [record("placement", "completed"), record("practice", "abandoned")]
        assert derive_journey_state(records) == JourneyState.PRACTICE_READY


class TestSessionSummary:
    def test_to_dict_is_json_ready(self):
        summary = SessionSummary(
            session_id="abc",
            session_type=SessionType.PLACEMENT,
            total_problems=20,
            correct_answers=19,
            accuracy=95,
            incorrect_facts=[Fact(7, 8)],
            guardrail=Guardrail.ONE_TO_TWELVE,
            recommended_guardrail=Guardrail.ONE_TO_TWELVE,
        )
        data = summary.to_dict()
        assert data["session_type"] == "placement"
        assert data["incorrect_facts"] == [[7, 8]]
        assert data["recommended_guardrail"] == "1-12"
