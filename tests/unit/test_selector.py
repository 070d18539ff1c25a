"""
Unit tests for the problem selector.
"""

import random
from collections import Counter
from datetime import UTC, datetime

import pytest

from mathgrid.core.facts import Fact, Guardrail, facts_within
from mathgrid.core.grid import Grid, GridCell, TimeClass
from mathgrid.study.selector import (
    PlacementPolicy,
    PracticePolicy,
    ProblemSelector,
    SelectionKind,
    placement_pool,
    placement_seed,
)

MASTERED_AT = datetime(2024, 1, 1, tzinfo=UTC)


def mastered(fact: Fact) -> GridCell:
    return GridCell(
        fact=fact,
        consecutive_correct=3,
        last_attempt_correct=True,
        attempts=3,
        is_locked=True,
        mastered_at=MASTERED_AT,
    )


def grid_with_all_mastered_but(guardrail: Guardrail, *open_facts: Fact) -> Grid:
    grid = Grid.fresh(guardrail=guardrail)
    for fact in facts_within(guardrail):
        if fact not in open_facts:
            grid.apply(mastered(fact))
    return grid


class TestPlacementPolicy:
    def test_same_student_and_grade_is_deterministic(self):
        policy = PlacementPolicy()
        assert policy.build_sequence("student-1", "3") == policy.build_sequence("student-1", "3")

    def test_different_students_differ(self):
        policy = PlacementPolicy()
        assert policy.build_sequence("student-1", "3") != policy.build_sequence("student-2", "3")

    def test_twenty_unique_facts(self):
        sequence = PlacementPolicy().build_sequence("student-1", 4)
        assert len(sequence) == 20
        pairs = {tuple(sorted((f.multiplicand, f.multiplier))) for f in sequence}
        assert len(pairs) == 20

    def test_excludes_trivial_factors(self):
        sequence = PlacementPolicy().build_sequence("student-7", "5")
        for fact in sequence:
            assert fact.multiplicand not in (1, 10, 11)
            assert fact.multiplier not in (1, 10, 11)

    def test_spans_difficulty_easiest_first(self):
        pool = placement_pool()
        sequence = PlacementPolicy().build_sequence("student-3", "3")
        rank = {tuple(sorted((f.multiplicand, f.multiplier))): i for i, f in enumerate(pool)}
        ranks = [rank[tuple(sorted((f.multiplicand, f.multiplier)))] for f in sequence]
        # two per decile, deciles ascending
        starts = [d * len(pool) // 10 for d in range(10)]
        decile_of = [max(d for d in range(10) if starts[d] <= r) for r in ranks]
        assert decile_of == sorted(decile_of)
        assert Counter(decile_of) == {d: 2 for d in range(10)}

    def test_pool_is_one_orientation_per_pair(self):
        pool = placement_pool()
        assert len(pool) == 45
        assert all(f.multiplicand <= f.multiplier for f in pool)

    def test_seed_is_stable(self):
        assert placement_seed("abc", "3") == placement_seed("abc", 3)
        assert placement_seed("abc", "3") != placement_seed("abc", "4")

    def test_invalid_length_rejected(self):
        with pytest.raises(ValueError):
            PlacementPolicy(length=0)
        with pytest.raises(ValueError):
            PlacementPolicy(length=100)

    def test_shorter_sequence_spills_to_available_buckets(self):
        sequence = PlacementPolicy(length=5, deciles=5).build_sequence("s", "3")
        assert len(sequence) == 5
        assert len(set(sequence)) == 5


class TestPracticePolicy:
    def test_draws_only_eligible_cells(self):
        open_facts = (Fact(2, 3), Fact(4, 4))
        grid = grid_with_all_mastered_but(Guardrail.ONE_TO_FIVE, *open_facts)
        policy = PracticePolicy(rng=random.Random(1))
        for _ in range(50):
            selection = policy.next(grid)
            assert selection.kind == SelectionKind.PROBLEM
            assert selection.fact in open_facts

    def test_avoids_immediate_repeat(self):
        open_facts = (Fact(2, 3), Fact(4, 4))
        grid = grid_with_all_mastered_but(Guardrail.ONE_TO_FIVE, *open_facts)
        policy = PracticePolicy(rng=random.Random(2))
        for _ in range(20):
            assert policy.next(grid, history=[Fact(2, 3)]).fact == Fact(4, 4)

    def test_repeat_allowed_when_only_one_left(self):
        grid = grid_with_all_mastered_but(Guardrail.ONE_TO_FIVE, Fact(5, 5))
        selection = PracticePolicy(rng=random.Random(3)).next(grid, history=[Fact(5, 5)])
        assert selection.fact == Fact(5, 5)

    def test_widen_when_guardrail_exhausted(self):
        grid = grid_with_all_mastered_but(Guardrail.ONE_TO_FIVE)
        selection = PracticePolicy().next(grid)
        assert selection.kind == SelectionKind.WIDEN
        assert selection.guardrail == Guardrail.ONE_TO_NINE

    def test_complete_when_everything_mastered(self):
        grid = grid_with_all_mastered_but(Guardrail.ONE_TO_TWELVE)
        assert PracticePolicy().next(grid).kind == SelectionKind.COMPLETE

    def test_weights_favour_low_streaks(self):
        policy = PracticePolicy()
        fresh = GridCell.empty(Fact(3, 3))
        streak_two = GridCell(fact=Fact(3, 4), consecutive_correct=2, attempts=2, last_attempt_correct=True)
        slow_miss = GridCell(fact=Fact(3, 5), attempts=1, last_time_class=TimeClass.SLOW)
        assert policy.weight(fresh) == 10.0
        assert policy.weight(streak_two) == 1.0
        assert policy.weight(slow_miss) == 10.0

    def test_weighted_draw_prefers_unpractised_cells(self):
        grid = grid_with_all_mastered_but(Guardrail.ONE_TO_FIVE, Fact(2, 2), Fact(3, 3))
        grid.apply(GridCell(fact=Fact(3, 3), consecutive_correct=2, attempts=2, last_attempt_correct=True))
        policy = PracticePolicy(rng=random.Random(42))
        picks = Counter(policy.next(grid).fact for _ in range(500))
        assert picks[Fact(2, 2)] > picks[Fact(3, 3)] * 3

    def test_missed_fact_reoffered_after_gap(self):
        grid = Grid.fresh(guardrail=Guardrail.ONE_TO_FIVE)
        policy = PracticePolicy(rng=random.Random(5), review_gap=3)
        missed = Fact(4, 5)
        history = [missed, Fact(2, 2)]
        assert policy.next(grid, history=history, review_queue=[missed]).reason != "review"

        history = [missed, Fact(2, 2), Fact(3, 3), Fact(1, 4)]
        selection = policy.next(grid, history=history, review_queue=[missed])
        assert selection.fact == missed
        assert selection.reason == "review"

    def test_mastered_review_fact_is_skipped(self):
        grid = Grid.fresh(guardrail=Guardrail.ONE_TO_FIVE)
        grid.apply(mastered(Fact(4, 5)))
        history = [Fact(4, 5), Fact(2, 2), Fact(3, 3), Fact(1, 4)]
        selection = PracticePolicy(rng=random.Random(6)).next(
            grid, history=history, review_queue=[Fact(4, 5)]
        )
        assert selection.fact != Fact(4, 5)


class TestProblemSelector:
    def test_facade_delegates(self):
        selector = ProblemSelector(practice=PracticePolicy(rng=random.Random(0)))
        assert len(selector.placement_queue("s", "3")) == 20
        assert selector.next_practice(Grid.fresh()).kind == SelectionKind.PROBLEM
