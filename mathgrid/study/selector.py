"""
Problem Selector.

Chooses the next fact to present, by session type:

- Placement: fixed, deterministic 20-fact sequence sampled across the
  difficulty range; independent of grid state.
- Practice: adaptive draw from unmastered, unlocked cells inside the
  guardrail, weighted toward low streaks. When nothing is left it asks
  the session to widen the guardrail, and when no wider guardrail exists
  it signals completion.

Placement sampling rule:
1. Pool: factors 2-9 and 12 (no x1, x10, x11), one orientation per pair
2. Rank the pool by Fact.difficulty and cut it into 10 deciles
3. Seed random.Random with sha256("{student_id}:{grade_level}")
4. Draw 2 facts per decile without replacement, orient each at random
5. Emit deciles easiest first
"""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from loguru import logger

from mathgrid.core.facts import Fact, Guardrail, MAX_FACTOR
from mathgrid.core.grid import MASTERY_THRESHOLD, Grid, GridCell, TimeClass

PLACEMENT_LENGTH = 20
PLACEMENT_DECILES = 10
TRIVIAL_FACTORS = frozenset({1, 10, 11})


class SelectionKind(str, Enum):
    PROBLEM = "problem"
    WIDEN = "widen"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Selection:
    """Outcome of asking the practice policy for the next problem."""

    kind: SelectionKind
    fact: Fact | None = None
    guardrail: Guardrail | None = None
    reason: str = ""

    @classmethod
    def problem(cls, fact: Fact, reason: str = "weighted") -> Selection:
        return cls(kind=SelectionKind.PROBLEM, fact=fact, reason=reason)

    @classmethod
    def widen(cls, guardrail: Guardrail) -> Selection:
        return cls(kind=SelectionKind.WIDEN, guardrail=guardrail)

    @classmethod
    def complete(cls) -> Selection:
        return cls(kind=SelectionKind.COMPLETE)


def placement_seed(student_id: str, grade_level: str | int) -> int:
    """Stable integer seed for a student + grade level."""
    digest = hashlib.sha256(f"{student_id}:{grade_level}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def placement_pool() -> list[Fact]:
    """Candidate facts for placement, easiest first."""
    factors = [f for f in range(2, MAX_FACTOR + 1) if f not in TRIVIAL_FACTORS]
    pool = [Fact(a, b) for i, a in enumerate(factors) for b in factors[i:]]
    return sorted(pool, key=lambda f: (f.difficulty, f.multiplicand, f.multiplier))


class PlacementPolicy:
    """
    Deterministic placement sequence builder.

    Identical (student_id, grade_level) always yields the identical list.
    """

    def __init__(self, length: int = PLACEMENT_LENGTH, deciles: int = PLACEMENT_DECILES):
        pool_size = len(placement_pool())
        if not 1 <= length <= pool_size:
            raise ValueError(f"Placement length must be in [1, {pool_size}], got {length}")
        if not 1 <= deciles <= length:
            raise ValueError(f"Decile count must be in [1, {length}], got {deciles}")
        self.length = length
        self.deciles = deciles

    def _buckets(self) -> list[list[Fact]]:
        pool = placement_pool()
        size = len(pool)
        return [
            pool[i * size // self.deciles : (i + 1) * size // self.deciles]
            for i in range(self.deciles)
        ]

    def _quota(self, buckets: list[list[Fact]]) -> list[int]:
        """Facts to draw per bucket; any remainder goes to the hardest buckets."""
        base, extra = divmod(self.length, self.deciles)
        quota = [base + (1 if i >= self.deciles - extra else 0) for i in range(self.deciles)]
        # Spill over to easier buckets if a bucket is too small
        carry = 0
        for i in reversed(range(self.deciles)):
            want = quota[i] + carry
            quota[i] = min(want, len(buckets[i]))
            carry = want - quota[i]
        if carry:
            raise ValueError("Placement pool too small for requested length")
        return quota

    def build_sequence(self, student_id: str, grade_level: str | int) -> list[Fact]:
        rng = random.Random(placement_seed(student_id, grade_level))
        buckets = self._buckets()
        quota = self._quota(buckets)

        sequence: list[Fact] = []
        for bucket, count in zip(buckets, quota):
            for fact in rng.sample(bucket, count):
                sequence.append(fact.commuted() if rng.random() < 0.5 else fact)

        logger.debug(
            f"Placement sequence for {student_id} (grade {grade_level}): "
            f"{[f.label for f in sequence]}"
        )
        return sequence


class PracticePolicy:
    """
    Adaptive practice selection.

    Weight of an eligible cell:
        (threshold - consecutive_correct)^2
        + 1 if never attempted
        + 1 if the last answer was slow

    Missed facts waiting in the review queue are offered first once at
    least `review_gap` other problems have been shown since their last
    appearance.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        review_gap: int = 3,
        threshold: int = MASTERY_THRESHOLD,
    ):
        self.rng = rng or random.Random()
        self.review_gap = review_gap
        self.threshold = threshold

    def weight(self, cell: GridCell) -> float:
        streak_gap = max(self.threshold - cell.consecutive_correct, 1)
        weight = float(streak_gap * streak_gap)
        if cell.attempts == 0:
            weight += 1.0
        if cell.last_time_class == TimeClass.SLOW:
            weight += 1.0
        return weight

    def next(
        self,
        grid: Grid,
        *,
        history: Sequence[Fact] = (),
        review_queue: Sequence[Fact] = (),
    ) -> Selection:
        """
        Pick the next practice problem.

        Args:
            grid: Current grid view (including this session's updates)
            history: Facts already shown this session, oldest first
            review_queue: Facts missed this session awaiting review

        Returns:
            Selection.problem, Selection.widen or Selection.complete
        """
        eligible = grid.eligible_cells()
        if not eligible:
            wider = grid.guardrail.wider()
            if wider is not None:
                logger.info(
                    f"All facts within {grid.guardrail.value} mastered; requesting {wider.value}"
                )
                return Selection.widen(wider)
            logger.info("Every fact mastered; practice complete")
            return Selection.complete()

        eligible_facts = {cell.fact for cell in eligible}
        review = self._due_review(history, review_queue, eligible_facts)
        if review is not None:
            return Selection.problem(review, reason="review")

        candidates = eligible
        previous = history[-1] if history else None
        if previous is not None and len(candidates) > 1:
            candidates = [cell for cell in candidates if cell.fact != previous]

        weights = [self.weight(cell) for cell in candidates]
        chosen = self.rng.choices(candidates, weights=weights, k=1)[0]
        return Selection.problem(chosen.fact)

    def _due_review(
        self,
        history: Sequence[Fact],
        review_queue: Sequence[Fact],
        eligible: set[Fact],
    ) -> Fact | None:
        for fact in review_queue:
            if fact not in eligible:
                continue
            last_seen = max(
                (i for i, shown in enumerate(history) if shown == fact), default=None
            )
            if last_seen is None or len(history) - 1 - last_seen >= self.review_gap:
                return fact
        return None


class ProblemSelector:
    """Facade choosing the policy by session type."""

    def __init__(
        self,
        placement: PlacementPolicy | None = None,
        practice: PracticePolicy | None = None,
    ):
        self.placement = placement or PlacementPolicy()
        self.practice = practice or PracticePolicy()

    def placement_queue(self, student_id: str, grade_level: str | int) -> list[Fact]:
        return self.placement.build_sequence(student_id, grade_level)

    def next_practice(
        self,
        grid: Grid,
        history: Sequence[Fact] = (),
        review_queue: Sequence[Fact] = (),
    ) -> Selection:
        return self.practice.next(grid, history=history, review_queue=review_queue)
