"""
Placement scoring.

Turns the attempts of a completed placement session into a starting
guardrail for practice.
"""

from __future__ import annotations

from typing import Sequence

from loguru import logger

from mathgrid.core.facts import Guardrail
from mathgrid.core.mastery import Attempt

PASS_ACCURACY = 0.80


def band_accuracy(attempts: Sequence[Attempt], bound: int) -> float | None:
    """Accuracy on attempts whose larger factor is <= bound (None if no such attempts)."""
    scoped = [a for a in attempts if a.fact.larger_factor <= bound]
    if not scoped:
        return None
    return sum(1 for a in scoped if a.correct) / len(scoped)


def recommend_guardrail(
    attempts: Sequence[Attempt],
    pass_accuracy: float = PASS_ACCURACY,
) -> Guardrail:
    """
    Pick the starting guardrail from placement results.

    - below pass_accuracy on facts up to 5  -> 1-5
    - below pass_accuracy on facts up to 9  -> 1-9
    - otherwise                             -> 1-12

    A band with no attempts counts as not passed.
    """
    if not attempts:
        return Guardrail.ONE_TO_FIVE

    for guardrail in (Guardrail.ONE_TO_FIVE, Guardrail.ONE_TO_NINE):
        accuracy = band_accuracy(attempts, guardrail.bound)
        if accuracy is None or accuracy < pass_accuracy:
            logger.debug(
                f"Placement accuracy within {guardrail.value}: {accuracy}; "
                f"recommending {guardrail.value}"
            )
            return guardrail
    return Guardrail.ONE_TO_TWELVE
