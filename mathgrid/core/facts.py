"""
Multiplication Facts and Guardrails.

A fact is one cell of the 12x12 times table. Facts are immutable and
enumerable (144 pairs); every other module addresses grid cells through them.

Design:
- Fact: frozen (multiplicand, multiplier) pair with answer and difficulty
- DifficultyBand: basic / intermediate / advanced, by the larger factor
- Guardrail: active difficulty bound (1-5, 1-9, 1-12) with widening order
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator

MIN_FACTOR = 1
MAX_FACTOR = 12
GRID_SIZE = MAX_FACTOR - MIN_FACTOR + 1


class DifficultyBand(str, Enum):
    """Coarse difficulty band of a fact."""

    BASIC = "basic"  # larger factor <= 5
    INTERMEDIATE = "intermediate"  # larger factor <= 9
    ADVANCED = "advanced"  # larger factor 10-12


class Guardrail(str, Enum):
    """
    Difficulty bound restricting which facts are eligible for practice.

    Both factors of an eligible fact must fall within 1..bound.
    """

    ONE_TO_FIVE = "1-5"
    ONE_TO_NINE = "1-9"
    ONE_TO_TWELVE = "1-12"

    @property
    def bound(self) -> int:
        """Largest factor allowed by this guardrail."""
        return {
            Guardrail.ONE_TO_FIVE: 5,
            Guardrail.ONE_TO_NINE: 9,
            Guardrail.ONE_TO_TWELVE: 12,
        }[self]

    @property
    def cell_count(self) -> int:
        """Number of grid cells inside the bound."""
        return self.bound * self.bound

    def wider(self) -> Guardrail | None:
        """Next wider guardrail, or None when already at 1-12."""
        order = list(Guardrail)
        index = order.index(self)
        if index + 1 < len(order):
            return order[index + 1]
        return None

    def contains(self, fact: Fact) -> bool:
        """Check whether both factors of a fact fall inside the bound."""
        return fact.multiplicand <= self.bound and fact.multiplier <= self.bound

    @classmethod
    def parse(cls, value: str | Guardrail) -> Guardrail:
        """Parse '1-9' style strings (or pass a Guardrail through)."""
        if isinstance(value, Guardrail):
            return value
        try:
            return cls(value.strip())
        except ValueError:
            raise ValueError(f"Unknown guardrail: {value!r}") from None


@dataclass(frozen=True, order=True)
class Fact:
    """A single multiplication fact (multiplicand x multiplier)."""

    multiplicand: int
    multiplier: int

    def __post_init__(self):
        for name in ("multiplicand", "multiplier"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an int, got {value!r}")
            if not MIN_FACTOR <= value <= MAX_FACTOR:
                raise ValueError(
                    f"{name} must be in [{MIN_FACTOR}, {MAX_FACTOR}], got {value}"
                )

    @property
    def answer(self) -> int:
        return self.multiplicand * self.multiplier

    @property
    def key(self) -> tuple[int, int]:
        """Zero-based (row, column) grid key."""
        return (self.multiplicand - 1, self.multiplier - 1)

    @property
    def larger_factor(self) -> int:
        return max(self.multiplicand, self.multiplier)

    @property
    def band(self) -> DifficultyBand:
        if self.larger_factor <= 5:
            return DifficultyBand.BASIC
        elif self.larger_factor <= 9:
            return DifficultyBand.INTERMEDIATE
        return DifficultyBand.ADVANCED

    @property
    def difficulty(self) -> float:
        """
        Difficulty score used for placement sampling.

        Grows with the product, with extra weight on the smaller factor so
        that 7x8 ranks above 4x12 even though the products are close.
        Facts with a trivial factor (1, 10, 11) score lower.
        """
        small = min(self.multiplicand, self.multiplier)
        score = self.answer + 4 * small
        if small == 1 or self.multiplicand in (10, 11) or self.multiplier in (10, 11):
            score *= 0.5
        return float(score)

    @property
    def label(self) -> str:
        return f"{self.multiplicand}×{self.multiplier}"

    def commuted(self) -> Fact:
        return Fact(self.multiplier, self.multiplicand)

    @classmethod
    def from_key(cls, row: int, col: int) -> Fact:
        """Build a fact from a zero-based grid key."""
        return cls(row + 1, col + 1)


def all_facts() -> Iterator[Fact]:
    """Enumerate all 144 facts in row-major order."""
    for multiplicand in range(MIN_FACTOR, MAX_FACTOR + 1):
        for multiplier in range(MIN_FACTOR, MAX_FACTOR + 1):
            yield Fact(multiplicand, multiplier)


def facts_within(guardrail: Guardrail) -> list[Fact]:
    """All facts eligible under a guardrail, row-major."""
    return [fact for fact in all_facts() if guardrail.contains(fact)]
