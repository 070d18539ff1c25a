"""
mathgrid - adaptive multiplication-fact practice engine.

Tracks a learner's mastery of the 12x12 times table, places new learners
with a short diagnostic, and drives adaptive practice sessions.
"""

__version__ = "1.0.0"
