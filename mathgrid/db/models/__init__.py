# SQLAlchemy models
from .base import Base
from .progress import (
    AppConfig,
    LearningSession,
    MathGridProgress,
    QuestionAttempt,
)

__all__ = [
    "Base",
    "MathGridProgress",
    "LearningSession",
    "QuestionAttempt",
    "AppConfig",
]
