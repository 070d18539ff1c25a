"""
Grid Progress and Audit Trail Models.

SQLAlchemy models for the grid store:
- One grid row per student (JSON grid_state blob + guardrail + totals)
- Learning sessions (append-only audit trail)
- Question attempts per session
- Application configuration (time buckets)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class MathGridProgress(Base):
    """
    A student's 12x12 grid.

    grid_state holds the versioned blob written by mathgrid.core.schema.
    """

    __tablename__ = "math_grid_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    grid_state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    guardrails_level: Mapped[str] = mapped_column(String(8), nullable=False, default="1-9")
    total_correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<MathGridProgress student={self.student_id} guardrail={self.guardrails_level} "
            f"attempts={self.total_attempts}>"
        )


class LearningSession(Base):
    """One placement or practice session."""

    __tablename__ = "learning_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    session_type: Mapped[str] = mapped_column(String(16), nullable=False)  # 'placement', 'practice'
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="in_progress")
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    attempts: Mapped[list[QuestionAttempt]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="QuestionAttempt.attempt_number",
    )

    __table_args__ = (Index("idx_learning_sessions_student_type", "student_id", "session_type"),)

    def __repr__(self) -> str:
        return f"<LearningSession {self.id} type={self.session_type} status={self.status}>"


class QuestionAttempt(Base):
    """A single scored answer within a session."""

    __tablename__ = "question_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("learning_sessions.id", ondelete="CASCADE"), nullable=False
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    multiplicand: Mapped[int] = mapped_column(Integer, nullable=False)
    multiplier: Mapped[int] = mapped_column(Integer, nullable=False)
    user_answer: Mapped[int] = mapped_column(Integer, nullable=False)
    correct_answer: Mapped[int] = mapped_column(Integer, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    time_classification: Mapped[str] = mapped_column(String(8), nullable=False)
    answered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    session: Mapped[LearningSession] = relationship(back_populates="attempts")

    __table_args__ = (
        UniqueConstraint("session_id", "attempt_number", name="uq_session_attempt_number"),
    )


class AppConfig(Base):
    """Key/value application settings (e.g. time_buckets)."""

    __tablename__ = "app_config"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )
