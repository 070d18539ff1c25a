"""
Configuration settings for the mathgrid practice engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///data/mathgrid.db",
        description="SQLAlchemy connection string for the grid store",
    )

    # ========================================
    # Remote Platform
    # ========================================
    platform_url: str = Field(
        default="http://127.0.0.1:8100",
        description="Base URL of the remote learning platform API",
    )
    platform_api_key: str | None = Field(
        default=None,
        description="API key used to obtain a learner token",
    )
    platform_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for platform requests",
    )

    # ========================================
    # Time Classification
    # ========================================
    fast_threshold_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Answers faster than this are 'fast'",
    )
    medium_threshold_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Answers faster than this (and not fast) are 'medium'",
    )

    # ========================================
    # Mastery & Selection
    # ========================================
    mastery_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive correct answers needed to master a fact",
    )
    default_guardrail: Literal["1-5", "1-9", "1-12"] = Field(
        default="1-9",
        description="Guardrail given to a freshly created grid",
    )
    placement_length: int = Field(
        default=20,
        ge=1,
        description="Number of facts in a placement session",
    )
    placement_pass_accuracy: float = Field(
        default=0.80,
        ge=0,
        le=1,
        description="Accuracy needed on a band to be placed above it",
    )
    review_gap: int = Field(
        default=3,
        ge=0,
        description="Problems shown before a missed fact is offered again",
    )

    # ========================================
    # Practice Sessions
    # ========================================
    practice_max_problems: int = Field(
        default=50,
        ge=1,
        description="Upper bound on problems in one practice session",
    )
    practice_time_limit_minutes: float = Field(
        default=10.0,
        gt=0,
        description="Practice sessions end after this many minutes",
    )
    reveal_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay before auto-advancing past a shown result (0 disables)",
    )

    # ========================================
    # Sync Behavior
    # ========================================
    flush_retry_attempts: int = Field(
        default=2,
        ge=0,
        description="Retries for a failed grid flush before surfacing the error",
    )
    flush_retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Initial backoff between flush retries (doubles each retry)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    @model_validator(mode="after")
    def _check_thresholds(self) -> Settings:
        if self.medium_threshold_seconds <= self.fast_threshold_seconds:
            raise ValueError("medium_threshold_seconds must exceed fast_threshold_seconds")
        return self

    # ========================================
    # Helper Methods
    # ========================================
    def get_time_buckets(self) -> dict[str, float]:
        """Time classification thresholds as a dictionary."""
        return {
            "fast_threshold": self.fast_threshold_seconds,
            "medium_threshold": self.medium_threshold_seconds,
        }

    def has_platform_configured(self) -> bool:
        """Check if the remote platform can be used."""
        return bool(self.platform_url and self.platform_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
