"""
Remote Platform Grid Store

HTTP GridStore for running the session engine against a remote learning
platform instead of a local database.

Usage:
    async with PlatformGridStore(PlatformConfig.from_settings(settings)) as store:
        await store.authenticate()
        engine = SessionEngine(store, student_id=store.learner_id)

Every grid and session call needs a bearer token; calls made before
authenticate() (or without a configured token) raise NotAuthenticated.
Transport errors and unexpected status codes raise PersistenceFailure.
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx
from loguru import logger
from pydantic import BaseModel

from config import Settings
from mathgrid.core.errors import NotAuthenticated, PersistenceFailure, ValidationError
from mathgrid.core.facts import Guardrail
from mathgrid.core.grid import Grid, GridCell
from mathgrid.core.mastery import Attempt, TimeBucketConfig
from mathgrid.core.records import JourneyState, SessionSummary, SessionType
from mathgrid.core.schema import GridCellRecord, GridRecord


class PlatformConfig(BaseModel):
    """Connection settings for the remote platform."""

    base_url: str = "http://127.0.0.1:8100"
    api_key: str | None = None
    token: str | None = None
    learner_id: str | None = None
    timeout_seconds: float = 30.0

    # Endpoints
    auth_endpoint: str = "/api/v1/auth/token"
    grids_endpoint: str = "/api/v1/grids"
    sessions_endpoint: str = "/api/v1/sessions"
    learners_endpoint: str = "/api/v1/learners"
    config_endpoint: str = "/api/v1/config"

    @classmethod
    def from_settings(cls, settings: Settings) -> PlatformConfig:
        return cls(
            base_url=settings.platform_url,
            api_key=settings.platform_api_key,
            timeout_seconds=settings.platform_timeout_seconds,
        )


class PlatformGridStore:
    """
    GridStore over the platform's REST API.

    Supports:
    - API key -> bearer token authentication
    - Grid fetch, batched delta upload, guardrail changes
    - Session audit trail and journey state
    - Shared time bucket configuration
    """

    def __init__(self, config: PlatformConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._token: str | None = config.token
        self.learner_id: str | None = config.learner_id

    async def __aenter__(self) -> PlatformGridStore:
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.config.api_key:
                headers["X-API-Key"] = self.config.api_key
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"

            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Authentication
    # =========================================================================

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    async def authenticate(self) -> str:
        """
        Exchange the API key for a session token.

        Returns:
            The learner id reported by the platform

        Raises:
            NotAuthenticated: no API key, or the platform rejected it
            PersistenceFailure: the platform could not be reached
        """
        if not self.config.api_key:
            raise NotAuthenticated("No platform API key configured")

        client = await self._ensure_client()
        try:
            response = await client.post(
                self.config.auth_endpoint,
                json={"api_key": self.config.api_key},
            )
        except httpx.RequestError as e:
            logger.error(f"Connection error during auth: {e}")
            raise PersistenceFailure(f"Platform unreachable: {e}") from e

        if response.status_code != 200:
            detail = _detail(response, "Authentication failed")
            logger.error(f"Authentication failed: {detail}")
            raise NotAuthenticated(detail)

        data = response.json()
        self._token = data.get("token")
        self.learner_id = data.get("learner_id")
        if not self._token:
            raise NotAuthenticated("Platform returned no token")
        client.headers["Authorization"] = f"Bearer {self._token}"
        logger.info(f"Authenticated as learner: {self.learner_id}")
        return self.learner_id

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        if not self._token:
            raise NotAuthenticated(f"Cannot {operation} without a platform token")

        client = await self._ensure_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Connection error during {operation}: {e}")
            raise PersistenceFailure(f"{operation} failed: {e}") from e

        if response.status_code == 401:
            self._token = None
            raise NotAuthenticated(_detail(response, "Token rejected"))
        if response.status_code in (404, 409, 422):
            raise ValidationError(f"{operation} rejected: {_detail(response, response.reason_phrase)}")
        if response.status_code >= 300:
            detail = _detail(response, response.reason_phrase)
            logger.warning(f"{operation} failed with {response.status_code}: {detail}")
            raise PersistenceFailure(f"{operation} failed ({response.status_code}): {detail}")

        if not response.content:
            return {}
        return response.json()

    # =========================================================================
    # Grid
    # =========================================================================

    async def fetch_grid(self, student_id: str) -> Grid:
        data = await self._request(
            "GET", f"{self.config.grids_endpoint}/{student_id}", "fetch_grid"
        )
        record = GridRecord.model_validate({"student_id": student_id, **data})
        logger.debug(f"Fetched grid for {student_id} ({record.guardrail.value})")
        return record.to_grid()

    async def persist_grid_deltas(self, student_id: str, deltas: Sequence[GridCell]) -> None:
        if not deltas:
            return
        payload = {
            "cells": [GridCellRecord.from_cell(cell).model_dump(mode="json") for cell in deltas]
        }
        await self._request(
            "POST",
            f"{self.config.grids_endpoint}/{student_id}/deltas",
            "persist_grid_deltas",
            json=payload,
        )
        logger.debug(f"Uploaded {len(deltas)} grid deltas for {student_id}")

    async def set_guardrail(self, student_id: str, guardrail: Guardrail) -> None:
        await self._request(
            "PUT",
            f"{self.config.grids_endpoint}/{student_id}/guardrail",
            "set_guardrail",
            json={"guardrail": Guardrail.parse(guardrail).value},
        )

    # =========================================================================
    # Sessions
    # =========================================================================

    async def create_session_record(
        self, student_id: str, session_type: SessionType, total_items: int
    ) -> str:
        data = await self._request(
            "POST",
            self.config.sessions_endpoint,
            "create_session_record",
            json={
                "student_id": student_id,
                "session_type": SessionType(session_type).value,
                "total_items": total_items,
            },
        )
        session_id = data.get("session_id")
        if not session_id:
            raise PersistenceFailure("Platform returned no session_id")
        return str(session_id)

    async def record_attempt(self, session_id: str, attempt: Attempt) -> None:
        await self._request(
            "POST",
            f"{self.config.sessions_endpoint}/{session_id}/attempts",
            "record_attempt",
            json={
                "attempt_number": attempt.attempt_number,
                "multiplicand": attempt.fact.multiplicand,
                "multiplier": attempt.fact.multiplier,
                "user_answer": attempt.user_answer,
                "correct_answer": attempt.correct_answer,
                "is_correct": attempt.correct,
                "time_spent_seconds": attempt.time_spent_seconds,
                "time_classification": attempt.time_class.value,
                "answered_at": attempt.recorded_at.isoformat(),
            },
        )

    async def complete_session_record(self, session_id: str, summary: SessionSummary) -> None:
        await self._request(
            "POST",
            f"{self.config.sessions_endpoint}/{session_id}/complete",
            "complete_session_record",
            json=summary.to_dict(),
        )

    async def abandon_session_record(self, session_id: str) -> None:
        await self._request(
            "POST",
            f"{self.config.sessions_endpoint}/{session_id}/abandon",
            "abandon_session_record",
        )

    async def get_journey_state(self, student_id: str) -> JourneyState:
        data = await self._request(
            "GET",
            f"{self.config.learners_endpoint}/{student_id}/journey",
            "get_journey_state",
        )
        return JourneyState(data.get("state", JourneyState.NEEDS_PLACEMENT.value))

    # =========================================================================
    # Config
    # =========================================================================

    async def get_time_bucket_config(self) -> TimeBucketConfig:
        data = await self._request(
            "GET", f"{self.config.config_endpoint}/time_buckets", "get_time_bucket_config"
        )
        return TimeBucketConfig.model_validate(data) if data else TimeBucketConfig()

    async def set_time_bucket_config(self, config: TimeBucketConfig) -> None:
        await self._request(
            "PUT",
            f"{self.config.config_endpoint}/time_buckets",
            "set_time_bucket_config",
            json=config.model_dump(),
        )


def _detail(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("detail"):
        return str(data["detail"])
    return default
