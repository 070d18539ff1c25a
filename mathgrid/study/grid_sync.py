"""
Batched grid-delta flush.

One GridSyncQueue per student. Deltas are queued in order and flushed as a
single batch through the grid store. At most one flush is in flight; deltas
queued while a flush is running stay pending and go out with the next one,
so no increment to the running totals is lost. A failed flush leaves the
whole batch pending for the retry.
"""

from __future__ import annotations

import asyncio
from typing import Iterable

from loguru import logger

from mathgrid.core.errors import PersistenceFailure
from mathgrid.core.grid import GridCell
from mathgrid.db.store import GridStore


class GridSyncQueue:
    """Single-flight delta queue for one student's grid."""

    def __init__(
        self,
        store: GridStore,
        student_id: str,
        retry_attempts: int = 0,
        retry_backoff_seconds: float = 0.5,
    ):
        self.store = store
        self.student_id = student_id
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self._pending: list[GridCell] = []
        self._lock = asyncio.Lock()
        self.flushed_total = 0

    @property
    def pending(self) -> list[GridCell]:
        return list(self._pending)

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def enqueue(self, deltas: GridCell | Iterable[GridCell]) -> None:
        if isinstance(deltas, GridCell):
            deltas = [deltas]
        self._pending.extend(deltas)

    async def flush(self) -> int:
        """
        Persist every pending delta as one batch.

        Returns:
            Number of deltas persisted (0 if nothing was pending)

        Raises:
            PersistenceFailure: with the unflushed batch attached
        """
        async with self._lock:
            batch = list(self._pending)
            if not batch:
                return 0

            attempt = 0
            while True:
                try:
                    await self.store.persist_grid_deltas(self.student_id, batch)
                    break
                except PersistenceFailure as e:
                    if attempt >= self.retry_attempts:
                        logger.error(
                            f"Grid flush failed for {self.student_id} "
                            f"({len(batch)} deltas kept pending): {e}"
                        )
                        raise PersistenceFailure(str(e), batch) from e
                    attempt += 1
                    delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        f"Grid flush failed, retry {attempt}/{self.retry_attempts} in {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)

            # Deltas queued during the flight sit after the batch
            del self._pending[: len(batch)]
            self.flushed_total += len(batch)
            logger.info(f"Flushed {len(batch)} grid deltas for {self.student_id}")
            return len(batch)
