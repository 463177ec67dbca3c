"""Storage mode guard and durable/fallback routing."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import aiosqlite
from loguru import logger

from ..exceptions import StorageError
from ..models import StorageMode
from .base import StorageBackend
from .memory_backend import InMemoryBackend
from .sqlite_store import SQLiteStore

T = TypeVar("T")

DURABLE_ERRORS = (StorageError, aiosqlite.Error, OSError)


class StorageModeGuard:
    """Holds the current StorageMode and serializes transitions.

    ``transition`` is a check-and-set: it only flips the mode when the
    current mode still equals ``expected``, so concurrent failures flip
    it exactly once.
    """

    def __init__(self, initial: StorageMode = StorageMode.DURABLE):
        self._mode = initial
        self._lock = asyncio.Lock()
        self.transitions = 0

    @property
    def mode(self) -> StorageMode:
        return self._mode

    async def transition(self, expected: StorageMode, new: StorageMode) -> bool:
        async with self._lock:
            if self._mode is not expected:
                return False
            self._mode = new
            self.transitions += 1
            return True


class StorageRouter:
    """Runs storage operations against the durable store or the fallback.

    Each operation reads the mode once when it starts. A durable failure
    flips the guard to FALLBACK and the operation is retried there, so the
    caller never sees the outage.
    """

    def __init__(
        self,
        durable: SQLiteStore | None,
        fallback: InMemoryBackend | None = None,
        guard: StorageModeGuard | None = None,
    ):
        self.durable = durable
        self.fallback = fallback or InMemoryBackend()
        self.guard = guard or StorageModeGuard(
            StorageMode.DURABLE if durable is not None else StorageMode.FALLBACK
        )

    @property
    def mode(self) -> StorageMode:
        return self.guard.mode

    async def run(
        self, op: str, call: Callable[[StorageBackend], Awaitable[T]]
    ) -> T:
        """Execute ``call`` on the active backend.

        Args:
            op: Operation name used in log messages
            call: Coroutine factory receiving the backend to use

        Returns:
            Whatever ``call`` returns
        """
        if self.guard.mode is StorageMode.DURABLE and self.durable is not None:
            try:
                return await call(self.durable)
            except DURABLE_ERRORS as e:
                logger.warning(
                    f"Durable store failed during {op}: {e}. "
                    f"Switching to in-process fallback"
                )
                if await self.guard.transition(
                    StorageMode.DURABLE, StorageMode.FALLBACK
                ):
                    logger.info("Storage mode changed: durable -> fallback")
        return await call(self.fallback)

    async def probe(self) -> StorageMode:
        """Check durable connectivity and switch back when it answers.

        Fallback records are not migrated; the count left behind is logged.
        """
        if self.guard.mode is StorageMode.DURABLE or self.durable is None:
            return self.guard.mode

        try:
            if not self.durable.is_connected:
                await self.durable.initialize()
            healthy = await self.durable.ping()
        except DURABLE_ERRORS as e:
            logger.debug(f"Durable store probe failed: {e}")
            return self.guard.mode

        if healthy and await self.guard.transition(
            StorageMode.FALLBACK, StorageMode.DURABLE
        ):
            left_behind = self.fallback.record_count()
            logger.info("Storage mode changed: fallback -> durable")
            if left_behind:
                logger.warning(
                    f"{left_behind} records written during fallback stay in "
                    f"process memory and are not migrated to durable storage"
                )
        return self.guard.mode
