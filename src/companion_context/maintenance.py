"""Background maintenance: expiry sweeps, cap enforcement, storage probe."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

from loguru import logger

from .config import MaintenanceConfig
from .context_registry import ContextRegistry
from .memory_store import MemoryStore
from .models import StorageMode
from .storage.router import StorageRouter


class MaintenanceScheduler:
    """Runs periodic maintenance as asyncio tasks.

    Two loops are started: the sweep loop (memory expiry, context expiry,
    per-user caps) and the storage probe loop, each on its own interval.
    """

    def __init__(
        self,
        memory_store: MemoryStore,
        registry: ContextRegistry,
        router: StorageRouter,
        config: MaintenanceConfig | None = None,
        probe_interval: float = 30.0,
    ):
        self._memory_store = memory_store
        self._registry = registry
        self._router = router
        self.config = config or MaintenanceConfig()
        self.probe_interval = probe_interval
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def run_once(self, now: datetime | None = None) -> dict[str, int | str]:
        """Run one full maintenance cycle.

        A failing step is logged and the remaining steps still run.

        Returns:
            Counts per step plus the storage mode after the probe
        """
        now = now or datetime.now(timezone.utc)
        counts: dict[str, int | str] = {
            "expired_memories": 0,
            "deactivated_context": 0,
            "evicted_memories": 0,
        }

        steps: list[tuple[str, Callable[[], Awaitable[int]]]] = [
            ("expired_memories", lambda: self._memory_store.cleanup_expired(now)),
            ("deactivated_context", lambda: self._registry.sweep_expired(now)),
            ("evicted_memories", self._memory_store.enforce_all_caps),
        ]
        for name, step in steps:
            try:
                counts[name] = await step()
            except Exception as e:
                logger.error(f"Maintenance step '{name}' failed: {e}")

        counts["storage_mode"] = (await self.probe()).value
        logger.debug(f"Maintenance cycle finished: {counts}")
        return counts

    async def probe(self) -> StorageMode:
        try:
            return await self._router.probe()
        except Exception as e:
            logger.error(f"Storage probe failed: {e}")
            return self._router.mode

    def start(self) -> None:
        """Start the sweep and probe loops (no-op if already running)."""
        if self.is_running:
            return
        self._tasks = [
            asyncio.create_task(
                self._loop("sweep", self._sweep, self.config.interval_seconds)
            ),
            asyncio.create_task(self._loop("probe", self.probe, self.probe_interval)),
        ]
        logger.info(
            f"Maintenance started (sweep every {self.config.interval_seconds}s, "
            f"probe every {self.probe_interval}s)"
        )

    async def stop(self) -> None:
        """Cancel the loops and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("Maintenance stopped")

    async def _sweep(self) -> None:
        now = datetime.now(timezone.utc)
        await self._memory_store.cleanup_expired(now)
        await self._registry.sweep_expired(now)
        await self._memory_store.enforce_all_caps()

    async def _loop(
        self, name: str, job: Callable[[], Awaitable[object]], interval: float
    ) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                await job()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Maintenance {name} cycle failed: {e}")
