"""Tests for the maintenance scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from companion_context.config import MaintenanceConfig, MemoryStoreConfig
from companion_context.maintenance import MaintenanceScheduler
from companion_context.memory_store import MemoryStore
from companion_context.models import Memory, StorageMode


def _mock_parts(probe_mode=StorageMode.DURABLE):
    memory_store = MagicMock()
    memory_store.cleanup_expired = AsyncMock(return_value=0)
    memory_store.enforce_all_caps = AsyncMock(return_value=0)
    registry = MagicMock()
    registry.sweep_expired = AsyncMock(return_value=0)
    router = MagicMock()
    router.probe = AsyncMock(return_value=probe_mode)
    router.mode = probe_mode
    return memory_store, registry, router


@pytest.mark.asyncio
async def test_run_once_sweeps_everything(router, registry):
    store = MemoryStore(router, config=MemoryStoreConfig(max_memories_per_user=2))
    current = datetime.now(timezone.utc)
    memories = [
        Memory(user_id="u1", text="expired", expires_at=current - timedelta(minutes=1)),
        Memory(user_id="u1", text="low", importance=1),
        Memory(user_id="u1", text="mid", importance=5),
        Memory(user_id="u1", text="high", importance=9),
    ]
    for memory in memories:
        await router.run("insert", lambda b, m=memory: b.insert_memory(m))
    await registry.inject_context(
        "u1", "time", "immediate", "tick", now=current - timedelta(minutes=10)
    )

    scheduler = MaintenanceScheduler(store, registry, router)
    counts = await scheduler.run_once(current)

    assert counts == {
        "expired_memories": 1,
        "deactivated_context": 1,
        "evicted_memories": 1,
        "storage_mode": "durable",
    }
    remaining = {m.text for m in await store.get_user_memories("u1", include_deleted=True)}
    assert remaining == {"mid", "high"}


@pytest.mark.asyncio
async def test_run_once_continues_after_failing_step():
    memory_store, registry, router = _mock_parts(StorageMode.FALLBACK)
    memory_store.cleanup_expired.side_effect = RuntimeError("disk full")
    memory_store.enforce_all_caps.return_value = 2
    registry.sweep_expired.return_value = 3

    counts = await MaintenanceScheduler(memory_store, registry, router).run_once()

    assert counts == {
        "expired_memories": 0,
        "deactivated_context": 3,
        "evicted_memories": 2,
        "storage_mode": "fallback",
    }


@pytest.mark.asyncio
async def test_probe_failure_reports_current_mode():
    memory_store, registry, router = _mock_parts(StorageMode.FALLBACK)
    router.probe.side_effect = RuntimeError("unexpected")
    scheduler = MaintenanceScheduler(memory_store, registry, router)
    assert await scheduler.probe() is StorageMode.FALLBACK


@pytest.mark.asyncio
async def test_start_and_stop_loops():
    memory_store, registry, router = _mock_parts()
    scheduler = MaintenanceScheduler(
        memory_store,
        registry,
        router,
        MaintenanceConfig(interval_seconds=0.01),
        probe_interval=0.01,
    )

    scheduler.start()
    tasks = list(scheduler._tasks)
    scheduler.start()
    assert scheduler._tasks == tasks
    assert scheduler.is_running

    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert not scheduler.is_running
    assert memory_store.cleanup_expired.await_count >= 1
    assert registry.sweep_expired.await_count >= 1
    assert router.probe.await_count >= 1


@pytest.mark.asyncio
async def test_loop_survives_failing_cycle():
    memory_store, registry, router = _mock_parts()
    memory_store.cleanup_expired.side_effect = RuntimeError("locked")
    scheduler = MaintenanceScheduler(
        memory_store, registry, router, MaintenanceConfig(interval_seconds=0.01), 10.0
    )

    scheduler.start()
    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert memory_store.cleanup_expired.await_count >= 2


@pytest.mark.asyncio
async def test_stop_without_start():
    scheduler = MaintenanceScheduler(*_mock_parts())
    await scheduler.stop()
    assert not scheduler.is_running
