"""
Companion Context Test Fixtures
Shared fixtures and mocking helpers
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from companion_context.config import EngineConfig
from companion_context.context_registry import ContextRegistry
from companion_context.embedding import PlaceholderEmbedder
from companion_context.memory_store import MemoryStore
from companion_context.semantic_index import SemanticIndex
from companion_context.storage.memory_backend import InMemoryBackend
from companion_context.storage.router import StorageRouter
from companion_context.storage.sqlite_store import SQLiteStore


@pytest.fixture
def now():
    """Fixed reference time for time-dependent tests"""
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def days_ago(now):
    def _days_ago(days: float) -> datetime:
        return now - timedelta(days=days)

    return _days_ago


@pytest.fixture
async def sqlite_store():
    """Initialized SQLite store in a temporary directory"""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SQLiteStore(db_path=os.path.join(tmpdir, "test.db"))
        await store.initialize()
        yield store
        await store.close()


@pytest.fixture
def router(sqlite_store):
    return StorageRouter(sqlite_store, InMemoryBackend())


@pytest.fixture
def fallback_router():
    """Router with no durable store (always FALLBACK)"""
    return StorageRouter(None, InMemoryBackend())


@pytest.fixture
def memory_store(router, sqlite_store):
    return MemoryStore(
        router,
        index=SemanticIndex(sqlite_store),
        embedder=PlaceholderEmbedder(dimension=16),
    )


@pytest.fixture
def registry(router):
    return ContextRegistry(router)


@pytest.fixture
def engine_config():
    """EngineConfig pointing at a temporary database"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield EngineConfig(
            storage={"sqlite_db_path": os.path.join(tmpdir, "engine.db")},
            embedding={"provider": "placeholder", "dimension": 16},
            maintenance={"enabled": False},
        )


@pytest.fixture
def mock_generator():
    """Mock TextGenerator"""
    mock = AsyncMock()
    mock.generate.return_value = "The heroes crossed the river"
    return mock
