"""Storage backends.

Durable SQLite storage, the in-process fallback, and the router that picks
between them.
"""

from __future__ import annotations

from .base import StorageBackend
from .memory_backend import InMemoryBackend
from .router import StorageModeGuard, StorageRouter
from .sqlite_store import SQLiteStore

__all__ = [
    "StorageBackend",
    "InMemoryBackend",
    "StorageModeGuard",
    "StorageRouter",
    "SQLiteStore",
]
