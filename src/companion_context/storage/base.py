"""Backend protocol shared by the durable and in-process stores."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..models import ContextItem, ContextType, Memory, MemoryTier


class StorageBackend(Protocol):
    """CRUD and filtered queries for memories and context items.

    Implementations return fresh model instances; callers may mutate what
    they receive without affecting stored state.
    """

    async def insert_memory(self, memory: Memory) -> None: ...

    async def get_memory(self, memory_id: str) -> Memory | None: ...

    async def list_memories(
        self,
        user_id: str,
        tier: MemoryTier | None = None,
        include_deleted: bool = False,
    ) -> list[Memory]: ...

    async def replace_memory(self, memory: Memory) -> bool: ...

    async def record_memory_access(self, memory_id: str, accessed_at: datetime) -> bool: ...

    async def delete_memory(self, memory_id: str) -> bool: ...

    async def delete_user_memories(self, user_id: str) -> list[str]: ...

    async def delete_expired_memories(self, now: datetime) -> list[str]: ...

    async def list_memory_user_ids(self) -> list[str]: ...

    async def insert_context(self, item: ContextItem) -> None: ...

    async def get_context_item(self, context_id: str) -> ContextItem | None: ...

    async def list_context(
        self, user_id: str, context_type: ContextType | None = None
    ) -> list[ContextItem]: ...

    async def replace_context(self, item: ContextItem) -> bool: ...

    async def delete_context(self, context_id: str) -> bool: ...

    async def deactivate_expired_context(self, now: datetime) -> int: ...
