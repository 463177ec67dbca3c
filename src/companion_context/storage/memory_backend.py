"""In-process fallback backend.

Used while the durable store is unreachable. Memories are kept in a per-user
list and context items in an id-keyed map. Nothing here survives a restart,
and nothing is migrated to the durable store when it comes back.
"""

from __future__ import annotations

from datetime import datetime

from ..models import ContextItem, ContextType, Memory, MemoryTier


class InMemoryBackend:
    """Process-local implementation of the storage backend protocol.

    Stored and returned models are deep copies, so readers never observe
    a record being mutated underneath them.
    """

    def __init__(self):
        self._memories: dict[str, list[Memory]] = {}
        self._contexts: dict[str, ContextItem] = {}

    def record_count(self) -> int:
        """Number of records currently held (memories + context items)."""
        return sum(len(items) for items in self._memories.values()) + len(
            self._contexts
        )

    def _find_memory(self, memory_id: str) -> tuple[list[Memory], int] | None:
        for memories in self._memories.values():
            for index, memory in enumerate(memories):
                if memory.id == memory_id:
                    return memories, index
        return None

    # Memories

    async def insert_memory(self, memory: Memory) -> None:
        self._memories.setdefault(memory.user_id, []).append(
            memory.model_copy(deep=True)
        )

    async def get_memory(self, memory_id: str) -> Memory | None:
        found = self._find_memory(memory_id)
        if found is None:
            return None
        memories, index = found
        return memories[index].model_copy(deep=True)

    async def list_memories(
        self,
        user_id: str,
        tier: MemoryTier | None = None,
        include_deleted: bool = False,
    ) -> list[Memory]:
        return [
            m.model_copy(deep=True)
            for m in self._memories.get(user_id, [])
            if (tier is None or m.tier == tier)
            and (include_deleted or not m.is_deleted)
        ]

    async def replace_memory(self, memory: Memory) -> bool:
        found = self._find_memory(memory.id)
        if found is None:
            return False
        memories, index = found
        memories[index] = memory.model_copy(deep=True)
        return True

    async def record_memory_access(self, memory_id: str, accessed_at: datetime) -> bool:
        found = self._find_memory(memory_id)
        if found is None:
            return False
        memories, index = found
        stored = memories[index]
        stored.access_count += 1
        stored.last_accessed_at = accessed_at
        return True

    async def delete_memory(self, memory_id: str) -> bool:
        found = self._find_memory(memory_id)
        if found is None:
            return False
        memories, index = found
        del memories[index]
        return True

    async def delete_user_memories(self, user_id: str) -> list[str]:
        removed = self._memories.pop(user_id, [])
        return [m.id for m in removed]

    async def delete_expired_memories(self, now: datetime) -> list[str]:
        removed: list[str] = []
        for user_id, memories in self._memories.items():
            keep = []
            for memory in memories:
                if memory.expires_at is not None and memory.expires_at <= now:
                    removed.append(memory.id)
                else:
                    keep.append(memory)
            self._memories[user_id] = keep
        return removed

    async def list_memory_user_ids(self) -> list[str]:
        return [uid for uid, memories in self._memories.items() if memories]

    # Context items

    async def insert_context(self, item: ContextItem) -> None:
        self._contexts[item.id] = item.model_copy(deep=True)

    async def get_context_item(self, context_id: str) -> ContextItem | None:
        item = self._contexts.get(context_id)
        return item.model_copy(deep=True) if item else None

    async def list_context(
        self, user_id: str, context_type: ContextType | None = None
    ) -> list[ContextItem]:
        return [
            item.model_copy(deep=True)
            for item in self._contexts.values()
            if item.user_id == user_id
            and (context_type is None or item.type == context_type)
        ]

    async def replace_context(self, item: ContextItem) -> bool:
        if item.id not in self._contexts:
            return False
        self._contexts[item.id] = item.model_copy(deep=True)
        return True

    async def delete_context(self, context_id: str) -> bool:
        return self._contexts.pop(context_id, None) is not None

    async def deactivate_expired_context(self, now: datetime) -> int:
        count = 0
        for item in self._contexts.values():
            if item.is_active and item.expires_at is not None and item.expires_at <= now:
                item.is_active = False
                item.updated_at = now
                count += 1
        return count
