"""Memory Store: tiered, decaying, soft-deletable facts about a user.

Owns the memory lifecycle:
- Creation with tier-derived expiry and a best-effort semantic index mirror
- Read-time importance decay (stored importance is never mutated by decay)
- Soft delete / restore / hard delete, propagated to the index
- Expiry sweep and active per-user cap enforcement
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .config import MemoryStoreConfig
from .embedding import Embedder
from .exceptions import ValidationError
from .models import (
    AI_GENERATED_SOURCE,
    Memory,
    MemoryCategory,
    MemoryTier,
    StorageMode,
    memory_expiry,
)
from .semantic_index import SemanticIndex
from .storage.router import StorageRouter

MIN_IMPORTANCE = 0.1
MAX_IMPORTANCE = 10.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decayed_importance(
    memory: Memory, now: datetime | None = None, decay_rate: float = 0.1
) -> float:
    """Project a memory's importance after time-based decay.

    ``importance * (1 - decay_rate) ** whole_days``, floored at 0.1.

    Args:
        memory: Memory to project
        now: Reference time (defaults to current UTC time)
        decay_rate: Fractional loss per elapsed day

    Returns:
        Decayed importance
    """
    now = now or _utcnow()
    elapsed_days = max(0, math.floor((now - memory.created_at).total_seconds() / 86400))
    decayed = memory.importance * (1.0 - decay_rate) ** elapsed_days
    return max(decayed, MIN_IMPORTANCE)


def _sort_by_importance(memories: list[Memory]) -> list[Memory]:
    memories.sort(key=lambda m: m.created_at, reverse=True)
    memories.sort(key=lambda m: m.importance, reverse=True)
    return memories


class MemoryStore:
    """Durable per-user memory store with an in-process fallback.

    All persistence goes through a StorageRouter, so an unreachable durable
    store degrades to the fallback instead of failing the caller.
    """

    def __init__(
        self,
        router: StorageRouter,
        index: SemanticIndex | None = None,
        embedder: Embedder | None = None,
        config: MemoryStoreConfig | None = None,
    ):
        """Initialize memory store.

        Args:
            router: Storage router (durable store + fallback)
            index: Secondary semantic index to mirror writes into
            embedder: Text-to-vector provider for memory embeddings
            config: Memory lifecycle configuration
        """
        self._router = router
        self._index = index
        self._embedder = embedder
        self.config = config or MemoryStoreConfig()

    @property
    def mode(self) -> StorageMode:
        return self._router.mode

    def decayed_importance(self, memory: Memory, now: datetime | None = None) -> float:
        return decayed_importance(memory, now, self.config.decay_rate)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _embed(self, text: str) -> list[float] | None:
        if self._embedder is None:
            return None
        try:
            return self._embedder.encode_single(text)
        except Exception as e:
            logger.warning(f"Embedding generation failed: {e}")
            return None

    async def _mirror(
        self, op: str, memory_id: str, call: Callable[[SemanticIndex], Awaitable[Any]]
    ) -> None:
        """Apply a write to the semantic index; failures are logged only."""
        if self._index is None:
            return
        try:
            await call(self._index)
        except Exception as e:
            logger.warning(f"Semantic index {op} failed for memory {memory_id}: {e}")

    @staticmethod
    def _validate_importance(importance: float) -> float:
        if not MIN_IMPORTANCE <= importance <= MAX_IMPORTANCE:
            raise ValidationError(
                "importance",
                f"must be between {MIN_IMPORTANCE} and {MAX_IMPORTANCE}, got {importance}",
            )
        return float(importance)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def add_memory(
        self,
        user_id: str,
        text: str,
        tier: MemoryTier = MemoryTier.MEDIUM,
        source: str = "user",
        metadata: dict[str, Any] | None = None,
        importance: float | None = None,
        category: MemoryCategory = MemoryCategory.FACT,
        activity_id: str | None = None,
        related_memories: Iterable[str] = (),
    ) -> Memory:
        """Create and persist a memory.

        Args:
            user_id: Owner of the memory
            text: Free-form memory content
            tier: Durability tier (controls expires_at)
            source: Producer tag
            metadata: Open key/value bag (bounded)
            importance: Importance in [0.1, 10] (defaults to config)
            category: Memory category
            activity_id: Optional activity scoping tag
            related_memories: Ids of related memories

        Returns:
            The stored memory

        Raises:
            ValidationError: If text is empty or importance/metadata is invalid
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("text", "memory text must be a non-empty string")
        if importance is None:
            importance = self.config.default_importance
        importance = self._validate_importance(importance)

        metadata = dict(metadata or {})
        if activity_id is None and metadata.get("activity_id"):
            activity_id = str(metadata.pop("activity_id"))

        now = _utcnow()
        try:
            memory = Memory(
                user_id=user_id,
                text=text.strip(),
                tier=tier,
                category=category,
                source=source,
                importance=importance,
                created_at=now,
                expires_at=memory_expiry(MemoryTier(tier), now),
                activity_id=activity_id,
                metadata=metadata,
                related_memories=list(related_memories),
                embedding=self._embed(text),
            )
        except PydanticValidationError as e:
            raise ValidationError("memory", str(e)) from e

        await self._router.run("add_memory", lambda b: b.insert_memory(memory))
        await self._mirror("upsert", memory.id, lambda idx: idx.upsert(memory))

        logger.debug(
            f"Added {memory.tier.value} memory {memory.id} for user {user_id} "
            f"(importance={importance}, source={source})"
        )

        await self.enforce_cap(user_id)
        return memory

    async def add_ai_generated_memory(
        self,
        user_id: str,
        text: str,
        tier: MemoryTier = MemoryTier.MEDIUM,
        category: MemoryCategory = MemoryCategory.FACT,
        importance: float = 7.0,
        related_memories: Iterable[str] = (),
    ) -> Memory:
        """Store an insight generated by the companion itself."""
        related = list(related_memories)
        return await self.add_memory(
            user_id,
            text,
            tier=tier,
            source=AI_GENERATED_SOURCE,
            metadata={
                "related_memories": related,
                "is_ai_generated": True,
                "confidence": 0.85,
            },
            importance=importance,
            category=category,
            related_memories=related,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_memory(self, memory_id: str) -> Memory | None:
        return await self._router.run("get_memory", lambda b: b.get_memory(memory_id))

    async def list_candidates(
        self,
        user_id: str,
        include_deleted: bool = False,
        now: datetime | None = None,
    ) -> list[Memory]:
        """Unexpired memories for a user, in storage order."""
        now = now or _utcnow()
        memories = await self._router.run(
            "list_memories",
            lambda b: b.list_memories(user_id, include_deleted=include_deleted),
        )
        return [m for m in memories if not m.is_expired(now)]

    async def get_user_memories(
        self,
        user_id: str,
        tier: MemoryTier | None = None,
        include_deleted: bool = False,
    ) -> list[Memory]:
        """Get a user's memories sorted by importance desc, then newest first.

        Args:
            user_id: Owner of the memories
            tier: Optional tier filter
            include_deleted: Include soft-deleted memories

        Returns:
            Sorted list of memories
        """
        now = _utcnow()
        memories = await self._router.run(
            "get_user_memories",
            lambda b: b.list_memories(user_id, tier, include_deleted),
        )
        return _sort_by_importance([m for m in memories if not m.is_expired(now)])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_memory(
        self,
        memory_id: str,
        text: str | None = None,
        metadata: dict[str, Any] | None = None,
        importance: float | None = None,
    ) -> Memory | None:
        """Update text, metadata or importance.

        A text change regenerates the embedding and the index entry.

        Returns:
            Updated memory, or None if it does not exist
        """
        memory = await self.get_memory(memory_id)
        if memory is None:
            return None

        text_changed = False
        if text is not None:
            if not text.strip():
                raise ValidationError("text", "memory text must be a non-empty string")
            text_changed = text.strip() != memory.text
            memory.text = text.strip()
        if metadata is not None:
            try:
                memory.metadata = Memory.model_validate(
                    {"user_id": memory.user_id, "text": memory.text, "metadata": metadata}
                ).metadata
            except PydanticValidationError as e:
                raise ValidationError("metadata", str(e)) from e
        if importance is not None:
            memory.importance = self._validate_importance(importance)
        if text_changed:
            memory.embedding = self._embed(memory.text)

        updated = await self._router.run(
            "update_memory", lambda b: b.replace_memory(memory)
        )
        if not updated:
            return None

        await self._mirror("upsert", memory.id, lambda idx: idx.upsert(memory))
        return memory

    async def soft_delete_memory(self, memory_id: str) -> bool:
        return await self._set_deleted(memory_id, True)

    async def restore_memory(self, memory_id: str) -> bool:
        return await self._set_deleted(memory_id, False)

    async def _set_deleted(self, memory_id: str, is_deleted: bool) -> bool:
        memory = await self.get_memory(memory_id)
        if memory is None:
            return False
        memory.is_deleted = is_deleted
        updated = await self._router.run(
            "set_deleted", lambda b: b.replace_memory(memory)
        )
        if updated:
            await self._mirror(
                "set_deleted", memory_id, lambda idx: idx.set_deleted(memory_id, is_deleted)
            )
        return updated

    async def delete_memory(self, memory_id: str) -> bool:
        """Hard delete a memory from the store and the index."""
        deleted = await self._router.run(
            "delete_memory", lambda b: b.delete_memory(memory_id)
        )
        if deleted:
            await self._mirror("remove", memory_id, lambda idx: idx.remove([memory_id]))
        return deleted

    async def delete_all_user_memories(self, user_id: str) -> int:
        ids = await self._router.run(
            "delete_user_memories", lambda b: b.delete_user_memories(user_id)
        )
        if ids:
            await self._mirror("remove", f"user:{user_id}", lambda idx: idx.remove(ids))
        logger.info(f"Deleted {len(ids)} memories for user {user_id}")
        return len(ids)

    async def record_access(self, memory_id: str) -> Memory | None:
        """Mark a memory as read: bump access_count and last_accessed_at."""
        accessed_at = _utcnow()
        updated = await self._router.run(
            "record_access",
            lambda b: b.record_memory_access(memory_id, accessed_at),
        )
        if not updated:
            return None
        return await self.get_memory(memory_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """Hard-delete memories past their expiry, index entries included."""
        now = now or _utcnow()
        ids = await self._router.run(
            "cleanup_expired", lambda b: b.delete_expired_memories(now)
        )
        if ids:
            await self._mirror("remove", "expired", lambda idx: idx.remove(ids))
            logger.info(f"Cleaned up {len(ids)} expired memories")
        return len(ids)

    async def enforce_cap(self, user_id: str, now: datetime | None = None) -> int:
        """Evict memories beyond the per-user cap.

        Eviction order: soft-deleted first, then non-permanent before
        permanent, then lowest decayed importance, then oldest.

        Returns:
            Number of memories evicted
        """
        cap = self.config.max_memories_per_user
        memories = await self._router.run(
            "enforce_cap",
            lambda b: b.list_memories(user_id, include_deleted=True),
        )
        excess = len(memories) - cap
        if excess <= 0:
            return 0

        now = now or _utcnow()
        memories.sort(
            key=lambda m: (
                not m.is_deleted,
                m.tier == MemoryTier.PERMANENT,
                self.decayed_importance(m, now),
                m.created_at,
            )
        )
        evicted = 0
        for memory in memories[:excess]:
            if await self.delete_memory(memory.id):
                evicted += 1

        logger.info(
            f"Memory cap enforced for user {user_id}: evicted {evicted} "
            f"(cap={cap})"
        )
        return evicted

    async def enforce_all_caps(self) -> int:
        user_ids = await self._router.run(
            "list_users", lambda b: b.list_memory_user_ids()
        )
        total = 0
        for user_id in user_ids:
            total += await self.enforce_cap(user_id)
        return total
