"""Secondary semantic index mirroring each memory's text and vector.

The memories table is the source of truth. MemoryStore writes here after
every primary write and treats failures as non-fatal.
"""

from __future__ import annotations

from loguru import logger

from .embedding import cosine_similarity, deserialize_embedding, serialize_embedding
from .exceptions import StorageUnavailableError
from .models import Memory
from .storage.sqlite_store import SQLiteStore


class SemanticIndex:
    """Vector mirror of memories stored in the ``memory_index`` table."""

    def __init__(self, store: SQLiteStore | None):
        self._store = store

    def _require_store(self) -> SQLiteStore:
        if self._store is None:
            raise StorageUnavailableError("Semantic index has no backing store")
        return self._store

    async def upsert(self, memory: Memory) -> None:
        store = self._require_store()
        blob = serialize_embedding(memory.embedding) if memory.embedding else None
        await store.upsert_index_entry(
            memory_id=memory.id,
            user_id=memory.user_id,
            text=memory.text,
            embedding=blob,
            is_deleted=memory.is_deleted,
        )

    async def set_deleted(self, memory_id: str, is_deleted: bool) -> bool:
        return await self._require_store().set_index_deleted(memory_id, is_deleted)

    async def remove(self, memory_ids: list[str]) -> int:
        return await self._require_store().delete_index_entries(memory_ids)

    async def get(self, memory_id: str) -> dict | None:
        return await self._require_store().get_index_entry(memory_id)

    async def search(
        self, user_id: str, query_embedding: list[float], limit: int | None = 10
    ) -> list[tuple[str, float]]:
        """Rank a user's live index entries by cosine similarity.

        Args:
            user_id: Owner of the entries
            query_embedding: Query vector
            limit: Maximum number of pairs, or None for all

        Returns:
            List of (memory_id, similarity) pairs, best first
        """
        entries = await self._require_store().list_index_entries(user_id)
        scored: list[tuple[str, float]] = []
        for entry in entries:
            blob = entry.get("embedding")
            if not blob:
                continue
            similarity = cosine_similarity(
                query_embedding, deserialize_embedding(blob)
            )
            scored.append((entry["memory_id"], similarity))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        logger.debug(f"Index search for {user_id}: {len(scored)} candidates")
        return scored[:limit]
