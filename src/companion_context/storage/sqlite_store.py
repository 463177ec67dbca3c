"""SQLite storage backend.

Durable storage for memories, context items and the mirrored semantic index,
using aiosqlite for async operations.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
from loguru import logger

from ..embedding import deserialize_embedding, serialize_embedding
from ..exceptions import StorageUnavailableError
from ..models import ContextItem, ContextType, Memory, MemoryTier
from ..payloads import validate_payload


def _to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class SQLiteStore:
    """SQLite storage backend.

    Provides async CRUD for memories and context items, plus the
    ``memory_index`` table that mirrors each memory's embedding.

    Uses WAL mode for concurrent reads.
    """

    def __init__(self, db_path: str = "./memory/companion_context.db"):
        """Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        logger.info(f"SQLiteStore initialized with db_path: {db_path}")

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def initialize(self) -> None:
        """Create database tables and indexes if they don't exist.

        Creates directory for database file if needed.
        Enables WAL mode for concurrent reads.
        """
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured database directory exists: {db_dir}")

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode=WAL")

        await self._create_tables()
        await self._create_indexes()

        await self._db.commit()
        logger.info("SQLite database initialized successfully")

    async def _create_tables(self) -> None:
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                text TEXT NOT NULL,
                tier TEXT NOT NULL,
                category TEXT NOT NULL,
                source TEXT NOT NULL,
                importance REAL NOT NULL DEFAULT 5.0,
                created_at TEXT NOT NULL,
                last_accessed_at TEXT,
                access_count INTEGER NOT NULL DEFAULT 0,
                expires_at TEXT,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                activity_id TEXT,
                metadata TEXT,
                embedding BLOB,
                related_memories TEXT
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS context_items (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL,
                duration TEXT NOT NULL,
                data TEXT NOT NULL,
                source TEXT NOT NULL,
                metadata TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT,
                expires_at TEXT
            )
        """)

        # Secondary semantic index, kept in step with memories by MemoryStore
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS memory_index (
                memory_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                text TEXT NOT NULL,
                embedding BLOB,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)

        logger.debug("All tables created successfully")

    async def _create_indexes(self) -> None:
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_user
            ON memories(user_id, is_deleted)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_memory_expires
            ON memories(expires_at)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_context_user_type
            ON context_items(user_id, type)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_context_expires
            ON context_items(is_active, expires_at)
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_index_user
            ON memory_index(user_id)
        """)

        logger.debug("All indexes created successfully")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("SQLite database connection closed")

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageUnavailableError(
                "Database not initialized. Call initialize() first.",
                path=self.db_path,
            )
        return self._db

    async def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        db = self._require_db()
        async with db.execute("SELECT 1") as cursor:
            row = await cursor.fetchone()
        return row is not None and row[0] == 1

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    @staticmethod
    def _memory_params(memory: Memory) -> dict[str, Any]:
        return {
            "id": memory.id,
            "user_id": memory.user_id,
            "text": memory.text,
            "tier": memory.tier.value,
            "category": memory.category.value,
            "source": memory.source,
            "importance": memory.importance,
            "created_at": _to_iso(memory.created_at),
            "last_accessed_at": _to_iso(memory.last_accessed_at),
            "access_count": memory.access_count,
            "expires_at": _to_iso(memory.expires_at),
            "is_deleted": int(memory.is_deleted),
            "activity_id": memory.activity_id,
            "metadata": json.dumps(memory.metadata),
            "embedding": (
                serialize_embedding(memory.embedding) if memory.embedding else None
            ),
            "related_memories": json.dumps(memory.related_memories),
        }

    @staticmethod
    def _row_to_memory(row: aiosqlite.Row) -> Memory:
        return Memory(
            id=row["id"],
            user_id=row["user_id"],
            text=row["text"],
            tier=row["tier"],
            category=row["category"],
            source=row["source"],
            importance=row["importance"],
            created_at=_from_iso(row["created_at"]),
            last_accessed_at=_from_iso(row["last_accessed_at"]),
            access_count=row["access_count"],
            expires_at=_from_iso(row["expires_at"]),
            is_deleted=bool(row["is_deleted"]),
            activity_id=row["activity_id"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            embedding=(
                deserialize_embedding(row["embedding"]) if row["embedding"] else None
            ),
            related_memories=(
                json.loads(row["related_memories"]) if row["related_memories"] else []
            ),
        )

    async def _fetch_memories(self, sql: str, params: tuple) -> list[Memory]:
        db = self._require_db()
        async with db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_memory(row) for row in rows]

    async def insert_memory(self, memory: Memory) -> None:
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO memories (
                id, user_id, text, tier, category, source, importance,
                created_at, last_accessed_at, access_count, expires_at,
                is_deleted, activity_id, metadata, embedding, related_memories
            ) VALUES (
                :id, :user_id, :text, :tier, :category, :source, :importance,
                :created_at, :last_accessed_at, :access_count, :expires_at,
                :is_deleted, :activity_id, :metadata, :embedding, :related_memories
            )
            """,
            self._memory_params(memory),
        )
        await db.commit()
        logger.debug(f"Inserted memory {memory.id} for user {memory.user_id}")

    async def get_memory(self, memory_id: str) -> Memory | None:
        rows = await self._fetch_memories(
            "SELECT * FROM memories WHERE id = ?", (memory_id,)
        )
        return rows[0] if rows else None

    async def list_memories(
        self,
        user_id: str,
        tier: MemoryTier | None = None,
        include_deleted: bool = False,
    ) -> list[Memory]:
        sql = "SELECT * FROM memories WHERE user_id = ?"
        params: list[Any] = [user_id]
        if tier is not None:
            sql += " AND tier = ?"
            params.append(tier.value)
        if not include_deleted:
            sql += " AND is_deleted = 0"
        return await self._fetch_memories(sql, tuple(params))

    async def replace_memory(self, memory: Memory) -> bool:
        db = self._require_db()
        cursor = await db.execute(
            """
            UPDATE memories SET
                text = :text, tier = :tier, category = :category,
                source = :source, importance = :importance,
                created_at = :created_at, last_accessed_at = :last_accessed_at,
                access_count = :access_count, expires_at = :expires_at,
                is_deleted = :is_deleted, activity_id = :activity_id,
                metadata = :metadata, embedding = :embedding,
                related_memories = :related_memories
            WHERE id = :id
            """,
            self._memory_params(memory),
        )
        await db.commit()
        return cursor.rowcount > 0

    async def record_memory_access(self, memory_id: str, accessed_at: datetime) -> bool:
        db = self._require_db()
        cursor = await db.execute(
            """
            UPDATE memories SET
                access_count = access_count + 1, last_accessed_at = ?
            WHERE id = ?
            """,
            (_to_iso(accessed_at), memory_id),
        )
        await db.commit()
        return cursor.rowcount > 0

    async def delete_memory(self, memory_id: str) -> bool:
        db = self._require_db()
        cursor = await db.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        await db.commit()
        return cursor.rowcount > 0

    async def delete_user_memories(self, user_id: str) -> list[str]:
        db = self._require_db()
        async with db.execute(
            "SELECT id FROM memories WHERE user_id = ?", (user_id,)
        ) as cursor:
            ids = [row[0] for row in await cursor.fetchall()]
        await db.execute("DELETE FROM memories WHERE user_id = ?", (user_id,))
        await db.commit()
        return ids

    async def delete_expired_memories(self, now: datetime) -> list[str]:
        db = self._require_db()
        cutoff = _to_iso(now)
        async with db.execute(
            "SELECT id FROM memories WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (cutoff,),
        ) as cursor:
            ids = [row[0] for row in await cursor.fetchall()]
        if ids:
            await db.execute(
                "DELETE FROM memories WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (cutoff,),
            )
            await db.commit()
        return ids

    async def list_memory_user_ids(self) -> list[str]:
        db = self._require_db()
        async with db.execute("SELECT DISTINCT user_id FROM memories") as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Context items
    # ------------------------------------------------------------------

    @staticmethod
    def _context_params(item: ContextItem) -> dict[str, Any]:
        return {
            "id": item.id,
            "user_id": item.user_id,
            "type": item.type.value,
            "duration": item.duration.value,
            "data": item.data.model_dump_json(),
            "source": item.source,
            "metadata": json.dumps(item.metadata),
            "is_active": int(item.is_active),
            "created_at": _to_iso(item.created_at),
            "updated_at": _to_iso(item.updated_at),
            "expires_at": _to_iso(item.expires_at),
        }

    @staticmethod
    def _row_to_context(row: aiosqlite.Row) -> ContextItem:
        return ContextItem(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            duration=row["duration"],
            data=validate_payload(json.loads(row["data"])),
            source=row["source"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            is_active=bool(row["is_active"]),
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
            expires_at=_from_iso(row["expires_at"]),
        )

    async def insert_context(self, item: ContextItem) -> None:
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO context_items (
                id, user_id, type, duration, data, source, metadata,
                is_active, created_at, updated_at, expires_at
            ) VALUES (
                :id, :user_id, :type, :duration, :data, :source, :metadata,
                :is_active, :created_at, :updated_at, :expires_at
            )
            """,
            self._context_params(item),
        )
        await db.commit()

    async def get_context_item(self, context_id: str) -> ContextItem | None:
        db = self._require_db()
        async with db.execute(
            "SELECT * FROM context_items WHERE id = ?", (context_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_context(row) if row else None

    async def list_context(
        self, user_id: str, context_type: ContextType | None = None
    ) -> list[ContextItem]:
        db = self._require_db()
        sql = "SELECT * FROM context_items WHERE user_id = ?"
        params: list[Any] = [user_id]
        if context_type is not None:
            sql += " AND type = ?"
            params.append(context_type.value)
        async with db.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_context(row) for row in rows]

    async def replace_context(self, item: ContextItem) -> bool:
        db = self._require_db()
        cursor = await db.execute(
            """
            UPDATE context_items SET
                type = :type, duration = :duration, data = :data,
                source = :source, metadata = :metadata, is_active = :is_active,
                created_at = :created_at, updated_at = :updated_at,
                expires_at = :expires_at
            WHERE id = :id
            """,
            self._context_params(item),
        )
        await db.commit()
        return cursor.rowcount > 0

    async def delete_context(self, context_id: str) -> bool:
        db = self._require_db()
        cursor = await db.execute(
            "DELETE FROM context_items WHERE id = ?", (context_id,)
        )
        await db.commit()
        return cursor.rowcount > 0

    async def deactivate_expired_context(self, now: datetime) -> int:
        db = self._require_db()
        cursor = await db.execute(
            """
            UPDATE context_items SET is_active = 0, updated_at = ?
            WHERE is_active = 1 AND expires_at IS NOT NULL AND expires_at <= ?
            """,
            (_to_iso(now), _to_iso(now)),
        )
        await db.commit()
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Semantic index
    # ------------------------------------------------------------------

    async def upsert_index_entry(
        self,
        memory_id: str,
        user_id: str,
        text: str,
        embedding: bytes | None,
        is_deleted: bool = False,
    ) -> None:
        db = self._require_db()
        await db.execute(
            """
            INSERT INTO memory_index (memory_id, user_id, text, embedding, is_deleted, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(memory_id) DO UPDATE SET
                text = excluded.text,
                embedding = excluded.embedding,
                is_deleted = excluded.is_deleted,
                updated_at = excluded.updated_at
            """,
            (
                memory_id,
                user_id,
                text,
                embedding,
                int(is_deleted),
                _to_iso(datetime.now(timezone.utc)),
            ),
        )
        await db.commit()

    async def set_index_deleted(self, memory_id: str, is_deleted: bool) -> bool:
        db = self._require_db()
        cursor = await db.execute(
            "UPDATE memory_index SET is_deleted = ?, updated_at = ? WHERE memory_id = ?",
            (int(is_deleted), _to_iso(datetime.now(timezone.utc)), memory_id),
        )
        await db.commit()
        return cursor.rowcount > 0

    async def delete_index_entries(self, memory_ids: list[str]) -> int:
        if not memory_ids:
            return 0
        db = self._require_db()
        placeholders = ",".join("?" for _ in memory_ids)
        cursor = await db.execute(
            f"DELETE FROM memory_index WHERE memory_id IN ({placeholders})",
            tuple(memory_ids),
        )
        await db.commit()
        return cursor.rowcount

    async def get_index_entry(self, memory_id: str) -> dict | None:
        db = self._require_db()
        async with db.execute(
            "SELECT * FROM memory_index WHERE memory_id = ?", (memory_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        entry = dict(row)
        entry["is_deleted"] = bool(entry["is_deleted"])
        return entry

    async def list_index_entries(
        self, user_id: str, include_deleted: bool = False
    ) -> list[dict]:
        db = self._require_db()
        sql = "SELECT * FROM memory_index WHERE user_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        async with db.execute(sql, (user_id,)) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]
