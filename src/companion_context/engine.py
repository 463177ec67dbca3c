"""Context Engine - facade for the memory and context synthesis engine.

Consumers construct one ``ContextEngine`` and call ``build_prompt`` on every
turn. Producers write memories and context items through the same facade.
Components are created on first use.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from loguru import logger

from .collaborators import (
    ActionCatalog,
    CompanionStateProvider,
    ProfileSummaryProvider,
    TextGenerator,
    UserStateProvider,
)
from .config import EngineConfig
from .context_assembler import AssembledPrompt, ContextAssembler
from .context_registry import ContextRegistry
from .embedding import Embedder, create_embedder
from .history import (
    HeuristicHistorySummarizer,
    HistoryFormatter,
    HistorySummarizer,
    LLMHistorySummarizer,
)
from .maintenance import MaintenanceScheduler
from .memory_store import MemoryStore
from .models import (
    ActiveTask,
    ChatMessage,
    ContextDuration,
    ContextItem,
    ContextType,
    Memory,
    MemoryCategory,
    MemoryTier,
    RetrievalResult,
    StorageMode,
)
from .retrieval import RelevanceRetriever, RetrievalOptions, create_scorer
from .semantic_index import SemanticIndex
from .storage.memory_backend import InMemoryBackend
from .storage.router import DURABLE_ERRORS, StorageRouter
from .storage.sqlite_store import SQLiteStore
from .task_renderers import TaskRenderer
from .token_counter import TokenCounter


class ContextEngineInterface(Protocol):
    """Protocol defining the consumer-facing ContextEngine API."""

    async def build_prompt(
        self,
        user_id: str,
        persona: str,
        utterance: str | None = None,
        active_task: ActiveTask | None = None,
    ) -> str:
        """Build the system prompt for one turn."""
        ...

    async def format_history(
        self,
        messages: list[ChatMessage | dict[str, Any]],
        token_budget: int | None = None,
    ) -> list[dict[str, str]]:
        """Fit conversation history into a token budget."""
        ...

    async def add_memory(self, user_id: str, text: str, **kwargs: Any) -> Memory:
        """Store a memory about a user."""
        ...

    async def inject_context(
        self,
        user_id: str,
        type: ContextType | str,
        duration: ContextDuration | str,
        data: Any,
        **kwargs: Any,
    ) -> ContextItem:
        """Store a context item for a user."""
        ...


class ContextEngine:
    """Main engine facade.

    Provides:
    - Memory CRUD with tiers, decay, soft delete and per-user caps
    - Context item injection and lookup
    - Scoped relevance retrieval
    - Budgeted prompt assembly and history formatting
    - Background maintenance (sweeps and storage probe)

    Storage falls back to an in-process backend whenever SQLite is
    unreachable, including at startup.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        profile_provider: ProfileSummaryProvider | None = None,
        user_state: UserStateProvider | None = None,
        companion_state: CompanionStateProvider | None = None,
        action_catalog: ActionCatalog | None = None,
        text_generator: TextGenerator | None = None,
        embedder: Embedder | None = None,
    ):
        """Initialize engine.

        Args:
            config: Engine configuration (uses defaults if not provided)
            profile_provider: Source of user background summaries
            user_state: Source of directive, goals and interests
            companion_state: Source of the companion's own state
            action_catalog: Source of available actions
            text_generator: Auxiliary LLM for summaries
            embedder: Embedding provider (built from config if not provided)
        """
        self.config = config or EngineConfig()
        self.profile_provider = profile_provider
        self.user_state = user_state
        self.companion_state = companion_state
        self.action_catalog = action_catalog
        self.text_generator = text_generator
        self._embedder = embedder

        self._store: SQLiteStore | None = None
        self._router: StorageRouter | None = None
        self._memory_store: MemoryStore | None = None
        self._registry: ContextRegistry | None = None
        self._retriever: RelevanceRetriever | None = None
        self._assembler: ContextAssembler | None = None
        self._maintenance: MaintenanceScheduler | None = None
        self._initialized = False

        logger.info(
            f"ContextEngine created: sqlite_db_path="
            f"{self.config.storage.sqlite_db_path!r}, "
            f"embedding={self.config.embedding.provider}"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, start_maintenance: bool = False) -> None:
        """Open storage and wire components.

        A durable store that fails to open leaves the engine in FALLBACK
        mode; the maintenance probe switches back once it answers.
        """
        if self._initialized:
            return

        self._store = SQLiteStore(db_path=self.config.storage.sqlite_db_path)
        try:
            await self._store.initialize()
            mode = StorageMode.DURABLE
        except DURABLE_ERRORS as e:
            logger.warning(f"Durable store unavailable at startup: {e}")
            mode = StorageMode.FALLBACK

        self._router = StorageRouter(self._store, InMemoryBackend())
        if mode is StorageMode.FALLBACK:
            await self._router.guard.transition(StorageMode.DURABLE, mode)

        if self._embedder is None:
            self._embedder = create_embedder(self.config.embedding)

        index = SemanticIndex(self._store)
        self._memory_store = MemoryStore(
            self._router,
            index=index,
            embedder=self._embedder,
            config=self.config.memory,
        )
        self._registry = ContextRegistry(self._router, self.config.context)
        self._retriever = RelevanceRetriever(
            self._memory_store,
            self.config.retrieval,
            scorer=create_scorer(self.config.retrieval, self._embedder, index),
        )

        counter = TokenCounter()
        self._assembler = ContextAssembler(
            self._retriever,
            self._registry,
            self.config.prompt,
            token_counter=counter,
            profile_provider=self.profile_provider,
            user_state=self.user_state,
            companion_state=self.companion_state,
            action_catalog=self.action_catalog,
            task_renderer=TaskRenderer(
                self.text_generator, self.config.prompt.roleplay_recent_events
            ),
            history=HistoryFormatter(
                self._build_summarizer(), counter, self.config.history
            ),
        )
        self._maintenance = MaintenanceScheduler(
            self._memory_store,
            self._registry,
            self._router,
            self.config.maintenance,
            probe_interval=self.config.storage.probe_interval_seconds,
        )
        self._initialized = True
        logger.info(f"ContextEngine initialized (storage mode: {mode.value})")

        if start_maintenance and self.config.maintenance.enabled:
            self._maintenance.start()

    def _build_summarizer(self) -> HistorySummarizer:
        heuristic = HeuristicHistorySummarizer(self.config.history)
        if self.config.history.summarizer == "llm":
            if self.text_generator is not None:
                return LLMHistorySummarizer(self.text_generator, heuristic)
            logger.warning("LLM history summarizer requested without a generator")
        return heuristic

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def close(self) -> None:
        """Stop maintenance and close the SQLite connection."""
        if self._maintenance is not None:
            await self._maintenance.stop()
        if self._store is not None and self._store.is_connected:
            await self._store.close()
            logger.info("ContextEngine: SQLiteStore closed")
        self._initialized = False

    async def __aenter__(self) -> "ContextEngine":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def mode(self) -> StorageMode:
        if self._router is None:
            return StorageMode.DURABLE
        return self._router.mode

    @property
    def memory_store(self) -> MemoryStore:
        if self._memory_store is None:
            raise RuntimeError("ContextEngine not initialized. Call initialize() first.")
        return self._memory_store

    @property
    def registry(self) -> ContextRegistry:
        """Context registry, including the ``inject_*`` producer helpers."""
        if self._registry is None:
            raise RuntimeError("ContextEngine not initialized. Call initialize() first.")
        return self._registry

    # ------------------------------------------------------------------
    # Memories
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
    ) -> Memory:
        await self._ensure_initialized()
        return await self.memory_store.add_memory(
            user_id,
            text,
            tier=tier,
            source=source,
            metadata=metadata,
            importance=importance,
            category=category,
            activity_id=activity_id,
        )

    async def add_ai_generated_memory(
        self, user_id: str, text: str, **kwargs: Any
    ) -> Memory:
        await self._ensure_initialized()
        return await self.memory_store.add_ai_generated_memory(user_id, text, **kwargs)

    async def get_memory(self, memory_id: str) -> Memory | None:
        await self._ensure_initialized()
        return await self.memory_store.get_memory(memory_id)

    async def get_user_memories(
        self,
        user_id: str,
        tier: MemoryTier | None = None,
        include_deleted: bool = False,
    ) -> list[Memory]:
        await self._ensure_initialized()
        return await self.memory_store.get_user_memories(user_id, tier, include_deleted)

    async def update_memory(
        self,
        memory_id: str,
        text: str | None = None,
        metadata: dict[str, Any] | None = None,
        importance: float | None = None,
    ) -> Memory | None:
        await self._ensure_initialized()
        return await self.memory_store.update_memory(
            memory_id, text=text, metadata=metadata, importance=importance
        )

    async def soft_delete_memory(self, memory_id: str) -> bool:
        await self._ensure_initialized()
        return await self.memory_store.soft_delete_memory(memory_id)

    async def restore_memory(self, memory_id: str) -> bool:
        await self._ensure_initialized()
        return await self.memory_store.restore_memory(memory_id)

    async def delete_memory(self, memory_id: str) -> bool:
        await self._ensure_initialized()
        return await self.memory_store.delete_memory(memory_id)

    async def delete_all_user_memories(self, user_id: str) -> int:
        await self._ensure_initialized()
        return await self.memory_store.delete_all_user_memories(user_id)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def inject_context(
        self,
        user_id: str,
        type: ContextType | str,
        duration: ContextDuration | str,
        data: Any,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ContextItem:
        await self._ensure_initialized()
        return await self.registry.inject_context(
            user_id, type, duration, data, source=source, metadata=metadata
        )

    async def get_context(
        self,
        user_id: str,
        type: ContextType | str | None = None,
        only_active: bool = True,
    ) -> list[ContextItem]:
        await self._ensure_initialized()
        return await self.registry.get_context(user_id, type, only_active)

    async def update_context(
        self, context_id: str, patch: dict[str, Any]
    ) -> ContextItem | None:
        await self._ensure_initialized()
        return await self.registry.update_context(context_id, patch)

    async def deactivate_context(self, context_id: str) -> bool:
        await self._ensure_initialized()
        return await self.registry.deactivate_context(context_id)

    async def remove_context(self, context_id: str) -> bool:
        await self._ensure_initialized()
        return await self.registry.remove_context(context_id)

    # ------------------------------------------------------------------
    # Retrieval and assembly
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        user_id: str,
        query: str,
        limit: int | None = None,
        options: RetrievalOptions | None = None,
    ) -> list[RetrievalResult]:
        await self._ensure_initialized()
        return await self._retriever.retrieve(user_id, query, limit, options)

    async def assemble(
        self,
        user_id: str,
        persona: str,
        utterance: str | None = None,
        active_task: ActiveTask | None = None,
        now: datetime | None = None,
    ) -> AssembledPrompt:
        await self._ensure_initialized()
        return await self._assembler.assemble(
            user_id, persona, utterance, active_task, now
        )

    async def build_prompt(
        self,
        user_id: str,
        persona: str,
        utterance: str | None = None,
        active_task: ActiveTask | None = None,
        now: datetime | None = None,
    ) -> str:
        """Build the system prompt for one turn.

        Args:
            user_id: User the prompt is for
            persona: Base persona text
            utterance: Latest user utterance
            active_task: Ongoing activity, if any
            now: Reference time for the goals section

        Returns:
            Prompt text; never empty since the persona is always included
        """
        assembled = await self.assemble(user_id, persona, utterance, active_task, now)
        return assembled.text

    async def format_history(
        self,
        messages: list[ChatMessage | dict[str, Any]],
        token_budget: int | None = None,
    ) -> list[dict[str, str]]:
        await self._ensure_initialized()
        return await self._assembler.format_history(messages, token_budget)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_maintenance(self, now: datetime | None = None) -> dict[str, int | str]:
        """Run one maintenance cycle immediately."""
        await self._ensure_initialized()
        return await self._maintenance.run_once(now)
