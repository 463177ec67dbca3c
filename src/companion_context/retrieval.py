"""Relevance retrieval over a user's memories.

Pipeline: candidates -> activity scope filter -> score -> threshold -> rank.

The score is a sum of
- a pluggable relevance term (keyword overlap by default, or embedding
  similarity),
- importance / 20,
- a bonus for activity-summary memories,
- a boost for memories tagged with the active task.

When a task scope is set, memories tagged with a different task are
halved instead; activity summaries are exempt. The scope filter, when on,
drops those memories before scoring.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

from loguru import logger
from pydantic import BaseModel

from .config import RetrievalConfig
from .embedding import Embedder, cosine_similarity
from .memory_store import MemoryStore
from .models import Memory, RetrievalResult
from .semantic_index import SemanticIndex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetrievalOptions(BaseModel):
    """Per-call retrieval overrides. None falls back to RetrievalConfig."""

    activity_scope_id: str | None = None
    filter_by_activity: bool | None = None
    include_deleted: bool = False
    score_threshold: float | None = None
    activity_boost: float | None = None


class RelevanceScorer(Protocol):
    """Computes the query-relevance term of a memory's score.

    ``prepare`` runs once per retrieval before any ``relevance`` call.
    """

    async def prepare(self, user_id: str, query: str) -> None: ...

    def relevance(self, query: str, memory: Memory) -> float: ...


class KeywordScorer:
    """Adds ``weight`` for each query token found in the memory text.

    Tokens shorter than ``min_length`` characters are ignored.
    """

    def __init__(self, weight: float = 0.2, min_length: int = 4):
        self.weight = weight
        self.min_length = min_length

    async def prepare(self, user_id: str, query: str) -> None:
        return None

    def tokens(self, query: str) -> list[str]:
        return [t for t in query.lower().split() if len(t) >= self.min_length]

    def relevance(self, query: str, memory: Memory) -> float:
        text = memory.text.lower()
        return sum(self.weight for token in self.tokens(query) if token in text)


class EmbeddingScorer:
    """Cosine similarity between the query and memory embeddings, weighted.

    With a SemanticIndex, similarities come from one index search per
    retrieval. Memories the index does not return (soft-deleted, or the
    index is unreachable) are compared against their own stored vector.
    """

    def __init__(
        self,
        embedder: Embedder,
        weight: float = 0.6,
        index: SemanticIndex | None = None,
    ):
        self._embedder = embedder
        self.weight = weight
        self._index = index
        self._similarities: dict[str, float] = {}
        self._cached_query: str | None = None
        self._cached_vector: list[float] | None = None

    def _query_vector(self, query: str) -> list[float] | None:
        if query != self._cached_query:
            try:
                self._cached_vector = self._embedder.encode_single(query)
            except Exception as e:
                logger.warning(f"Query embedding failed: {e}")
                self._cached_vector = None
            self._cached_query = query
        return self._cached_vector

    async def prepare(self, user_id: str, query: str) -> None:
        self._similarities = {}
        if self._index is None or not query.strip():
            return
        vector = self._query_vector(query)
        if not vector:
            return
        try:
            hits = await self._index.search(user_id, vector, limit=None)
        except Exception as e:
            logger.warning(f"Semantic index search failed, using stored vectors: {e}")
            return
        self._similarities = dict(hits)

    def relevance(self, query: str, memory: Memory) -> float:
        if not query.strip():
            return 0.0
        similarity = self._similarities.get(memory.id)
        if similarity is None:
            if not memory.embedding:
                return 0.0
            vector = self._query_vector(query)
            if not vector:
                return 0.0
            similarity = cosine_similarity(vector, memory.embedding)
        return max(0.0, similarity) * self.weight


def create_scorer(
    config: RetrievalConfig,
    embedder: Embedder | None = None,
    index: SemanticIndex | None = None,
) -> RelevanceScorer:
    """Build the relevance scorer named by ``config.scorer``."""
    if config.scorer == "embedding":
        if embedder is not None:
            return EmbeddingScorer(embedder, config.embedding_weight, index)
        logger.warning("Embedding scorer requested without an embedder, using keywords")
    return KeywordScorer(config.keyword_weight, config.min_keyword_length)


class RelevanceRetriever:
    """Scores and ranks memories against the latest utterance."""

    RECENT_WINDOW = timedelta(hours=1)

    def __init__(
        self,
        memory_store: MemoryStore,
        config: RetrievalConfig | None = None,
        scorer: RelevanceScorer | None = None,
    ):
        """Initialize retriever.

        Args:
            memory_store: Source of candidate memories
            config: Retrieval configuration
            scorer: Relevance term provider (defaults to KeywordScorer)
        """
        self._store = memory_store
        self.config = config or RetrievalConfig()
        self.scorer = scorer or KeywordScorer(
            self.config.keyword_weight, self.config.min_keyword_length
        )

    async def retrieve(
        self,
        user_id: str,
        query: str,
        limit: int | None = None,
        options: RetrievalOptions | None = None,
    ) -> list[RetrievalResult]:
        """Retrieve the memories most relevant to ``query``.

        Args:
            user_id: Owner of the memories
            query: Latest utterance (may be empty)
            limit: Maximum number of results (defaults to config)
            options: Scope and threshold overrides

        Returns:
            Results above the threshold, best first
        """
        options = options or RetrievalOptions()
        limit = limit if limit is not None else self.config.default_limit
        scope = options.activity_scope_id
        filtering = (
            options.filter_by_activity
            if options.filter_by_activity is not None
            else self.config.filter_by_activity
        )
        threshold = (
            options.score_threshold
            if options.score_threshold is not None
            else self.config.score_threshold
        )
        boost = (
            options.activity_boost
            if options.activity_boost is not None
            else self.config.activity_boost
        )

        candidates = await self._candidates(user_id, options.include_deleted)
        if not candidates:
            return []

        if filtering:
            candidates = [m for m in candidates if self._in_scope(m, scope)]

        await self.scorer.prepare(user_id, query or "")
        results: list[RetrievalResult] = []
        for memory in candidates:
            score = self._score(memory, query or "", scope, boost)
            if score > threshold:
                results.append(RetrievalResult(memory=memory, score=score))

        results.sort(key=lambda r: r.memory.created_at, reverse=True)
        results.sort(key=lambda r: r.score, reverse=True)
        results = results[:limit]

        await self._record_access(results)

        logger.debug(
            f"Retrieved {len(results)}/{len(candidates)} memories for {user_id} "
            f"(scope={scope}, filter={filtering})"
        )
        return results

    async def activity_memories(
        self,
        user_id: str,
        activity_id: str,
        query: str = "",
        limit: int = 10,
        now: datetime | None = None,
    ) -> list[RetrievalResult]:
        """Rank memories tagged with one activity.

        Looks at the ``2 * limit`` most recent tagged memories; recent ones
        (created within the last hour) get a small bonus.
        """
        now = now or _utcnow()
        tagged = [
            m
            for m in await self._store.list_candidates(user_id, now=now)
            if m.activity_id == activity_id
        ]
        tagged.sort(key=lambda m: m.created_at, reverse=True)
        tagged = tagged[: limit * 2]

        tokens = [t for t in query.lower().split() if len(t) > 2]
        results: list[RetrievalResult] = []
        for memory in tagged:
            text = memory.text.lower()
            score = sum(self.config.keyword_weight for t in tokens if t in text)
            score += memory.importance / 20
            if now - memory.created_at < self.RECENT_WINDOW:
                score += 0.1
            if score > 0.1:
                results.append(RetrievalResult(memory=memory, score=score))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _candidates(self, user_id: str, include_deleted: bool) -> list[Memory]:
        """Unexpired memories of the user, deduplicated by id.

        Activity-summary memories belong to the user's own set, so the
        candidate union collapses into a single listing.
        """
        seen: set[str] = set()
        candidates: list[Memory] = []
        for memory in await self._store.list_candidates(
            user_id, include_deleted=include_deleted
        ):
            if memory.id not in seen:
                seen.add(memory.id)
                candidates.append(memory)
        return candidates

    @staticmethod
    def _in_scope(memory: Memory, scope: str | None) -> bool:
        if memory.is_activity_summary:
            return True
        if scope:
            return memory.activity_id == scope
        return memory.activity_id is None

    def _score(
        self,
        memory: Memory,
        query: str,
        scope: str | None,
        boost: float,
    ) -> float:
        score = self.scorer.relevance(query, memory)
        score += memory.importance / 20
        if memory.is_activity_summary:
            score += self.config.summary_source_bonus

        if scope and memory.activity_id == scope:
            score += boost
        elif (
            scope
            and memory.activity_id
            and not memory.is_activity_summary
        ):
            score *= self.config.cross_activity_penalty
        return score

    async def _record_access(self, results: list[RetrievalResult]) -> None:
        for result in results:
            try:
                await self._store.record_access(result.id)
            except Exception as e:
                logger.warning(f"Failed to record access for memory {result.id}: {e}")
