"""Integration tests for the ContextEngine facade."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from companion_context import ContextEngine, EngineConfig
from companion_context.history import HeuristicHistorySummarizer, LLMHistorySummarizer
from companion_context.models import ActiveTask, ContextType, MemoryTier, StorageMode, TaskType
from companion_context.retrieval import EmbeddingScorer

PERSONA = "You are Mira."


@pytest.fixture
async def engine(engine_config):
    engine = ContextEngine(engine_config)
    await engine.initialize()
    yield engine
    await engine.close()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_components_unavailable_before_initialize(engine_config):
    engine = ContextEngine(engine_config)
    with pytest.raises(RuntimeError):
        engine.memory_store
    with pytest.raises(RuntimeError):
        engine.registry


@pytest.mark.asyncio
async def test_lazy_initialization(engine_config):
    engine = ContextEngine(engine_config)
    try:
        memory = await engine.add_memory("u1", "Enjoys hiking")
        assert engine.mode is StorageMode.DURABLE
        assert (await engine.get_memory(memory.id)).text == "Enjoys hiking"
    finally:
        await engine.close()


@pytest.mark.asyncio
async def test_async_context_manager(engine_config):
    async with ContextEngine(engine_config) as engine:
        await engine.add_memory("u1", "Has a dog")
    assert engine._store.is_connected is False


@pytest.mark.asyncio
async def test_startup_falls_back_when_sqlite_unreachable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    config = EngineConfig(
        storage={"sqlite_db_path": str(blocker / "engine.db")},
        embedding={"provider": "placeholder", "dimension": 8},
    )
    async with ContextEngine(config) as engine:
        assert engine.mode is StorageMode.FALLBACK
        memory = await engine.add_memory("u1", "Kept in process")
        assert [m.id for m in await engine.get_user_memories("u1")] == [memory.id]
        counts = await engine.run_maintenance()
        assert counts["storage_mode"] == "fallback"


@pytest.mark.asyncio
async def test_summarizer_selection(engine_config):
    engine = ContextEngine(engine_config)
    assert isinstance(engine._build_summarizer(), HeuristicHistorySummarizer)

    llm_config = engine_config.model_copy(
        update={"history": engine_config.history.model_copy(update={"summarizer": "llm"})}
    )
    with_generator = ContextEngine(llm_config, text_generator=AsyncMock())
    assert isinstance(with_generator._build_summarizer(), LLMHistorySummarizer)
    without_generator = ContextEngine(llm_config)
    assert isinstance(without_generator._build_summarizer(), HeuristicHistorySummarizer)


@pytest.mark.asyncio
async def test_embedding_scorer_wired_from_config(engine_config):
    config = engine_config.model_copy(
        update={"retrieval": engine_config.retrieval.model_copy(update={"scorer": "embedding"})}
    )
    async with ContextEngine(config) as engine:
        assert isinstance(engine._retriever.scorer, EmbeddingScorer)
        assert engine._retriever.scorer._index is engine._memory_store._index


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_memory_lifecycle(engine):
    memory = await engine.add_memory(
        "u1", "Prefers tea over coffee", tier=MemoryTier.LONG, importance=6
    )
    await engine.update_memory(memory.id, importance=9)
    assert (await engine.get_memory(memory.id)).importance == 9

    assert await engine.soft_delete_memory(memory.id) is True
    assert await engine.get_user_memories("u1") == []
    assert await engine.restore_memory(memory.id) is True
    assert len(await engine.get_user_memories("u1")) == 1

    ai_memory = await engine.add_ai_generated_memory("u1", "Relaxes when talking about tea")
    assert ai_memory.metadata["is_ai_generated"] is True

    assert await engine.delete_memory(memory.id) is True
    assert await engine.delete_all_user_memories("u1") == 1


@pytest.mark.asyncio
async def test_context_lifecycle(engine):
    item = await engine.inject_context("u1", ContextType.CUSTOM, "long_term", "Moving house soon")
    assert [i.id for i in await engine.get_context("u1")] == [item.id]

    updated = await engine.update_context(item.id, {"metadata": {"confirmed": True}})
    assert updated.metadata == {"confirmed": True}

    assert await engine.deactivate_context(item.id) is True
    assert await engine.get_context("u1") == []
    assert len(await engine.get_context("u1", only_active=False)) == 1
    assert await engine.remove_context(item.id) is True


@pytest.mark.asyncio
async def test_build_prompt_end_to_end(engine_config):
    user_state = MagicMock()
    user_state.get_standing_directive = AsyncMock(return_value="Be playful")
    user_state.get_goals = AsyncMock(return_value=[])
    user_state.get_interests = AsyncMock(return_value=[{"topic": "chess", "level": 2}])

    async with ContextEngine(engine_config, user_state=user_state) as engine:
        await engine.add_memory("u1", "Learning the Sicilian defense", importance=8)
        await engine.registry.inject_user_emotion("u1", "excited", intensity=8)
        task = ActiveTask(id="chess-1", type=TaskType.GAME, name="Chess")
        await engine.add_memory(
            "u1", "Opened with e4 in this game", importance=5, activity_id="chess-1"
        )

        prompt = await engine.build_prompt("u1", PERSONA, "sicilian again?")
        assert prompt.startswith(PERSONA + "\n\n## What the user wants from you\nBe playful")
        assert "## Emotional Context\nUser appears to be feeling excited" in prompt
        assert "- Learning the Sicilian defense (Relevance:" in prompt
        assert "- chess (Level: 2)" in prompt

        scoped = await engine.assemble("u1", PERSONA, "e4", task)
        assert [r.memory.activity_id for r in scoped.retrieval] == ["chess-1"]
        assert scoped.section("active_task") is not None


@pytest.mark.asyncio
async def test_retrieve_and_format_history(engine):
    await engine.add_memory("u1", "Allergic to cats", importance=9)
    results = await engine.retrieve("u1", "cats")
    assert results[0].content == "Allergic to cats"

    messages = [{"role": "user", "content": "x" * 400}, {"role": "user", "content": "hi"}]
    formatted = await engine.format_history(messages, token_budget=10)
    assert formatted[0]["role"] == "system"
    assert formatted[-1] == {"role": "user", "content": "hi"}


@pytest.mark.asyncio
async def test_run_maintenance(engine):
    counts = await engine.run_maintenance()
    assert counts["storage_mode"] == "durable"
    assert counts["expired_memories"] == 0
