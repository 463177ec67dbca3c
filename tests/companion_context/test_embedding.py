"""Tests for embedding providers and the semantic index."""

import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from companion_context.config import EmbeddingConfig
from companion_context.embedding import (
    EmbeddingService,
    PlaceholderEmbedder,
    cosine_similarity,
    create_embedder,
    deserialize_embedding,
    serialize_embedding,
)
from companion_context.exceptions import StorageUnavailableError
from companion_context.models import Memory
from companion_context.semantic_index import SemanticIndex


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


def test_placeholder_is_deterministic_unit_vector():
    embedder = PlaceholderEmbedder(dimension=32)
    a = embedder.encode_single("hello")
    assert a == embedder.encode_single("hello")
    assert a != embedder.encode_single("goodbye")
    assert len(a) == 32
    assert np.linalg.norm(a) == pytest.approx(1.0, abs=1e-5)


def test_create_embedder_providers():
    assert create_embedder(EmbeddingConfig(provider="none")) is None
    assert isinstance(create_embedder(EmbeddingConfig(provider="local")), EmbeddingService)
    placeholder = create_embedder(EmbeddingConfig(provider="placeholder", dimension=12))
    assert isinstance(placeholder, PlaceholderEmbedder)
    assert placeholder.dimension == 12
    assert isinstance(create_embedder(EmbeddingConfig(provider="mystery")), PlaceholderEmbedder)


def test_embedding_service_loads_model_lazily(monkeypatch):
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = 3
    model.encode.return_value = np.array([[0.0, 1.0, 0.0]])
    factory = MagicMock(return_value=model)
    monkeypatch.setitem(
        sys.modules, "sentence_transformers", SimpleNamespace(SentenceTransformer=factory)
    )

    service = EmbeddingService(EmbeddingConfig(provider="local", model="tiny-model"))
    factory.assert_not_called()
    assert service.encode([]) == []

    assert service.encode_single("hi") == [0.0, 1.0, 0.0]
    service.encode_single("again")
    factory.assert_called_once_with("tiny-model", trust_remote_code=False)
    assert service.dimension == 3


# ---------------------------------------------------------------------------
# Vector helpers
# ---------------------------------------------------------------------------


def test_serialize_roundtrip_float32():
    vector = [0.5, -1.25, 3.0]
    blob = serialize_embedding(vector)
    assert len(blob) == 12
    assert deserialize_embedding(blob) == vector


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
    assert cosine_similarity([0, 0], [1, 0]) == 0.0
    assert cosine_similarity([], [1]) == 0.0


# ---------------------------------------------------------------------------
# SemanticIndex
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_semantic_index_search(sqlite_store):
    embedder = PlaceholderEmbedder(dimension=16)
    index = SemanticIndex(sqlite_store)
    texts = ["likes sushi", "plays violin", "runs marathons"]
    memories = [
        Memory(user_id="u1", text=t, embedding=embedder.encode_single(t)) for t in texts
    ]
    for memory in memories:
        await index.upsert(memory)
    await index.upsert(Memory(user_id="u1", text="no vector"))

    results = await index.search("u1", embedder.encode_single("plays violin"), limit=2)
    assert len(results) == 2
    assert results[0][0] == memories[1].id
    assert results[0][1] == pytest.approx(1.0, abs=1e-5)

    await index.set_deleted(memories[1].id, True)
    ids = [memory_id for memory_id, _ in await index.search("u1", [1.0] * 16)]
    assert memories[1].id not in ids


@pytest.mark.asyncio
async def test_semantic_index_without_store():
    index = SemanticIndex(None)
    with pytest.raises(StorageUnavailableError):
        await index.upsert(Memory(user_id="u1", text="x"))
