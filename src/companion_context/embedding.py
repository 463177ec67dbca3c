"""Embedding providers.

The engine only depends on the :class:`Embedder` protocol (``text -> vector``).
Two providers ship with it:

- ``PlaceholderEmbedder``: deterministic hash-seeded vectors, no model needed
- ``EmbeddingService``: sentence-transformers, loaded lazily on first use
"""

from __future__ import annotations

import hashlib
import struct
from typing import Protocol

import numpy as np
from loguru import logger

from .config import EmbeddingConfig


class Embedder(Protocol):
    """Anything that maps text to a fixed-size vector."""

    @property
    def dimension(self) -> int: ...

    def encode_single(self, text: str) -> list[float]: ...


class PlaceholderEmbedder:
    """Deterministic stand-in vectors seeded from the text hash.

    Identical texts map to identical unit vectors. The vectors carry no
    semantic meaning.
    """

    def __init__(self, dimension: int = 384):
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def encode_single(self, text: str) -> list[float]:
        digest = hashlib.blake2b(text.encode("utf-8"), digest_size=8).digest()
        rng = np.random.default_rng(int.from_bytes(digest, "little"))
        vector = rng.standard_normal(self._dimension)
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.astype(np.float32).tolist()


class EmbeddingService:
    """Embedding service using sentence-transformers.

    Features:
    - Lazy model loading (only when first embedding is requested)
    - Batch encoding for efficiency
    """

    def __init__(self, config: EmbeddingConfig | None = None):
        """Initialize embedding service.

        Args:
            config: Embedding configuration
        """
        self._config = config or EmbeddingConfig()
        self._model = None
        self._dimension = self._config.dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _ensure_model(self) -> None:
        """Lazy-load the sentence-transformers model."""
        if self._model is not None:
            return

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers is required for the 'local' embedding "
                "provider. Install with: pip install companion-context[embeddings]"
            )

        logger.info(f"Loading embedding model: {self._config.model}")
        self._model = SentenceTransformer(
            self._config.model,
            trust_remote_code=self._config.trust_remote_code,
        )
        self._dimension = self._model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded: dim={self._dimension}")

    def encode(self, texts: list[str]) -> list[list[float]]:
        """Encode texts into normalized embedding vectors.

        Args:
            texts: List of text strings to encode

        Returns:
            List of embedding vectors (each a list of floats)
        """
        if not texts:
            return []

        self._ensure_model()

        embeddings: np.ndarray = self._model.encode(
            texts, batch_size=32, show_progress_bar=False,
            normalize_embeddings=True,
        )
        return embeddings.tolist()

    def encode_single(self, text: str) -> list[float]:
        results = self.encode([text])
        return results[0] if results else []


def create_embedder(config: EmbeddingConfig | None = None) -> Embedder | None:
    """Build the configured embedder, or None when embeddings are disabled."""
    config = config or EmbeddingConfig()
    if config.provider == "none":
        return None
    if config.provider == "local":
        return EmbeddingService(config)
    if config.provider != "placeholder":
        logger.warning(
            f"Unknown embedding provider {config.provider!r}, using placeholder"
        )
    return PlaceholderEmbedder(config.dimension)


def serialize_embedding(embedding: list[float]) -> bytes:
    """Pack an embedding as little-endian float32 for SQLite BLOB storage."""
    return struct.pack(f"<{len(embedding)}f", *embedding)


def deserialize_embedding(blob: bytes) -> list[float]:
    """Unpack a float32 BLOB written by :func:`serialize_embedding`."""
    count = len(blob) // 4
    return list(struct.unpack(f"<{count}f", blob))


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)
