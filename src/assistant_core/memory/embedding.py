"""Embedding providers.

``SentenceTransformerEmbedding`` lazy-loads the model on first use and runs
encoding in a worker thread so it never blocks the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import numpy as np
from loguru import logger

from ..config import EmbeddingConfig


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


class SentenceTransformerEmbedding:
    """Embedding provider backed by sentence-transformers.

    Features:
    - Lazy model loading (only when first embedding is requested)
    - Batch encoding for efficiency
    - Serialization helpers for SQLite BLOB storage
    """

    def __init__(self, config: EmbeddingConfig | None = None):
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
                "sentence-transformers is required for SentenceTransformerEmbedding. "
                "Install with: pip install 'assistant-core[embeddings]'"
            )

        logger.info(f"Loading embedding model: {self._config.model}")
        self._model = SentenceTransformer(
            self._config.model,
            trust_remote_code=self._config.trust_remote_code,
        )
        self._dimension = self._model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded: dim={self._dimension}")

    def encode(self, texts: list[str]) -> list[list[float]]:
        """Encode texts into normalized embedding vectors."""
        if not texts:
            return []

        self._ensure_model()
        embeddings: np.ndarray = self._model.encode(
            texts,
            batch_size=32,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        return embeddings.tolist()

    async def embed(self, text: str) -> list[float]:
        results = await asyncio.to_thread(self.encode, [text])
        return results[0] if results else []


def serialize_embedding(embedding: list[float]) -> bytes:
    """Pack an embedding as little-endian float32 for BLOB storage."""
    return np.asarray(embedding, dtype="<f4").tobytes()


def deserialize_embedding(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype="<f4").astype(float).tolist()


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity; 0.0 for mismatched or zero-length vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_similarities(query: list[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against each row of ``matrix``."""
    q = np.asarray(query, dtype=float)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, matrix @ q / denom, 0.0)
    return scores
