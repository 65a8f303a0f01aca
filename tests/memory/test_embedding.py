"""Tests for embedding helpers."""

import numpy as np
import pytest

from assistant_core.memory.embedding import (
    SentenceTransformerEmbedding,
    cosine_similarities,
    cosine_similarity,
    deserialize_embedding,
    serialize_embedding,
)


def test_serialized_embedding_is_float32_blob():
    blob = serialize_embedding([1.0, 0.5, -2.0])
    assert len(blob) == 12
    assert deserialize_embedding(blob) == [1.0, 0.5, -2.0]


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1.0, 0.0], [0.6, 0.8]) == pytest.approx(0.6)
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([], []) == 0.0


def test_cosine_similarities_handles_zero_rows():
    matrix = np.asarray([[1.0, 0.0], [0.0, 0.0], [0.0, 2.0]])
    scores = cosine_similarities([1.0, 0.0], matrix)
    assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0])


def test_encode_empty_batch_does_not_load_model():
    embedder = SentenceTransformerEmbedding()
    assert embedder.encode([]) == []
    assert embedder._model is None
