import asyncio
from types import SimpleNamespace

import numpy as np
import pytest

from offline_rag.memory.rag import embeddings
from offline_rag.memory.rag.embeddings import (
    Embedder,
    HashingEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    build_embedder,
    embed_or_zeros,
    embed_strict,
    from_bytes,
    to_bytes,
)
from offline_rag.memory.rag.errors import EmbeddingFailure
from offline_rag.memory.rag.pool import ModelPool
from offline_rag.memory.rag.vector import cosine_similarity


class StaticEmbedder(Embedder):
    model_id = "static"

    def __init__(self, vec, dim=4):
        self.vec = vec
        self.dim = dim

    async def embed(self, text):
        if isinstance(self.vec, Exception):
            raise self.vec
        return self.vec


def test_hashing_embedder_is_deterministic_and_normalised():
    emb = HashingEmbedder(64)
    a = emb.embed_sync("The quick brown fox")
    b = asyncio.run(emb.embed("the quick brown fox"))

    assert a.shape == (64,)
    assert a.dtype == np.float32
    assert np.array_equal(a, b)
    assert float(np.linalg.norm(a)) == pytest.approx(1.0, abs=1e-5)
    assert emb.model_id == "hashing-bow-64"


def test_hashing_embedder_shared_vocabulary_scores_higher():
    emb = HashingEmbedder(384)
    q = emb.embed_sync("how do I reset the router password")
    related = emb.embed_sync("To reset the router password, hold the reset button.")
    unrelated = emb.embed_sync("Bananas are rich in potassium.")

    assert cosine_similarity(q, related) > cosine_similarity(q, unrelated)


def test_hashing_embedder_blank_text_is_zero():
    assert not np.any(HashingEmbedder(16).embed_sync("   "))


def test_embed_strict_wraps_backend_errors():
    with pytest.raises(EmbeddingFailure):
        asyncio.run(embed_strict(StaticEmbedder(RuntimeError("server down")), "x"))


def test_embed_strict_rejects_zero_wrong_dim_and_nan():
    with pytest.raises(EmbeddingFailure):
        asyncio.run(embed_strict(StaticEmbedder(np.zeros(4)), "x"))
    with pytest.raises(EmbeddingFailure):
        asyncio.run(embed_strict(StaticEmbedder(np.ones(3)), "x"))
    with pytest.raises(EmbeddingFailure):
        asyncio.run(embed_strict(StaticEmbedder(np.array([1.0, np.nan, 0, 0])), "x"))


def test_embed_strict_returns_float32():
    vec = asyncio.run(embed_strict(StaticEmbedder([1, 2, 3, 4]), "x"))
    assert vec.dtype == np.float32
    assert vec.tolist() == [1.0, 2.0, 3.0, 4.0]


def test_embed_or_zeros_returns_sentinel_on_error():
    vec = asyncio.run(embed_or_zeros(StaticEmbedder(RuntimeError("boom")), "x"))
    assert vec.shape == (4,)
    assert not np.any(vec)


def test_build_embedder_backends(monkeypatch):
    monkeypatch.setattr(embeddings.rag, "EMB_DIM", 32)
    emb = build_embedder("hashing")
    assert isinstance(emb, HashingEmbedder)
    assert emb.dim == 32
    with pytest.raises(ValueError):
        build_embedder("word2vec")


def test_blob_bytes_are_little_endian_float32():
    vec = np.array([1.5, -2.0, 0.25], dtype=np.float32)
    blob = to_bytes(vec)
    assert len(blob) == 12
    assert blob == vec.astype("<f4").tobytes()
    assert from_bytes(blob).tolist() == [1.5, -2.0, 0.25]


def test_ollama_embedder_uses_pooled_session():
    class FakeSession:
        def __init__(self):
            self.calls = []

        async def embed(self, model, input):
            self.calls.append((model, input))
            return SimpleNamespace(embeddings=[[0.5, 0.5, 0.0, 0.0]])

    sessions = []

    def factory():
        sessions.append(FakeSession())
        return sessions[-1]

    emb = OllamaEmbedder("all-minilm", 4, ModelPool(factory, size=1), timeout=1)
    vec = asyncio.run(embed_strict(emb, "hello"))

    assert vec.tolist() == [0.5, 0.5, 0.0, 0.0]
    assert sessions[0].calls == [("all-minilm", "hello")]


def test_openai_embedder_checks_size(monkeypatch):
    from offline_rag.clients import oai

    async def create(model, input):
        return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])])

    monkeypatch.setattr(oai, "_aoai", SimpleNamespace(embeddings=SimpleNamespace(create=create)))

    assert asyncio.run(OpenAIEmbedder("text-embedding-3-small", 3).embed("hi")).shape == (3,)
    with pytest.raises(EmbeddingFailure):
        asyncio.run(embed_strict(OpenAIEmbedder("text-embedding-3-small", 4), "hi"))
