"""
Embedding utilities
===================

Centralizes embedding logic so the rest of the codebase does not care
about model details (dimensionality, provider, etc.). Callers depend on
:class:`Embedder` only; which backend is active comes from configuration.

Changing backend changes vector semantics (and usually dimensionality), so
it is a migration: re-embed every collection afterwards.
"""

from __future__ import annotations
import abc
import hashlib
import math
import re
from collections import Counter

import numpy as np

from offline_rag.config import rag
from .errors import EmbeddingFailure
from .pool import ModelPool

import logging

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+", re.UNICODE)


class Embedder(abc.ABC):
    """Maps text to a fixed-length float32 vector."""

    model_id: str
    dim: int

    @abc.abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Return the embedding of ``text`` with shape ``(dim,)``."""


class HashingEmbedder(Embedder):
    """
    Statistical bag-of-words fallback that needs no model.

    Word unigrams and bigrams are hashed (BLAKE2b, so stable across runs and
    processes) into ``dim`` signed buckets, weighted by ``1 + log(tf)`` and
    L2-normalised. Texts sharing vocabulary land close together.
    """

    def __init__(self, dim: int = 384):
        if dim < 1:
            raise ValueError("dim must be positive")
        self.dim = dim
        self.model_id = f"hashing-bow-{dim}"

    def _features(self, text: str) -> Counter:
        words = _WORD_RE.findall((text or "").lower())
        feats = Counter(words)
        feats.update(f"{a} {b}" for a, b in zip(words, words[1:]))
        return feats

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "little")
        sign = 1.0 if value & 1 else -1.0
        return (value >> 1) % self.dim, sign

    def embed_sync(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dim, dtype=np.float32)
        for token, tf in self._features(text).items():
            idx, sign = self._bucket(token)
            vec[idx] += sign * (1.0 + math.log(tf))
        norm = float(np.linalg.norm(vec))
        if norm > 0:
            vec /= norm
        return vec

    async def embed(self, text: str) -> np.ndarray:
        return self.embed_sync(text)


class OllamaEmbedder(Embedder):
    """Neural embeddings from a local Ollama server via pooled clients."""

    def __init__(
        self,
        model_id: str,
        dim: int,
        pool: ModelPool | None = None,
        *,
        timeout: float | None = None,
    ):
        from offline_rag.clients import ollama as ollama_client

        self._client = ollama_client
        self.model_id = model_id
        self.dim = dim
        self.pool = pool or ModelPool(ollama_client.new_client, size=rag.POOL_SIZE)
        self.timeout = rag.POOL_TIMEOUT if timeout is None else timeout

    async def embed(self, text: str) -> np.ndarray:
        async with self.pool.acquire(timeout=self.timeout) as session:
            return await self._client.embed_text(text, self.model_id, session=session)


class OpenAIEmbedder(Embedder):
    """Hosted embeddings through the OpenAI API."""

    def __init__(self, model_id: str, dim: int):
        from offline_rag.clients import oai

        self._client = oai
        self.model_id = model_id
        self.dim = dim

    async def embed(self, text: str) -> np.ndarray:
        return await self._client.embed_text(text, self.model_id, self.dim)


def build_embedder(backend: str | None = None) -> Embedder:
    """
    Return the embedder selected by ``backend`` (defaults to ``rag.EMB_BACKEND``).

    :raises ValueError: For an unknown backend name.
    """
    name = (backend or rag.EMB_BACKEND).lower()
    if name == "hashing":
        return HashingEmbedder(rag.EMB_DIM)
    if name == "ollama":
        return OllamaEmbedder(rag.EMB_MODEL_ID, rag.EMB_DIM)
    if name == "openai":
        return OpenAIEmbedder(rag.EMB_MODEL_ID, rag.EMB_DIM)
    raise ValueError(f"Unknown embedding backend: {name!r}")


def _validate(vec, dim: int) -> np.ndarray:
    arr = np.asarray(vec, dtype=np.float32).reshape(-1)
    if arr.shape[0] != dim:
        raise EmbeddingFailure(f"Expected embedding of dim {dim}, got {arr.shape[0]}")
    if not np.all(np.isfinite(arr)):
        raise EmbeddingFailure("Embedding contains non-finite values")
    return arr


async def embed_strict(embedder: Embedder, text: str) -> np.ndarray:
    """
    Embed ``text`` for storage.

    :raises EmbeddingFailure: On backend errors, wrong dimensionality,
        non-finite values or an all-zero (sentinel) vector.
    """
    try:
        vec = await embedder.embed(text)
    except EmbeddingFailure:
        raise
    except Exception as e:
        raise EmbeddingFailure(f"{type(e).__name__}: {e}") from e

    arr = _validate(vec, embedder.dim)
    if not np.any(arr):
        raise EmbeddingFailure("Embedder returned a zero vector")
    return arr


async def embed_or_zeros(embedder: Embedder, text: str) -> np.ndarray:
    """
    Return embedding vector for ``text``.

    :param text: Input string to embed.
    :returns: ``np.ndarray`` of shape ``(dim,)``. On error returns zeros.
    """
    try:
        return _validate(await embedder.embed(text), embedder.dim)
    except Exception as e:
        logger.error(f"Error embedding text: {e}. Defaulting to zeros vector.")
        return np.zeros((embedder.dim,), dtype=np.float32)


def to_bytes(vec: np.ndarray) -> bytes:
    """Serialize an embedding array to raw bytes."""
    return np.asarray(vec, dtype="<f4").tobytes()


def from_bytes(blob: bytes) -> np.ndarray:
    """Deserialize raw bytes into a ``np.ndarray`` embedding."""
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def blake16(s: str) -> str:
    """Return 16-byte hex digest of ``s`` using BLAKE2b."""
    return hashlib.blake2b((s or "").encode("utf-8"), digest_size=16).hexdigest()
