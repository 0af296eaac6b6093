"""Helpers for interacting with OpenAI API"""
from openai import AsyncOpenAI
from offline_rag.config import local_llm
import numpy as np

import logging
logger = logging.getLogger(__name__)

_aoai: AsyncOpenAI | None = None


def get_client() -> AsyncOpenAI:
    """Return the shared async client, creating it on first use."""
    global _aoai
    if _aoai is None:
        _aoai = AsyncOpenAI(api_key=local_llm.OPENAI_API_KEY)
    return _aoai

# ==============================================
# Embedding utilities
# ==============================================
async def embed_text(text: str, model: str, dim: int) -> np.ndarray:
    """
    Return a float32 numpy vector for the given text using OpenAI embeddings.
    """
    if not text:
        return np.zeros(dim, dtype=np.float32)

    resp = await get_client().embeddings.create(model=model, input=text)
    vec = np.asarray(resp.data[0].embedding, dtype=np.float32)
    if vec.size != dim:
        raise ValueError(f"Unexpected embedding size {vec.size} != {dim} for model {model}")

    return vec
