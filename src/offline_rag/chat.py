"""Answer questions from a collection, refusing when nothing relevant is stored."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from offline_rag.config import core
from offline_rag.clients import ollama
from offline_rag.memory.rag import NO_CONTEXT, MemoryService

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You answer questions using ONLY the context below.
If the context does not contain the answer, say that you don't know.
Do not use outside knowledge.

### Context
{context}"""


def build_messages(context: str, question: str) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT.format(context=context)},
        {"role": "user", "content": question},
    ]


async def respond(
    service: MemoryService,
    collection_name: str,
    question: str,
    *,
    top_k: Optional[int] = None,
    min_score: Optional[float] = None,
    categories: Optional[Sequence[str]] = None,
    detect: Optional[bool] = None,
) -> str:
    """
    Grounded reply to ``question``.

    Returns ``core.REFUSAL_MESSAGE`` without calling the model when no stored
    fragment is relevant enough. ``top_k``, ``min_score``, ``categories`` and
    ``detect`` override the gate for this question only.
    """
    context = await service.answer_query(
        collection_name,
        question,
        top_k=top_k,
        min_score=min_score,
        categories=categories,
        detect=detect,
    )
    if context is NO_CONTEXT:
        logger.info("Refusing: no relevant context (collection=%s)", collection_name)
        return core.REFUSAL_MESSAGE

    return await ollama.chat(build_messages(context, question))
