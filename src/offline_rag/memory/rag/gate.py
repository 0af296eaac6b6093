"""Relevance gate: threshold-enforced context composition."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from offline_rag.config import rag as rag_cfg
from .embeddings import Embedder, embed_or_zeros
from .models import NO_CONTEXT, NoContext, SearchHit
from .vector.vector_index import VectorIndex

logger = logging.getLogger(__name__)


def truncate_at_sentence(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars``, preferring the last sentence end in the final 30%."""
    if not text or len(text) <= max_chars:
        return text
    head = text[:max_chars]
    end = max(head.rfind(". "), head.rfind("? "), head.rfind("! "))
    if end > max_chars * 0.7:
        return head[: end + 1].strip()
    cut = head.rfind(" ")
    return (head[:cut] if cut > 0 else head).rstrip() + "..."


def compose_context(
    hits: List[SearchHit],
    *,
    include_sources: bool = True,
    max_chars_per_fragment: Optional[int] = None,
) -> str:
    """Join hit texts in the given (score-descending) order."""
    blocks: List[str] = []
    for hit in hits:
        text = hit.fragment.text
        if max_chars_per_fragment:
            text = truncate_at_sentence(text, max_chars_per_fragment)
        if include_sources:
            blocks.append(
                f"[Relevance: {hit.score:.3f}]\n[{hit.fragment.source_name}]\n{text}"
            )
        else:
            blocks.append(text)
    return "\n\n".join(blocks)


class RelevanceGate:
    """
    Turns a query into grounded context or :data:`NO_CONTEXT`.

    ``top_k`` and ``min_score`` default to the configured values and can be
    overridden per call.
    """

    def __init__(
        self,
        embedder: Embedder,
        *,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        include_sources: Optional[bool] = None,
        max_chars_per_fragment: Optional[int] = None,
    ):
        self.embedder = embedder
        self.top_k = rag_cfg.TOP_K if top_k is None else top_k
        self.min_score = rag_cfg.MIN_SCORE if min_score is None else min_score
        self.include_sources = (
            rag_cfg.INCLUDE_SOURCES if include_sources is None else include_sources
        )
        self.max_chars_per_fragment = (
            rag_cfg.MAX_CHARS_PER_FRAGMENT
            if max_chars_per_fragment is None
            else max_chars_per_fragment
        )

    async def search(
        self,
        query: str,
        index: VectorIndex,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        categories: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        top_k = self.top_k if top_k is None else top_k
        min_score = self.min_score if min_score is None else min_score

        if not query or not query.strip() or not len(index):
            return []

        qvec = await embed_or_zeros(self.embedder, query)
        # If the embedding failed (returned a zero vector), nothing can match
        if not np.any(qvec):
            logger.info("Empty/degenerate query embedding (collection=%s)", index.collection_name)
            return []

        return index.search(qvec, top_k=top_k, min_score=min_score, categories=categories)

    async def resolve_context(
        self,
        query: str,
        index: VectorIndex,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        categories: Optional[Sequence[str]] = None,
    ) -> str | NoContext:
        """
        Return the composed context for ``query`` or :data:`NO_CONTEXT`.

        An empty search result is always :data:`NO_CONTEXT`, never ``""``.
        A category filter that matches nothing is not widened.
        """
        hits = await self.search(
            query, index, top_k=top_k, min_score=min_score, categories=categories
        )
        if not hits:
            logger.info(
                "No fragments met min_score=%.3f (collection=%s size=%d categories=%s)",
                self.min_score if min_score is None else min_score,
                index.collection_name,
                len(index),
                list(categories or ()),
            )
            return NO_CONTEXT

        logger.info(
            "Found %d relevant fragments (collection=%s best=%.3f)",
            len(hits), index.collection_name, hits[0].score,
        )
        return compose_context(
            hits,
            include_sources=self.include_sources,
            max_chars_per_fragment=self.max_chars_per_fragment,
        )
