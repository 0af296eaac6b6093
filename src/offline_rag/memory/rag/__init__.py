"""
Public façade for RAG memory
===========================

Stable, async API for document recall. Import from here::

    from offline_rag.memory.rag import ingest_document, answer_query, NO_CONTEXT

The default :class:`MemoryService` is created on first use (not at import),
against the configured SQLite path and embedding backend.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Sequence

from offline_rag.config import core as core_cfg

from .errors import (
    DimensionMismatch,
    EmbeddingFailure,
    PersistenceFailure,
    PoolTimeout,
    RagError,
    StoreCorrupted,
)
from .models import (
    NO_CONTEXT,
    CollectionStats,
    Fragment,
    IngestReport,
    NoContext,
    ScoreLine,
    SearchHit,
)
from .service import MemoryService

# Limit the public surface (keeps star-imports clean)
__all__ = [
    "NO_CONTEXT",
    "NoContext",
    "Fragment",
    "SearchHit",
    "IngestReport",
    "CollectionStats",
    "ScoreLine",
    "MemoryService",
    "RagError",
    "EmbeddingFailure",
    "PoolTimeout",
    "PersistenceFailure",
    "DimensionMismatch",
    "StoreCorrupted",
    "get_service",
    "set_service",
    "close_service",
    "ingest_document",
    "answer_query",
    "warm_start",
    "warm_start_all",
    "stats",
    "top_scores",
]

# --- Internals -------------------------------------------------------------

_service: MemoryService | None = None


def get_service() -> MemoryService:
    """Return the process-wide service, opening the store on first call."""
    global _service
    if _service is None:
        _service = MemoryService.open()
    return _service


def set_service(service: MemoryService | None) -> None:
    """Replace the process-wide service (tests, embedding applications)."""
    global _service
    _service = service


def close_service() -> None:
    global _service
    if _service is not None:
        _service.close()
        _service = None


def _coll(collection_name: Optional[str]) -> str:
    return collection_name or core_cfg.DEFAULT_COLLECTION

# --- Public async-friendly API ----------------------------------------------

async def ingest_document(
    source_name: str,
    raw_text: str,
    collection_name: Optional[str] = None,
    category: Optional[str] = None,
) -> IngestReport:
    """
    Ingest one document into a collection.

    :param source_name: Provenance label (usually the file name).
    :param raw_text: Document text.
    :param collection_name: Target collection; defaults to ``core.DEFAULT_COLLECTION``.
    :param category: Topic label; defaults to the file name without extension.
    """
    return await get_service().ingest_document(
        source_name, raw_text, _coll(collection_name), category
    )


async def answer_query(
    query: str,
    collection_name: Optional[str] = None,
    *,
    top_k: Optional[int] = None,
    min_score: Optional[float] = None,
    categories: Optional[Sequence[str]] = None,
) -> str | NoContext:
    """Context for ``query`` or :data:`NO_CONTEXT` when nothing is relevant enough."""
    return await get_service().answer_query(
        _coll(collection_name), query, top_k=top_k, min_score=min_score, categories=categories
    )


async def warm_start(collection_name: Optional[str] = None) -> int:
    return await get_service().warm_start(_coll(collection_name))


async def warm_start_all() -> Dict[str, int]:
    return await get_service().warm_start_all()


async def stats(collection_name: Optional[str] = None) -> CollectionStats:
    return await get_service().stats(_coll(collection_name))


async def top_scores(
    query: str, collection_name: Optional[str] = None, n: int = 10
) -> List[ScoreLine]:
    return await get_service().top_scores(_coll(collection_name), query, n)
