"""Dataclass models for RAG memory.

A :class:`Fragment` is one chunk of a source document plus its embedding.
``embedding is None`` means the fragment is *pending* (not embedded yet);
otherwise it holds a float32 vector of the collection's dimensionality.
``category`` is a free-form topic label used to narrow searches; ``seq`` is
the store-wide append position assigned when the fragment is first saved.

Queries resolve to either a composed context string or :data:`NO_CONTEXT`.
Compare with ``is``::

    ctx = await service.answer_query("manuals", "how do I reset it?")
    if ctx is NO_CONTEXT:
        ...
"""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np


class NoContext(enum.Enum):
    """Outcome signalling that nothing met the relevance threshold."""

    NO_CONTEXT = "no-context"

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return "NO_CONTEXT"


NO_CONTEXT = NoContext.NO_CONTEXT


def new_fragment_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class Fragment:
    """One stored chunk of a source document."""

    text: str
    source_name: str
    collection_name: str
    embedding: Optional[np.ndarray] = None
    id: str = field(default_factory=new_fragment_id)
    created_at: float = field(default_factory=time.time)
    chunk_index: int = 0
    emb_model: Optional[str] = None
    category: str = ""
    seq: int = 0

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None

    @property
    def dim(self) -> int:
        return 0 if self.embedding is None else int(self.embedding.shape[0])


@dataclass(slots=True, frozen=True)
class SearchHit:
    fragment: Fragment
    score: float


@dataclass(slots=True)
class BatchResult:
    """Outcome of :meth:`FragmentsRepo.save_batch`."""

    saved: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.saved)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


@dataclass(slots=True)
class IngestReport:
    """Per-document ingestion summary (partial success is normal)."""

    collection_name: str
    source_name: str
    fragments: int = 0
    embedded: int = 0
    pending: List[str] = field(default_factory=list)
    persisted: int = 0
    persist_failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.pending and not self.persist_failed


@dataclass(slots=True, frozen=True)
class CollectionStats:
    collection_name: str
    total: int
    embedded: int
    indexed: int
    rejected: int

    @property
    def pending(self) -> int:
        return self.total - self.embedded


@dataclass(slots=True, frozen=True)
class ScoreLine:
    """One row of the diagnostics score listing."""

    score: float
    source_name: str
    fragment_id: str
    preview: str
    category: str = ""
