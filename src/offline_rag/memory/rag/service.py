"""
Memory service
==============

Orchestrates ingestion (clean -> chunk -> embed -> persist -> index), query
answering through the relevance gate, warm start from the store and
operator diagnostics.

Per collection, writers (ingest, re-embed, clear) serialize on the
registry's writer lock and finish by swapping in a new index snapshot.
Queries never lock; they read whichever snapshot is current.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Callable, List, Optional, Sequence

from offline_rag.config import rag as rag_cfg
from .categories import category_from_source, detect as detect_categories
from .chunker import chunk_text
from .cleaner import clean_text, needs_cleaning
from .embeddings import Embedder, build_embedder, embed_or_zeros, embed_strict
from .errors import EmbeddingFailure, PersistenceFailure
from .gate import RelevanceGate
from .models import (
    CollectionStats,
    Fragment,
    IngestReport,
    NoContext,
    ScoreLine,
)
from .sql import db as _db
from .sql.repositories import FragmentsRepo
from .vector.snapshots import IndexRegistry
from .vector.vector_index import VectorIndex

logger = logging.getLogger(__name__)

Chunker = Callable[[str], List[str]]
Cleaner = Callable[[str], str]


class MemoryService:
    def __init__(
        self,
        repo: FragmentsRepo,
        embedder: Embedder,
        *,
        gate: Optional[RelevanceGate] = None,
        chunker: Optional[Chunker] = None,
        cleaner: Optional[Cleaner] = None,
        registry: Optional[IndexRegistry] = None,
    ):
        self.repo = repo
        self.embedder = embedder
        self.gate = gate or RelevanceGate(embedder)
        self.chunker = chunker or chunk_text
        if cleaner is None and rag_cfg.CLEAN_TEXT:
            cleaner = clean_text
        self.cleaner = cleaner
        self.registry = registry or IndexRegistry(embedder.dim)
        self._conn: sqlite3.Connection | None = None

    @classmethod
    def open(
        cls,
        path: Optional[str] = None,
        embedder: Optional[Embedder] = None,
        **kwargs,
    ) -> "MemoryService":
        """Connect to (and migrate) the SQLite store at ``path`` and build a service."""
        conn = _db.open_store(path)
        svc = cls(FragmentsRepo(conn, asyncio.Lock()), embedder or build_embedder(), **kwargs)
        svc._conn = conn
        return svc

    def close(self) -> None:
        if self._conn is not None:
            try:
                _db.wal_checkpoint_truncate(self._conn)
            except sqlite3.Error as e:
                logger.warning("WAL checkpoint failed on close: %s", e)
            self._conn.close()
            self._conn = None

    @property
    def dim(self) -> int:
        return self.embedder.dim

    # --- Ingestion ------------------------------------------------------------

    async def _embed_into(self, fragments: List[Fragment], report: IngestReport) -> None:
        """Embed in place; failed fragments stay pending and are recorded."""
        results = await asyncio.gather(
            *(embed_strict(self.embedder, f.text) for f in fragments),
            return_exceptions=True,
        )
        for frag, vec in zip(fragments, results):
            if isinstance(vec, BaseException):
                if not isinstance(vec, Exception):
                    raise vec
                logger.error(
                    "Embed failed (collection=%s source=%s idx=%s err=%s); stored as pending",
                    frag.collection_name, frag.source_name, frag.chunk_index, vec,
                )
                frag.embedding = None
                report.pending.append(frag.id)
                continue
            frag.embedding = vec
            frag.emb_model = self.embedder.model_id
            report.embedded += 1

    async def _prepare(
        self,
        source_name: str,
        raw_text: str,
        collection_name: str,
        category: Optional[str] = None,
    ) -> tuple[List[Fragment], IngestReport]:
        report = IngestReport(collection_name=collection_name, source_name=source_name)
        if self.cleaner is not None:
            if needs_cleaning(raw_text):
                logger.info("Removing text artifacts from %s before chunking", source_name)
            raw_text = self.cleaner(raw_text)
        label = category_from_source(source_name) if category is None else category
        chunks = self.chunker(raw_text)
        fragments = [
            Fragment(
                text=chunk,
                source_name=source_name,
                collection_name=collection_name,
                chunk_index=i,
                category=label,
            )
            for i, chunk in enumerate(chunks)
        ]
        report.fragments = len(fragments)
        if fragments:
            await self._embed_into(fragments, report)
        return fragments, report

    async def _commit(self, fragments: List[Fragment], report: IngestReport) -> None:
        """Persist and index; caller holds the collection's writer lock."""
        name = report.collection_name
        batch = await self.repo.save_batch(fragments)
        report.persisted = batch.succeeded_count
        report.persist_failed.extend(batch.failed)

        if not self.registry.has(name):
            # First touch since startup: the store already holds the new rows.
            await self._rebuild(name)
            return

        durable = set(batch.saved)
        fresh = [f for f in fragments if f.id in durable and f.embedding is not None]
        if fresh:
            self.registry.swap(name, self.registry.get(name).with_fragments(fresh))

    async def ingest_document(
        self,
        source_name: str,
        raw_text: str,
        collection_name: str,
        category: Optional[str] = None,
    ) -> IngestReport:
        """
        Chunk, embed and store one document, then refresh the collection index.

        Embedding and persistence failures are per fragment: they are listed
        in the report and never abort the rest of the batch. Re-ingesting the
        same source simply adds duplicate fragments.

        :param category: Topic label for every fragment; defaults to the
            source file name without its extension.
        """
        fragments, report = await self._prepare(source_name, raw_text, collection_name, category)
        if not fragments:
            logger.warning("No chunks extracted (collection=%s source=%s)", collection_name, source_name)
            return report

        async with self.registry.writer(collection_name):
            await self._commit(fragments, report)

        logger.info(
            "Ingested %s into %s: %d fragments, %d embedded, %d pending, %d persist failures",
            source_name, collection_name, report.fragments, report.embedded,
            len(report.pending), len(report.persist_failed),
        )
        return report

    async def reload_from_source(
        self,
        source_name: str,
        raw_text: str,
        collection_name: str,
        category: Optional[str] = None,
    ) -> IngestReport:
        """Replace the whole collection with the fragments of one document."""
        fragments, report = await self._prepare(source_name, raw_text, collection_name, category)
        async with self.registry.writer(collection_name):
            removed = await self.repo.clear(collection_name)
            self.registry.swap(collection_name, VectorIndex(collection_name, self.dim))
            logger.info("Cleared %d fragments from %s before reload", removed, collection_name)
            if fragments:
                await self._commit(fragments, report)
        return report

    # --- Index lifecycle ------------------------------------------------------

    async def _rebuild(self, collection_name: str) -> VectorIndex:
        fragments = await self.repo.load_all(collection_name)
        snapshot = VectorIndex(collection_name, self.dim, fragments)
        self.registry.swap(collection_name, snapshot)
        return snapshot

    async def warm_start(self, collection_name: str) -> int:
        """
        Build the collection's index from persisted vectors (no embedding calls).

        :returns: Number of fragments in the new index.
        :raises StoreCorrupted: If the collection cannot be read.
        """
        async with self.registry.writer(collection_name):
            snapshot = await self._rebuild(collection_name)
        logger.info(
            "Warm start %s: %d indexed, %d rejected",
            collection_name, len(snapshot), len(snapshot.rejected),
        )
        return len(snapshot)

    async def warm_start_all(self) -> dict[str, int]:
        return {
            name: await self.warm_start(name)
            for name in await self.repo.list_collections()
        }

    async def index_for(self, collection_name: str) -> VectorIndex:
        """Current snapshot, loading it from the store on first use."""
        if not self.registry.has(collection_name):
            await self.warm_start(collection_name)
        return self.registry.get(collection_name)

    async def reembed(self, collection_name: str, *, only_pending: bool = True) -> IngestReport:
        """
        Compute vectors again and swap in a fresh index.

        With ``only_pending`` (the maintenance default) only fragments without
        a vector are embedded; otherwise every fragment is, which is how a
        backend switch is migrated.
        """
        report = IngestReport(collection_name=collection_name, source_name="<reembed>")
        async with self.registry.writer(collection_name):
            targets = (
                await self.repo.load_pending(collection_name)
                if only_pending
                else await self.repo.load_all(collection_name)
            )
            report.fragments = len(targets)
            for frag in targets:
                try:
                    vec = await embed_strict(self.embedder, frag.text)
                except EmbeddingFailure as e:
                    logger.error("Re-embed failed (fragment_id=%s err=%s)", frag.id, e)
                    report.pending.append(frag.id)
                    continue
                report.embedded += 1
                try:
                    if await self.repo.update_embedding(
                        collection_name, frag.id, vec, self.embedder.model_id
                    ):
                        report.persisted += 1
                except PersistenceFailure as e:
                    report.persist_failed.append((frag.id, str(e)))
            await self._rebuild(collection_name)
        return report

    async def clear_collection(self, collection_name: str) -> int:
        async with self.registry.writer(collection_name):
            removed = await self.repo.clear(collection_name)
            self.registry.drop(collection_name)
        logger.info("Cleared collection %s (%d fragments)", collection_name, removed)
        return removed

    # --- Queries --------------------------------------------------------------

    async def answer_query(
        self,
        collection_name: str,
        query: str,
        *,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        categories: Optional[Sequence[str]] = None,
        detect: Optional[bool] = None,
    ) -> str | NoContext:
        """
        Composed context for ``query`` or :data:`~.models.NO_CONTEXT`.

        :param categories: Only consider fragments in these categories.
        :param detect: When no ``categories`` are given, narrow to the stored
            categories the query mentions (none mentioned means no filter).
            Defaults to ``rag.DETECT_CATEGORIES``.
        """
        index = await self.index_for(collection_name)
        detect = rag_cfg.DETECT_CATEGORIES if detect is None else detect
        if not categories and detect:
            categories = detect_categories(query, await self.categories(collection_name))
            if categories:
                logger.info("Query names categories %s (collection=%s)", categories, collection_name)
        return await self.gate.resolve_context(
            query, index, top_k=top_k, min_score=min_score, categories=categories
        )

    async def categories(self, collection_name: str) -> List[str]:
        """Distinct non-empty category labels stored in the collection."""
        return await self.repo.list_categories(collection_name)

    # --- Diagnostics ----------------------------------------------------------

    async def stats(self, collection_name: str) -> CollectionStats:
        index = self.registry.get(collection_name)
        return CollectionStats(
            collection_name=collection_name,
            total=await self.repo.count(collection_name),
            embedded=await self.repo.count_embedded(collection_name),
            indexed=len(index),
            rejected=len(index.rejected),
        )

    async def top_scores(self, collection_name: str, query: str, n: int = 10) -> List[ScoreLine]:
        """Raw best ``n`` scores for ``query``; ignores the threshold, changes nothing."""
        index = await self.index_for(collection_name)
        if not len(index) or n <= 0:
            return []
        qvec = await embed_or_zeros(self.embedder, query)
        return [
            ScoreLine(
                score=hit.score,
                source_name=hit.fragment.source_name,
                fragment_id=hit.fragment.id,
                preview=hit.fragment.text[:80].replace("\n", " "),
                category=hit.fragment.category,
            )
            for hit in index.scores(qvec)[:n]
        ]
