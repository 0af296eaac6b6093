"""
Repositories (SQL-only)
=======================
- No embedding logic here; pure CRUD and selects.
- Every method is one self-contained statement or transaction run in a
  worker thread; the lock is held only for that call.
"""

from __future__ import annotations
from typing import Iterable, List, Optional
import asyncio
import logging
import sqlite3
import time

import numpy as np

from ..embeddings import blake16, from_bytes, to_bytes
from ..errors import PersistenceFailure, StoreCorrupted
from ..models import BatchResult, Fragment

logger = logging.getLogger(__name__)

_COLUMNS = (
    "collection_name, id, source_name, category, chunk_index, content, "
    "content_hash, embedding, emb_model, emb_dim, created_at, last_embedded_ts, seq"
)


def _fragment_row(fragment: Fragment) -> tuple:
    emb = fragment.embedding
    return (
        fragment.collection_name,
        fragment.id,
        fragment.source_name,
        fragment.category,
        fragment.chunk_index,
        fragment.text,
        blake16(fragment.text),
        None if emb is None else to_bytes(emb),
        None if emb is None else fragment.emb_model,
        None if emb is None else int(emb.shape[0]),
        fragment.created_at,
        time.time() if emb is not None else 0.0,
    )


def _row_fragment(row: sqlite3.Row) -> Fragment:
    blob = row["embedding"]
    vec: Optional[np.ndarray] = None
    if blob:
        if len(blob) % 4:
            # Torn/foreign blob: surface as pending so maintenance re-embeds it.
            logger.warning(
                "Unreadable embedding blob for fragment %s (%d bytes); treating as pending",
                row["id"], len(blob),
            )
        else:
            vec = from_bytes(blob)
    return Fragment(
        text=row["content"],
        source_name=row["source_name"],
        collection_name=row["collection_name"],
        embedding=vec,
        id=row["id"],
        created_at=float(row["created_at"]),
        chunk_index=int(row["chunk_index"]),
        emb_model=row["emb_model"] if vec is not None else None,
        category=row["category"] or "",
        seq=int(row["seq"]),
    )


class FragmentsRepo:
    def __init__(self, conn: sqlite3.Connection, lock: asyncio.Lock):
        self.conn = conn
        self._lock = lock

    _UPSERT = f"""
        INSERT INTO fragments ({_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                (SELECT COALESCE(MAX(seq), 0) + 1 FROM fragments))
        ON CONFLICT(collection_name, id) DO UPDATE SET
          source_name=excluded.source_name,
          category=excluded.category,
          chunk_index=excluded.chunk_index,
          content=excluded.content,
          content_hash=excluded.content_hash,
          embedding=excluded.embedding,
          emb_model=excluded.emb_model,
          emb_dim=excluded.emb_dim,
          created_at=excluded.created_at,
          last_embedded_ts=excluded.last_embedded_ts
        RETURNING seq
    """

    async def save(self, fragment: Fragment) -> None:
        """
        Upsert one fragment (idempotent on ``(collection, id)``).

        :raises PersistenceFailure: If the write fails.
        """
        row = _fragment_row(fragment)

        def _run() -> int:
            with self.conn:
                return int(self.conn.execute(self._UPSERT, row).fetchone()[0])

        try:
            async with self._lock:
                fragment.seq = await asyncio.to_thread(_run)
        except sqlite3.Error as e:
            raise PersistenceFailure(fragment.id, e) from e

    async def save_batch(self, fragments: Iterable[Fragment]) -> BatchResult:
        """
        Persist many fragments, each in its own transaction.

        A failing fragment does not roll back the others; it is reported in
        :attr:`BatchResult.failed` as ``(fragment_id, error)``.
        """
        frags = list(fragments)
        rows = [(f, _fragment_row(f)) for f in frags]

        def _run() -> BatchResult:
            result = BatchResult()
            for frag, row in rows:
                try:
                    with self.conn:
                        seq = self.conn.execute(self._UPSERT, row).fetchone()[0]
                except sqlite3.Error as e:
                    result.failed.append((frag.id, str(e)))
                else:
                    frag.seq = int(seq)
                    result.saved.append(frag.id)
            return result

        async with self._lock:
            result = await asyncio.to_thread(_run)

        for fid, err in result.failed:
            logger.error("Persist failed (fragment_id=%s err=%s)", fid, err)
        return result

    async def load_all(self, collection_name: str) -> List[Fragment]:
        """
        Return every fragment of a collection, pending ones included.

        :raises StoreCorrupted: If the collection cannot be read at all.
        """
        sql = f"""
            SELECT {_COLUMNS} FROM fragments
            WHERE collection_name=?
            ORDER BY seq, rowid
        """

        def _query() -> List[Fragment]:
            return [_row_fragment(r) for r in self.conn.execute(sql, (collection_name,))]

        try:
            async with self._lock:
                return await asyncio.to_thread(_query)
        except sqlite3.DatabaseError as e:
            raise StoreCorrupted(f"Cannot read collection {collection_name!r}: {e}") from e

    async def load_pending(self, collection_name: str) -> List[Fragment]:
        sql = f"""
            SELECT {_COLUMNS} FROM fragments
            WHERE collection_name=? AND (embedding IS NULL OR length(embedding) % 4 != 0)
            ORDER BY seq, rowid
        """

        def _query() -> List[Fragment]:
            return [_row_fragment(r) for r in self.conn.execute(sql, (collection_name,))]

        async with self._lock:
            return await asyncio.to_thread(_query)

    async def update_embedding(
        self, collection_name: str, fid: str, vec: np.ndarray, model: str
    ) -> bool:
        """Replace a fragment's vector. Returns False if the fragment is gone."""
        sql = """
            UPDATE fragments
            SET embedding=?, emb_model=?, emb_dim=?, last_embedded_ts=?
            WHERE collection_name=? AND id=?
        """
        params = (to_bytes(vec), model, int(vec.shape[0]), time.time(), collection_name, fid)

        def _run() -> bool:
            with self.conn:
                cur = self.conn.execute(sql, params)
            return cur.rowcount > 0

        try:
            async with self._lock:
                return await asyncio.to_thread(_run)
        except sqlite3.Error as e:
            raise PersistenceFailure(fid, e) from e

    async def count(self, collection_name: str) -> int:
        sql = "SELECT COUNT(*) FROM fragments WHERE collection_name=?"

        def _query() -> int:
            return int(self.conn.execute(sql, (collection_name,)).fetchone()[0])

        async with self._lock:
            return await asyncio.to_thread(_query)

    async def count_embedded(self, collection_name: str) -> int:
        sql = "SELECT COUNT(*) FROM fragments WHERE collection_name=? AND embedding IS NOT NULL AND length(embedding) % 4 = 0"

        def _query() -> int:
            return int(self.conn.execute(sql, (collection_name,)).fetchone()[0])

        async with self._lock:
            return await asyncio.to_thread(_query)

    async def clear(self, collection_name: str) -> int:
        """Delete all fragments in a collection; returns rows removed."""
        sql = "DELETE FROM fragments WHERE collection_name=?"

        def _run() -> int:
            with self.conn:
                cur = self.conn.execute(sql, (collection_name,))
            return cur.rowcount

        async with self._lock:
            return await asyncio.to_thread(_run)

    async def list_collections(self) -> List[str]:
        sql = "SELECT DISTINCT collection_name FROM fragments ORDER BY collection_name"

        def _query() -> List[str]:
            return [r[0] for r in self.conn.execute(sql).fetchall()]

        async with self._lock:
            return await asyncio.to_thread(_query)

    async def list_categories(self, collection_name: str) -> List[str]:
        sql = """
            SELECT DISTINCT category FROM fragments
            WHERE collection_name=? AND category != ''
            ORDER BY category
        """

        def _query() -> List[str]:
            return [r[0] for r in self.conn.execute(sql, (collection_name,)).fetchall()]

        async with self._lock:
            return await asyncio.to_thread(_query)
