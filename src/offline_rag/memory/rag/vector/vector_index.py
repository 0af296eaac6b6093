"""In-memory vector index over one collection's fragments.

A :class:`VectorIndex` is an immutable snapshot: it is built once from a
list of fragments and never mutated. Updates produce a new snapshot via
:meth:`VectorIndex.with_fragments`, which the owner swaps in atomically, so
readers always see a complete index.

Search is an exact linear scan (``O(N·D)``) with cosine similarity.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..categories import matches as category_matches
from ..errors import DimensionMismatch
from ..models import Fragment, SearchHit

logger = logging.getLogger(__name__)

SCORE_TOLERANCE = 1e-6


def meets_threshold(score, min_score: float):
    """``score >= min_score`` allowing for float32 rounding; works on arrays too."""
    return score >= min_score - SCORE_TOLERANCE


def cosine_similarity(a, b) -> float:
    """
    Cosine of the angle between ``a`` and ``b``.

    Returns ``0.0`` when either vector has zero magnitude.

    :raises ValueError: If the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} != {vb.shape[0]}")
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


class VectorIndex:
    """Immutable snapshot of a collection's embedded fragments."""

    __slots__ = ("collection_name", "dim", "_fragments", "_unit", "rejected")

    def __init__(
        self,
        collection_name: str,
        dim: int,
        fragments: Iterable[Fragment] = (),
    ):
        self.collection_name = collection_name
        self.dim = dim
        self.rejected: Tuple[DimensionMismatch, ...] = ()

        kept: List[Fragment] = []
        rejected: List[DimensionMismatch] = []
        for frag in fragments:
            if frag.embedding is None:
                continue
            if frag.dim != dim:
                err = DimensionMismatch(frag.id, dim, frag.dim)
                logger.warning(
                    "Excluding fragment from index (collection=%s %s)", collection_name, err
                )
                rejected.append(err)
                continue
            kept.append(frag)

        self._fragments: Tuple[Fragment, ...] = tuple(kept)
        self.rejected = tuple(rejected)

        if kept:
            mat = np.vstack([f.embedding for f in kept]).astype(np.float32)
            np.nan_to_num(mat, copy=False)
            norms = np.linalg.norm(mat, axis=1, keepdims=True)
            # Zero rows stay zero so they score 0 against everything.
            np.divide(mat, norms, out=mat, where=norms > 0)
        else:
            mat = np.zeros((0, dim), dtype=np.float32)
        mat.setflags(write=False)
        self._unit = mat

    def __len__(self) -> int:
        return len(self._fragments)

    @property
    def fragments(self) -> Sequence[Fragment]:
        return self._fragments

    def with_fragments(self, fragments: Iterable[Fragment]) -> "VectorIndex":
        """Return a new snapshot with ``fragments`` appended after the current ones."""
        new = VectorIndex(self.collection_name, self.dim, fragments)
        merged = VectorIndex.__new__(VectorIndex)
        merged.collection_name = self.collection_name
        merged.dim = self.dim
        merged._fragments = self._fragments + new._fragments
        merged.rejected = self.rejected + new.rejected
        unit = np.vstack([self._unit, new._unit]) if len(new) else self._unit.copy()
        unit.setflags(write=False)
        merged._unit = unit
        return merged

    def _raw_scores(self, query_vec) -> np.ndarray:
        q = np.asarray(query_vec, dtype=np.float32).reshape(-1)
        if q.shape[0] != self.dim:
            raise DimensionMismatch("<query>", self.dim, q.shape[0])
        if not len(self._fragments):
            return np.zeros(0, dtype=np.float64)
        q = np.nan_to_num(q)
        qn = float(np.linalg.norm(q))
        if qn == 0.0:
            return np.zeros(len(self._fragments), dtype=np.float64)
        return (self._unit @ (q / qn)).astype(np.float64)

    def scores(self, query_vec) -> List[SearchHit]:
        """Every fragment ranked by score (no threshold, no truncation)."""
        raw = self._raw_scores(query_vec)
        order = np.argsort(-raw, kind="stable")
        return [SearchHit(self._fragments[i], float(raw[i])) for i in order]

    def _category_mask(self, wanted: Sequence[str]) -> np.ndarray:
        return np.fromiter(
            (category_matches(f.category, wanted) for f in self._fragments),
            dtype=bool,
            count=len(self._fragments),
        )

    def search(
        self,
        query_vec,
        top_k: int = 5,
        min_score: float = 0.5,
        categories: Optional[Sequence[str]] = None,
    ) -> List[SearchHit]:
        """
        Return up to ``top_k`` fragments scoring at least ``min_score``.

        Ordered by score descending; equal scores keep insertion order.
        An empty index or no qualifying fragment yields ``[]``. With
        ``categories``, only fragments whose category matches one of them
        are considered.
        """
        if top_k <= 0:
            return []
        raw = self._raw_scores(query_vec)
        if not raw.size:
            return []
        keep = meets_threshold(raw, min_score)
        if categories:
            keep &= self._category_mask(categories)
        qualifying = np.flatnonzero(keep)
        if not qualifying.size:
            return []
        order = qualifying[np.argsort(-raw[qualifying], kind="stable")]
        return [SearchHit(self._fragments[i], float(raw[i])) for i in order[:top_k]]
