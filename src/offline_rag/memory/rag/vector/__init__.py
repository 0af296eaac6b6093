"""Vector index layer for RAG memory.

Immutable per-collection :class:`VectorIndex` snapshots and the
:class:`IndexRegistry` that swaps them in. Search is exact cosine similarity
over numpy arrays.
"""

from .vector_index import SCORE_TOLERANCE, VectorIndex, cosine_similarity, meets_threshold
from .snapshots import IndexRegistry

__all__ = [
    "SCORE_TOLERANCE",
    "VectorIndex",
    "cosine_similarity",
    "meets_threshold",
    "IndexRegistry",
]
