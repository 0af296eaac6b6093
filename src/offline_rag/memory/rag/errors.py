"""
Error taxonomy for RAG memory
=============================

Fragment-level failures (:class:`EmbeddingFailure`, :class:`PersistenceFailure`,
:class:`DimensionMismatch`) are absorbed by the caller and reported in
aggregate. :class:`StoreCorrupted` is collection-level and propagates.

"Nothing relevant" is not an error; see :data:`models.NO_CONTEXT`.
"""

from __future__ import annotations


class RagError(Exception):
    """Base class for RAG memory errors."""


class EmbeddingFailure(RagError):
    """The embedder could not produce a usable vector for a fragment."""


class PoolTimeout(EmbeddingFailure):
    """No model execution context became available within the timeout."""


class PersistenceFailure(RagError):
    """A store write failed for a single fragment."""

    def __init__(self, fragment_id: str, cause: BaseException | str):
        super().__init__(f"Failed to persist fragment {fragment_id}: {cause}")
        self.fragment_id = fragment_id
        self.cause = cause


class DimensionMismatch(RagError):
    """A stored vector's length disagrees with the collection's dimensionality."""

    def __init__(self, fragment_id: str, expected: int, actual: int):
        super().__init__(
            f"Fragment {fragment_id} has {actual} dims (expected {expected})"
        )
        self.fragment_id = fragment_id
        self.expected = expected
        self.actual = actual


class StoreCorrupted(RagError):
    """The fragment store for a collection cannot be read."""


__all__ = [
    "RagError",
    "EmbeddingFailure",
    "PoolTimeout",
    "PersistenceFailure",
    "DimensionMismatch",
    "StoreCorrupted",
]
