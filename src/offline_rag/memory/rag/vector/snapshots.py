"""Service-owned map from collection name to its current index snapshot.

Readers call :meth:`IndexRegistry.get` and work on the snapshot they got
back; it never changes under them. Writers hold :meth:`IndexRegistry.writer`
for the collection, build a new snapshot and :meth:`IndexRegistry.swap` it
in. Swapping is a single dict assignment, so readers take no lock.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List

from .vector_index import VectorIndex


class IndexRegistry:
    def __init__(self, dim: int):
        self.dim = dim
        self._snapshots: Dict[str, VectorIndex] = {}
        self._writers: Dict[str, asyncio.Lock] = {}

    def get(self, collection_name: str) -> VectorIndex:
        """Current snapshot, or an empty one for an unknown collection."""
        snap = self._snapshots.get(collection_name)
        if snap is None:
            return VectorIndex(collection_name, self.dim)
        return snap

    def has(self, collection_name: str) -> bool:
        return collection_name in self._snapshots

    def swap(self, collection_name: str, snapshot: VectorIndex) -> VectorIndex | None:
        """Install ``snapshot``; returns the one it replaced."""
        if snapshot.collection_name != collection_name:
            raise ValueError(
                f"Snapshot for {snapshot.collection_name!r} cannot serve {collection_name!r}"
            )
        previous = self._snapshots.get(collection_name)
        self._snapshots[collection_name] = snapshot
        return previous

    def drop(self, collection_name: str) -> None:
        self._snapshots.pop(collection_name, None)

    def writer(self, collection_name: str) -> asyncio.Lock:
        """Lock serializing writers (ingest, re-embed, clear) of one collection."""
        lock = self._writers.get(collection_name)
        if lock is None:
            lock = self._writers[collection_name] = asyncio.Lock()
        return lock

    def names(self) -> List[str]:
        return sorted(self._snapshots)
