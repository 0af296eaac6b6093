"""
Pooled model execution contexts
===============================

A heavy model is shared by handing out a bounded number of execution
contexts (e.g. client sessions to a local inference server). A context is
held exclusively for one call and always returned, even on failure::

    pool = ModelPool(lambda: AsyncClient(host=url), size=3)
    async with pool.acquire(timeout=30) as client:
        await client.embed(model=..., input=text)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Generic, List, TypeVar

from .errors import PoolTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ModelPool(Generic[T]):
    """Bounded pool of lazily created, reusable contexts."""

    def __init__(self, factory: Callable[[], T], size: int = 3):
        if size < 1:
            raise ValueError("Pool must hold at least 1 context")
        self._factory = factory
        self._size = size
        self._idle: List[T] = []
        self._created = 0
        self._sem: asyncio.Semaphore | None = None

    @property
    def size(self) -> int:
        return self._size

    @property
    def available(self) -> int:
        """Number of contexts that could be acquired right now."""
        if self._sem is None:
            return self._size
        # Semaphore has no public counter; idle + never-created covers it.
        return len(self._idle) + (self._size - self._created)

    def _semaphore(self) -> asyncio.Semaphore:
        # Created on first use so the pool binds to the running loop.
        if self._sem is None:
            self._sem = asyncio.Semaphore(self._size)
        return self._sem

    @asynccontextmanager
    async def acquire(self, timeout: float | None = None) -> AsyncIterator[T]:
        """
        Borrow one context for the duration of the ``async with`` block.

        :param timeout: Seconds to wait when every context is busy; ``None``
            waits forever.
        :raises PoolTimeout: If no context frees up in time.
        """
        sem = self._semaphore()
        try:
            # A permit granted as the deadline passes is never stranded here.
            async with asyncio.timeout(timeout):
                await sem.acquire()
        except TimeoutError:
            logger.warning("Model pool exhausted (size=%d, timeout=%ss)", self._size, timeout)
            raise PoolTimeout(f"No model context available within {timeout}s") from None

        try:
            if self._idle:
                ctx = self._idle.pop()
            else:
                ctx = self._factory()
                self._created += 1
        except Exception:
            sem.release()
            raise

        try:
            yield ctx
        finally:
            self._idle.append(ctx)
            sem.release()

    def close(self) -> None:
        """Forget idle contexts so the next acquire builds fresh ones."""
        self._created -= len(self._idle)
        self._idle.clear()
