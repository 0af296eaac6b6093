"""Schedule embedding maintenance (re-embed pending fragments)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from offline_rag.config import rag
from .service import MemoryService

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None


def periodic(job: Callable[[], Awaitable[object]], interval: float) -> asyncio.Task:
    """
    Run ``job`` every ``interval`` seconds, starting after one interval.

    A failing cycle is logged and the next one still runs.
    """

    async def _loop() -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception:
                logger.exception("Embedding maintenance cycle failed")

    return asyncio.create_task(_loop(), name="offline-rag-maintenance")


async def run(service: MemoryService) -> int:
    """One maintenance pass over every collection. Returns fragments newly embedded."""
    embedded = 0
    for name in await service.repo.list_collections():
        report = await service.reembed(name, only_pending=True)
        if report.fragments:
            logger.info(
                "Re-embedded %d/%d pending fragments in %s",
                report.embedded, report.fragments, name,
            )
        embedded += report.embedded
    return embedded


async def start(service: MemoryService, interval: float | None = None) -> asyncio.Task:
    """Run maintenance once and schedule periodic cycles.

    Returns the periodic task handle; calling again while it runs reuses it.
    """
    global _task

    interval = rag.MAINTENANCE_INTERVAL if interval is None else interval

    logger.info("Starting embedding maintenance (interval=%ss)", interval)
    await run(service)

    if not _task or _task.done():
        _task = periodic(lambda: run(service), interval)

    return _task


async def stop() -> None:
    """Cancel scheduled maintenance if running."""
    global _task

    if _task is None:
        return
    task, _task = _task, None
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
