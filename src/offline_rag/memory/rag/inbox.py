"""
Inbox ingestion
===============

Drop ``.txt`` / ``.md`` files into the inbox folder; each is ingested once
into a collection and then moved to the archive folder. Files that fail are
left where they are so the next run retries them.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from .service import MemoryService

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".txt", ".md")


@dataclass(slots=True)
class InboxReport:
    processed: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    fragments_created: int = 0
    pending: int = 0

    @property
    def message(self) -> str:
        msg = f"Processed {len(self.processed)} file(s), {self.fragments_created} fragments saved"
        if self.failed:
            msg += f". {len(self.failed)} file(s) failed."
        return msg


def discover(inbox_dir: str | Path) -> List[Path]:
    """Supported files directly inside ``inbox_dir``, sorted by name."""
    root = Path(inbox_dir)
    if not root.is_dir():
        return []
    return sorted(
        p for p in root.iterdir()
        if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
    )


def archive_path(archive_dir: Path, name: str) -> Path:
    """First free path for ``name`` in ``archive_dir`` (``a.txt``, ``a_1.txt``, ...)."""
    target = archive_dir / name
    stem, suffix = Path(name).stem, Path(name).suffix
    n = 1
    while target.exists():
        target = archive_dir / f"{stem}_{n}{suffix}"
        n += 1
    return target


async def process_inbox(
    service: MemoryService,
    collection_name: str,
    inbox_dir: str | Path,
    archive_dir: str | Path,
) -> InboxReport:
    """
    Ingest every supported inbox file into ``collection_name``.

    A file whose fragments were stored counts as processed even if moving it
    to the archive fails (the failure is logged).
    """
    report = InboxReport()
    files = discover(inbox_dir)
    if not files:
        logger.info("No new files found in inbox %s", inbox_dir)
        return report

    archive_root = Path(archive_dir)
    archive_root.mkdir(parents=True, exist_ok=True)
    logger.info("Found %d file(s) in inbox; ingesting into %s", len(files), collection_name)

    for path in files:
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error("Failed to read %s: %s", path.name, e)
            report.failed.append((path.name, str(e)))
            continue

        ingest = await service.ingest_document(path.name, text, collection_name)
        if not ingest.fragments:
            logger.warning("No fragments extracted from %s; leaving it in the inbox", path.name)
            report.failed.append((path.name, "No fragments extracted"))
            continue
        if not ingest.persisted:
            report.failed.append((path.name, "Save failed"))
            continue

        report.fragments_created += ingest.persisted
        report.pending += len(ingest.pending)
        report.processed.append(path.name)

        try:
            await asyncio.to_thread(shutil.move, str(path), str(archive_path(archive_root, path.name)))
        except OSError as e:
            logger.warning("Failed to archive %s: %s", path.name, e)

    logger.info(report.message)
    return report
