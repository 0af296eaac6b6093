"""
Document chunking
=================

Splits raw document text into fragment-sized chunks along paragraph
boundaries, falling back to sentence boundaries for oversized paragraphs.
Consecutive chunks share an ``overlap`` tail so context is not lost at the
seams. Any callable ``(str) -> list[str]`` can replace :func:`chunk_text`
in :class:`~offline_rag.memory.rag.service.MemoryService`.
"""

from __future__ import annotations

import re
from typing import List

from offline_rag.config import rag

_PARA_RE = re.compile(r"\n\s*\n")
_SENT_RE = re.compile(r"(?<=[.!?])\s+")


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARA_RE.split(text or "") if p.strip()]


def split_sentences(paragraph: str) -> List[str]:
    return [s.strip() for s in _SENT_RE.split(paragraph) if s.strip()]


def _overlap_tail(chunk: str, size: int) -> str:
    """Return roughly the last ``size`` chars of ``chunk``, starting on a word."""
    if size <= 0 or len(chunk) <= size:
        return ""
    tail = chunk[-size:]
    cut = tail.find(" ")
    return tail[cut + 1:] if cut != -1 else tail


def _hard_split(text: str, max_chars: int) -> List[str]:
    return [text[i:i + max_chars] for i in range(0, len(text), max_chars)]


def chunk_text(
    text: str,
    max_chars: int | None = None,
    min_chars: int | None = None,
    overlap: int | None = None,
) -> List[str]:
    """
    Chunk ``text`` on semantic boundaries.

    :param max_chars: Upper bound for a chunk (overlap included).
    :param min_chars: Chunks shorter than this are dropped as noise (stray
        page numbers, headers) unless nothing else remains.
    :param overlap: Characters repeated from the previous chunk.
    :returns: Ordered list of chunk strings (empty for blank input).
    """
    max_chars = max_chars or rag.CHUNK_MAX_CHARS
    min_chars = rag.CHUNK_MIN_CHARS if min_chars is None else min_chars
    overlap = rag.CHUNK_OVERLAP if overlap is None else overlap
    overlap = min(overlap, max_chars // 2)

    units: List[str] = []
    for para in split_paragraphs(text):
        if len(para) <= max_chars:
            units.append(para)
            continue
        for sent in split_sentences(para):
            units.extend(_hard_split(sent, max_chars) if len(sent) > max_chars else [sent])

    chunks: List[str] = []
    current = ""
    for unit in units:
        candidate = f"{current}\n\n{unit}" if current else unit
        if len(candidate) <= max_chars:
            current = candidate
            continue
        chunks.append(current)
        tail = _overlap_tail(current, overlap)
        current = f"{tail}\n\n{unit}" if tail and len(tail) + len(unit) + 2 <= max_chars else unit
    if current:
        chunks.append(current)

    kept = [c for c in chunks if len(c) >= min_chars]
    return kept or chunks
