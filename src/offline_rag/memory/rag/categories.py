"""
Category labels and query-time category detection.

Every fragment carries a free-form ``category`` (by default derived from its
source file name, e.g. ``router-manual.txt`` -> ``router manual``). A search
can be narrowed to fragments whose category contains one of the requested
labels; matching ignores case and treats ``-`` and ``_`` as spaces.
"""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import Iterable, List, Sequence

_SEPARATORS = re.compile(r"[-_\s]+")
_WORD = re.compile(r"[^\W_]+")


def normalize(label: str) -> str:
    return _SEPARATORS.sub(" ", label or "").strip().lower()


def _words(text: str) -> str:
    return " ".join(_WORD.findall(normalize(text)))


def category_from_source(source_name: str) -> str:
    """``"docs/Router-Manual.v2.md"`` -> ``"router manual.v2"``."""
    return normalize(PurePath(source_name or "").stem)


def matches(category: str, wanted: Sequence[str]) -> bool:
    """True when ``category`` contains any label in ``wanted`` (empty means no filter)."""
    if not wanted:
        return True
    have = normalize(category)
    return any(w and w in have for w in (normalize(x) for x in wanted))


def detect(query: str, known: Iterable[str]) -> List[str]:
    """
    Known categories mentioned in ``query``, in ``known`` order.

    A category counts as mentioned when its normalised label appears in the
    normalised query as whole words.
    """
    text = f" {_words(query)} "
    found: List[str] = []
    for label in known:
        norm = _words(label)
        if norm and f" {norm} " in text and label not in found:
            found.append(label)
    return found
