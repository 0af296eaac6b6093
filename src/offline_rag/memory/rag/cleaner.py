"""
Fragment text cleaning
======================

Documents pasted from model output, PDFs or badly decoded files carry
tokenizer markers, control characters and mojibake that skew embeddings.
:func:`clean_text` strips them before chunking; :func:`needs_cleaning` is a
cheap check used for logging.
"""

from __future__ import annotations

import re

_SPECIAL_TOKENS = (
    "<|endoftext|>",
    "<|end_of_text|>",
    "<|eot_id|>",
    "<|begin_of_text|>",
    "<|start_header_id|>",
    "<|end_header_id|>",
    "<|system|>",
    "<|user|>",
    "<|assistant|>",
    "<|end|>",
    "<|im_start|>",
    "<|im_end|>",
    "[INST]",
    "[/INST]",
    "<<SYS>>",
    "<</SYS>>",
    "<s>",
    "</s>",
    "[CLS]",
    "[SEP]",
    "[MASK]",
    "[PAD]",
    "[UNK]",
)

_UNUSED_RE = re.compile(r"\[unused\d+\]")
_EOS_RE = re.compile(r"<EOS>|<EOF>|\[EOS\]|\[EOF\]", re.IGNORECASE)
_BRACKET_TOKEN_RE = re.compile(r"\[[A-Z_]{3,}\]")

# UTF-8 bytes that were decoded as Latin-1, plus invisible characters
_MOJIBAKE = {
    "\u00e2\u0080\u0099": "'",
    "\u00e2\u0080\u009c": '"',
    "\u00e2\u0080\u009d": '"',
    "\u00e2\u0080\u0094": "\u2014",
    "\u00e2\u0080\u0093": "\u2013",
    "\u00e2\u0080\u00a6": "\u2026",
    "\u00c2 ": " ",
    "\u00c3\u00a9": "\u00e9",
    "\u00c3\u00a8": "\u00e8",
    "\u00c3\u00a0": "\u00e0",
    "\u00c2\u00b0": "\u00b0",
    "\u200b": "",
    "\u200c": "",
    "\u200d": "",
    "\ufeff": "",
    "\u00a0": " ",
}

_UNICODE_SPACE_RE = re.compile("[\u00a0\u1680\u2000-\u200b\u202f\u205f\u3000]")
_MULTI_SPACE_RE = re.compile(r" {2,}")
_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")
_TRAILING_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_LEADING_RE = re.compile(r"^[ \t]+", re.MULTILINE)

_MARKER_RE = re.compile(r"<\|.*?\|>|<EOS>|<EOF>|\[[A-Z_]{3,}\]", re.IGNORECASE)


def _is_control(ch: str) -> bool:
    code = ord(ch)
    return (code < 0x20 or 0x7F <= code < 0xA0) and ch not in "\n\r\t"


def _remove_special_tokens(text: str) -> str:
    for token in _SPECIAL_TOKENS:
        text = text.replace(token, "")
    text = _UNUSED_RE.sub("", text)
    text = _EOS_RE.sub("", text)
    return _BRACKET_TOKEN_RE.sub("", text)


def _fix_encoding(text: str) -> str:
    for bad, good in _MOJIBAKE.items():
        text = text.replace(bad, good)
    return text


def _normalize_whitespace(text: str) -> str:
    text = _UNICODE_SPACE_RE.sub(" ", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\t", "    ")
    text = _MULTI_SPACE_RE.sub(" ", text)
    text = _MULTI_NEWLINE_RE.sub("\n\n", text)
    text = _TRAILING_RE.sub("", text)
    return _LEADING_RE.sub("", text)


def clean_text(text: str) -> str:
    """
    Strip special tokens, control characters and mojibake, then normalise
    whitespace. Paragraph breaks (blank lines) survive so chunking still
    sees them.
    """
    if not text or not text.strip():
        return text
    text = _remove_special_tokens(text)
    # Mojibake sequences contain C1 control code points; repair them first.
    text = _fix_encoding(text)
    text = "".join(ch for ch in text if not _is_control(ch))
    text = _normalize_whitespace(text)
    return text.strip()


def needs_cleaning(text: str) -> bool:
    if not text or not text.strip():
        return False
    if _MARKER_RE.search(text):
        return True
    if any(_is_control(ch) for ch in text):
        return True
    if "\u00e2\u0080" in text or "\u00c3" in text or "\u200b" in text:
        return True
    return bool(re.search(r" {3,}|\n{4,}", text))
