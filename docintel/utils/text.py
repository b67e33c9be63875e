"""Text decoding and whitespace normalisation shared by the extractors."""

from __future__ import annotations

import re

_MULTI_SPACE = re.compile(r"[ \t\f\v]+")
_MULTI_NEWLINE = re.compile(r"\n\s*\n+")


def decode_text(data: bytes) -> str:
    """Decode bytes as UTF-8 (BOM tolerated), falling back to Latin-1."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces and blank lines, keeping paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _MULTI_SPACE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _MULTI_NEWLINE.sub("\n\n", text)
    return text.strip()
