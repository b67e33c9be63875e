"""Query-term highlighting for search snippets.

Matching terms are wrapped in ``<mark>`` tags and up to three fragments
around the matches are joined with ``" ... "``.  When no term matches, the
leading ``max_chars`` characters of the content are returned unmarked.
"""

from __future__ import annotations

import re

_WORD_RE = re.compile(r"\w{2,}", re.UNICODE)
_MAX_FRAGMENTS = 3


def query_terms(query: str) -> list[str]:
    """Return the distinct lower-cased terms of a query, in order."""
    seen: dict[str, None] = {}
    for term in _WORD_RE.findall(query.lower()):
        seen.setdefault(term, None)
    return list(seen)


def build_highlight(content: str, query: str | None, max_chars: int = 240) -> str:
    """Build a highlighted snippet of *content* for *query*.

    Parameters
    ----------
    content:
        The chunk text to excerpt.
    query:
        Free-text query; ``None`` or empty produces a plain excerpt.
    max_chars:
        Approximate width of each fragment.

    Returns
    -------
    str
        Snippet with ``<mark>`` around matching terms.
    """
    terms = query_terms(query or "")
    if not terms:
        return _excerpt(content, 0, max_chars)

    pattern = re.compile("|".join(re.escape(t) for t in terms), re.IGNORECASE)
    matches = list(pattern.finditer(content))
    if not matches:
        return _excerpt(content, 0, max_chars)

    half = max_chars // 2
    windows: list[tuple[int, int]] = []
    for match in matches:
        start = max(0, match.start() - half)
        end = min(len(content), match.end() + half)
        if windows and start <= windows[-1][1]:
            windows[-1] = (windows[-1][0], max(windows[-1][1], end))
        else:
            windows.append((start, end))
        if len(windows) > _MAX_FRAGMENTS:
            windows.pop()
            break

    fragments = [
        pattern.sub(lambda m: f"<mark>{m.group(0)}</mark>", content[s:e].strip())
        for s, e in windows
    ]
    return " ... ".join(f for f in fragments if f)


def _excerpt(content: str, start: int, width: int) -> str:
    return content[start:start + width].strip()
