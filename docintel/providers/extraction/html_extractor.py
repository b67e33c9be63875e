"""HTML extractor using BeautifulSoup."""

from __future__ import annotations

from bs4 import BeautifulSoup

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.utils.text import decode_text, normalize_whitespace

_STRIP_TAGS = ("script", "style", "noscript", "template")


def html_to_text(markup: str) -> str:
    """Return the visible text of an HTML document."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(_STRIP_TAGS):
        tag.decompose()
    return normalize_whitespace(soup.get_text(separator="\n"))


class HTMLExtractor(ITextExtractor):
    """Strips markup, scripts and styles from HTML pages."""

    @property
    def supported_media_types(self) -> frozenset[str]:
        return frozenset({"text/html", "application/xhtml+xml"})

    def extract(self, data: bytes) -> str:
        return html_to_text(decode_text(data))

    def get_provider_name(self) -> str:
        return "beautifulsoup"
