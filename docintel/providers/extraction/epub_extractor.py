"""EPUB extractor using ebooklib and BeautifulSoup.

Each document item of the book is stripped to text and the chapters are
joined in spine order.
"""

from __future__ import annotations

import os
import tempfile

import ebooklib
from ebooklib import epub

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.providers.extraction.html_extractor import html_to_text
from docintel.utils.errors import ExtractionError


class EPUBExtractor(ITextExtractor):
    """Extracts chapter text from EPUB books."""

    @property
    def supported_media_types(self) -> frozenset[str]:
        return frozenset({"application/epub+zip"})

    def extract(self, data: bytes) -> str:
        # ebooklib reads from a path, not a stream.
        fd, path = tempfile.mkstemp(suffix=".epub")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            try:
                book = epub.read_epub(path, options={"ignore_ncx": True})
            except Exception as exc:
                raise ExtractionError(
                    message=f"Cannot open EPUB: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
        finally:
            os.unlink(path)

        chapters: list[str] = []
        for item in book.get_items_of_type(ebooklib.ITEM_DOCUMENT):
            text = html_to_text(item.get_content().decode("utf-8", errors="replace"))
            if text:
                chapters.append(text)
        return "\n\n".join(chapters)

    def get_provider_name(self) -> str:
        return "ebooklib"
