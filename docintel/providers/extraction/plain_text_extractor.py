"""Plain-text extractor for text, markdown, CSV and JSON uploads."""

from __future__ import annotations

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.utils.text import decode_text


class PlainTextExtractor(ITextExtractor):
    """Decodes text-like media types as-is."""

    _MEDIA_TYPES = frozenset(
        {
            "text/plain",
            "text/markdown",
            "text/x-markdown",
            "text/csv",
            "application/json",
        }
    )

    @property
    def supported_media_types(self) -> frozenset[str]:
        return self._MEDIA_TYPES

    def extract(self, data: bytes) -> str:
        # Only line endings change; chunk offsets follow the raw text.
        return decode_text(data).replace("\r\n", "\n").strip()

    def get_provider_name(self) -> str:
        return "plain_text"
