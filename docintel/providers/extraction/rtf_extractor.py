"""RTF extractor using striprtf."""

from __future__ import annotations

from striprtf.striprtf import rtf_to_text

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.utils.text import decode_text, normalize_whitespace


class RTFExtractor(ITextExtractor):
    """Strips RTF control words to plain text."""

    @property
    def supported_media_types(self) -> frozenset[str]:
        return frozenset({"application/rtf", "text/rtf"})

    def extract(self, data: bytes) -> str:
        return normalize_whitespace(rtf_to_text(decode_text(data)))

    def get_provider_name(self) -> str:
        return "striprtf"
