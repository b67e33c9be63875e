"""Abstract base class for text extraction plug-ins.

Each plug-in turns the raw bytes of one family of media types into plain
text.  Extraction is synchronous; the extraction service runs plug-ins in a
worker thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations live in docintel/providers/extraction/
class ITextExtractor(ABC):
    """Contract for media-type specific text extraction."""

    @property
    @abstractmethod
    def supported_media_types(self) -> frozenset[str]:
        """Lower-case media types this extractor accepts."""

    @abstractmethod
    def extract(self, data: bytes) -> str:
        """Return the text content of *data*.

        Raises
        ------
        docintel.utils.errors.ExtractionError
            If the bytes cannot be parsed.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return an identifier for logging, e.g. ``"pymupdf"``."""
