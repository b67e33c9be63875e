"""Text extraction service: routes uploads to the right extractor plug-in.

Extractors are registered by media type.  Parsing is CPU-bound, so each
call runs in a worker thread, bounded by the configured timeout.
"""

from __future__ import annotations

import asyncio

import structlog

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.utils.errors import (
    DocIntelError,
    ExtractionError,
    ProviderTimeoutError,
    UnsupportedMediaTypeError,
)

logger = structlog.get_logger(logger_name=__name__)


def normalize_media_type(mime_type: str) -> str:
    """Lower-case a media type and drop parameters such as ``charset``."""
    return mime_type.split(";", 1)[0].strip().lower()


class TextExtractionService:
    """Registry of :class:`ITextExtractor` plug-ins keyed by media type.

    Parameters
    ----------
    extractors:
        Plug-ins to register.  A later plug-in replaces an earlier one for
        any media type both declare.
    timeout:
        Seconds allowed for one extraction; ``None`` disables the limit.
    """

    def __init__(self, extractors: list[ITextExtractor], timeout: float | None = 120.0) -> None:
        self._by_type: dict[str, ITextExtractor] = {}
        for extractor in extractors:
            for media_type in extractor.supported_media_types:
                self._by_type[normalize_media_type(media_type)] = extractor
        self._timeout = timeout

    def supports(self, mime_type: str) -> bool:
        return normalize_media_type(mime_type) in self._by_type

    def supported_media_types(self) -> list[str]:
        return sorted(self._by_type)

    async def extract(self, data: bytes, mime_type: str) -> str:
        """Return the text content of *data*.

        Raises
        ------
        UnsupportedMediaTypeError
            If no extractor handles *mime_type*.
        ExtractionError
            If parsing fails or yields no text.
        ProviderTimeoutError
            If extraction exceeds the timeout.
        """
        media_type = normalize_media_type(mime_type)
        extractor = self._by_type.get(media_type)
        if extractor is None:
            raise UnsupportedMediaTypeError(
                message=f"No text extractor for media type '{media_type}'",
            )

        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(extractor.extract, data), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                message=f"Extraction exceeded {self._timeout}s",
                provider_name=extractor.get_provider_name(),
            ) from exc
        except DocIntelError:
            raise
        except Exception as exc:
            raise ExtractionError(
                message=f"Failed to extract {media_type}: {exc}",
                provider_name=extractor.get_provider_name(),
            ) from exc

        if not text or not text.strip():
            raise ExtractionError(
                message="Document contains no extractable text",
                provider_name=extractor.get_provider_name(),
            )

        logger.info(
            "text_extracted",
            media_type=media_type,
            extractor=extractor.get_provider_name(),
            text_length=len(text),
        )
        return text
