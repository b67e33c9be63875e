"""Fixed-size character chunking with overlapping windows.

Splits extracted document text into windows of at most ``max_size``
characters.  Each window starts ``max_size - overlap`` characters after the
previous one, so consecutive chunks share ``overlap`` characters and a
sentence cut at one boundary is whole in the neighbouring chunk.

Chunking is a pure function of ``(text, max_size, overlap)``: the same
input always yields the same chunks, which is what makes chunk ids
(``{document_id}-{chunk_index}``) stable across re-ingestion.

Windows are measured in characters, not tokens, so the result does not
depend on which embedding model is configured.
"""

from __future__ import annotations

import math

import structlog

logger = structlog.get_logger(logger_name=__name__)


class TextChunker:
    """Splits text into overlapping fixed-size character windows.

    Parameters
    ----------
    max_size:
        Maximum characters per chunk (default 1000).
    overlap:
        Characters shared by consecutive chunks (default 200).  Must be
        smaller than *max_size*.
    """

    def __init__(self, max_size: int = 1000, overlap: int = 200) -> None:
        self._validate(max_size, overlap)
        self._max_size = max_size
        self._overlap = overlap

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(
        self,
        text: str,
        max_size: int | None = None,
        overlap: int | None = None,
    ) -> list[str]:
        """Split *text* into overlapping windows.

        Parameters
        ----------
        text:
            The full text to chunk.
        max_size:
            Override of the configured window size.
        overlap:
            Override of the configured overlap.

        Returns
        -------
        list[str]
            Chunks in document order.  Empty input returns an empty
            list; text no longer than *max_size* returns
            exactly one chunk.

        Raises
        ------
        ValueError
            If *max_size* is not positive or *overlap* is not in
            ``[0, max_size)``.
        """
        size = self._max_size if max_size is None else max_size
        ov = self._overlap if overlap is None else overlap
        self._validate(size, ov)

        if not text:
            return []

        step = size - ov
        chunks: list[str] = []
        start = 0
        while True:
            end = min(start + size, len(text))
            chunks.append(text[start:end])
            if end >= len(text):
                break
            start += step

        logger.debug(
            "chunking_complete",
            text_length=len(text),
            num_chunks=len(chunks),
            max_size=size,
            overlap=ov,
        )
        return chunks

    def expected_count(self, text_length: int) -> int:
        """Return how many chunks :meth:`chunk` produces for a text of this length."""
        if text_length <= 0:
            return 0
        step = self._max_size - self._overlap
        return max(1, math.ceil((text_length - self._overlap) / step))

    @staticmethod
    def merge(chunks: list[str], overlap: int) -> str:
        """Rebuild the original text from consecutive chunks.

        The first chunk is kept whole; each following chunk contributes
        everything after its first *overlap* characters.
        """
        if not chunks:
            return ""
        return chunks[0] + "".join(chunk[overlap:] for chunk in chunks[1:])

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(max_size: int, overlap: int) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        if overlap < 0 or overlap >= max_size:
            raise ValueError(f"overlap must be in [0, {max_size}), got {overlap}")
