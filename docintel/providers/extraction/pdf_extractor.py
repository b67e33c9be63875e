"""PDF extractor using PyMuPDF.

Text is read page by page; pages without a text layer are skipped.
Scanned PDFs therefore produce no text and fail extraction (OCR is not
performed).
"""

from __future__ import annotations

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)


class PDFExtractor(ITextExtractor):
    """Extracts the text layer of PDF documents."""

    @property
    def supported_media_types(self) -> frozenset[str]:
        return frozenset({"application/pdf"})

    def extract(self, data: bytes) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(
                message=f"Cannot open PDF: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        pages: list[str] = []
        try:
            for page in doc:
                text = page.get_text("text").strip()
                if text:
                    pages.append(text)
            page_count = len(doc)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", pages=page_count)
        return "\n\n".join(pages)

    def get_provider_name(self) -> str:
        return "pymupdf"
