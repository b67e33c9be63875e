"""DOCX extractor using python-docx.

Paragraph text and table cells are kept; formatting is stripped.
"""

from __future__ import annotations

import io

from docx import Document as DocxDocument

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.utils.errors import ExtractionError

_DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class DocxExtractor(ITextExtractor):
    """Extracts paragraphs and table text from Word documents."""

    @property
    def supported_media_types(self) -> frozenset[str]:
        return frozenset({_DOCX_TYPE})

    def extract(self, data: bytes) -> str:
        try:
            doc = DocxDocument(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError(
                message=f"Cannot open DOCX: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        parts = [para.text for para in doc.paragraphs if para.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        return "\n\n".join(parts)

    def get_provider_name(self) -> str:
        return "python-docx"
