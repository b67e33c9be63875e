"""Text extraction plug-ins, one per family of media types."""

from docintel.interfaces.text_extractor import ITextExtractor
from docintel.providers.extraction.docx_extractor import DocxExtractor
from docintel.providers.extraction.epub_extractor import EPUBExtractor
from docintel.providers.extraction.html_extractor import HTMLExtractor
from docintel.providers.extraction.pdf_extractor import PDFExtractor
from docintel.providers.extraction.plain_text_extractor import PlainTextExtractor
from docintel.providers.extraction.rtf_extractor import RTFExtractor


def default_extractors() -> list[ITextExtractor]:
    """Return one instance of every built-in extractor."""
    return [
        PlainTextExtractor(),
        HTMLExtractor(),
        PDFExtractor(),
        RTFExtractor(),
        DocxExtractor(),
        EPUBExtractor(),
    ]


__all__ = [
    "DocxExtractor",
    "EPUBExtractor",
    "HTMLExtractor",
    "PDFExtractor",
    "PlainTextExtractor",
    "RTFExtractor",
    "default_extractors",
]
