"""Application services: chunking, embedding, extraction, upload, search and QA."""

from docintel.services.chunker import TextChunker
from docintel.services.document_service import DocumentIntelligenceService
from docintel.services.embedding_client import EmbeddingClient
from docintel.services.extraction import TextExtractionService
from docintel.services.qa_service import QAService
from docintel.services.search_service import SearchService
from docintel.services.upload_service import UploadResult, UploadService

__all__ = [
    "DocumentIntelligenceService",
    "EmbeddingClient",
    "QAService",
    "SearchService",
    "TextChunker",
    "TextExtractionService",
    "UploadResult",
    "UploadService",
]
