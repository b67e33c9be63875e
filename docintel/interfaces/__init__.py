"""Abstract interfaces for every external collaborator.

Services depend on these contracts only; concrete adapters live in
``docintel.providers`` and are wired together in ``docintel.main``.
"""

from docintel.interfaces.audit_sink import IAuditSink
from docintel.interfaces.blob_store import IBlobStore
from docintel.interfaces.cache_provider import ICacheProvider
from docintel.interfaces.chunk_store import IChunkStore
from docintel.interfaces.document_store import IDocumentStore
from docintel.interfaces.embedding_provider import IEmbeddingProvider
from docintel.interfaces.job_queue import IJobQueue
from docintel.interfaces.llm_provider import ILLMProvider
from docintel.interfaces.search_index_provider import ISearchIndexProvider
from docintel.interfaces.text_extractor import ITextExtractor

__all__ = [
    "IAuditSink",
    "IBlobStore",
    "ICacheProvider",
    "IChunkStore",
    "IDocumentStore",
    "IEmbeddingProvider",
    "IJobQueue",
    "ILLMProvider",
    "ISearchIndexProvider",
    "ITextExtractor",
]
