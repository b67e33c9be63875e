"""Composition root: builds every provider and service from settings.

Nothing in docintel constructs its own collaborators.  This module selects
providers from the configured keys, wires them into services, and returns
them in a :class:`Container` that the CLI (or any other presentation layer)
drives.  There are no module-level singletons; tests build their own
container or wire fakes directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from docintel.config.settings import Settings
from docintel.interfaces.embedding_provider import IEmbeddingProvider
from docintel.interfaces.llm_provider import ILLMProvider
from docintel.models.jobs import JobStage
from docintel.pipeline.orchestrator import IngestionOrchestrator
from docintel.pipeline.runner import WorkerPool
from docintel.providers.audit.logging_audit_sink import LoggingAuditSink
from docintel.providers.cache.memory_cache import MemoryCacheProvider
from docintel.providers.extraction import default_extractors
from docintel.providers.llm.anthropic_provider import AnthropicLLMProvider
from docintel.providers.llm.ollama_provider import OllamaLLMProvider
from docintel.providers.llm.openai_provider import OpenAILLMProvider
from docintel.providers.search_index.chromadb_index import ChromaDBSearchIndex
from docintel.providers.storage.filesystem_blob_store import FilesystemBlobStore
from docintel.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from docintel.providers.storage.sqlite_document_store import SQLiteDocumentStore
from docintel.providers.storage.sqlite_job_queue import SQLiteJobQueue
from docintel.services.chunker import TextChunker
from docintel.services.document_service import DocumentIntelligenceService
from docintel.services.embedding_client import EmbeddingClient
from docintel.services.extraction import TextExtractionService
from docintel.services.qa_service import QAService
from docintel.services.search_service import SearchService
from docintel.services.upload_service import UploadService
from docintel.utils.errors import ConfigurationError
from docintel.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


@dataclass
class Container:
    """Every long-lived object of a docintel process."""

    settings: Settings
    document_store: SQLiteDocumentStore
    chunk_store: SQLiteChunkStore
    queue: SQLiteJobQueue
    blob_store: FilesystemBlobStore
    embedding_client: EmbeddingClient
    search_index: ChromaDBSearchIndex
    llm: ILLMProvider
    orchestrator: IngestionOrchestrator
    service: DocumentIntelligenceService

    async def initialize(self) -> None:
        """Create database tables; safe to call more than once."""
        await self.document_store.initialize()
        await self.chunk_store.initialize()
        await self.queue.initialize()

    def worker_pool(self, stages: list[JobStage] | None = None) -> WorkerPool:
        return WorkerPool.from_settings(self.queue, self.orchestrator, self.settings, stages)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider:
    """Select the generation provider.

    ``llm_provider=auto`` picks the first configured of
    Anthropic -> OpenAI -> Ollama (always available).
    """
    choice = app_settings.llm_provider.lower()
    if choice == "anthropic" or (choice == "auto" and app_settings.anthropic_api_key):
        return AnthropicLLMProvider(settings=app_settings)
    if choice == "openai" or (choice == "auto" and app_settings.openai_api_key):
        return OpenAILLMProvider(settings=app_settings)
    if choice in ("ollama", "auto"):
        return OllamaLLMProvider(settings=app_settings)
    raise ConfigurationError(message=f"Unknown llm_provider '{app_settings.llm_provider}'")


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Select the embedding provider.

    ``embedding_provider=auto`` uses OpenAI when a key is configured and
    falls back to local FastEmbed otherwise.  The same provider must be
    used for indexing and querying, so switching providers requires a
    fresh search-index collection.
    """
    choice = app_settings.embedding_provider.lower()
    if choice == "openai" or (choice == "auto" and app_settings.openai_api_key):
        from docintel.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        return OpenAIEmbeddingProvider(settings=app_settings)
    if choice in ("fastembed", "auto"):
        from docintel.providers.embedding.fastembed_embedding_provider import (
            FastEmbedEmbeddingProvider,
        )

        return FastEmbedEmbeddingProvider()
    raise ConfigurationError(
        message=f"Unknown embedding_provider '{app_settings.embedding_provider}'"
    )


# ---------------------------------------------------------------------------
# Full assembly
# ---------------------------------------------------------------------------


def build_container(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    llm_provider: ILLMProvider | None = None,
) -> Container:
    """Wire every provider and service for *app_settings*.

    Parameters
    ----------
    app_settings:
        Loaded configuration.
    embedding_provider:
        Overrides provider selection (tests, scripts).
    llm_provider:
        Overrides provider selection (tests, scripts).
    """
    Path(app_settings.data_dir).mkdir(parents=True, exist_ok=True)

    document_store = SQLiteDocumentStore(db_path=app_settings.sqlite_db_path)
    chunk_store = SQLiteChunkStore(db_path=app_settings.sqlite_db_path)
    queue = SQLiteJobQueue(db_path=app_settings.sqlite_db_path)
    blob_store = FilesystemBlobStore(root=app_settings.blob_root)

    embedding_client = EmbeddingClient(
        provider=embedding_provider or _build_embedding_provider(app_settings),
        cache=MemoryCacheProvider(
            max_size=app_settings.embedding_cache_size,
            ttl=app_settings.embedding_cache_ttl,
        ),
        batch_size=app_settings.embedding_batch_size,
        max_concurrency=app_settings.embedding_max_concurrency,
    )
    search_index = ChromaDBSearchIndex(
        embedding_client=embedding_client,
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
        snippet_chars=app_settings.qa_snippet_chars,
    )
    llm = llm_provider or _build_llm_provider(app_settings)
    audit_sink = LoggingAuditSink()

    extraction = TextExtractionService(
        default_extractors(), timeout=app_settings.extraction_timeout
    )
    orchestrator = IngestionOrchestrator(
        document_store=document_store,
        chunk_store=chunk_store,
        blob_store=blob_store,
        extraction=extraction,
        chunker=TextChunker(
            max_size=app_settings.chunk_max_size, overlap=app_settings.chunk_overlap
        ),
        embedding_client=embedding_client,
        search_index=search_index,
        queue=queue,
        embedding_timeout=app_settings.embedding_timeout,
        index_timeout=app_settings.index_timeout,
    )

    upload_service = UploadService(
        document_store=document_store,
        blob_store=blob_store,
        queue=queue,
        extraction=extraction,
        max_upload_bytes=app_settings.max_upload_bytes,
        default_language=app_settings.default_language,
        audit_sink=audit_sink,
    )
    search_service = SearchService(
        search_index=search_index,
        embedding_client=embedding_client,
        audit_sink=audit_sink,
        timeout=app_settings.embedding_timeout + app_settings.index_timeout,
    )
    qa_service = QAService(
        search_service=search_service,
        llm=llm,
        top_k=app_settings.qa_top_k,
        max_context_chars=app_settings.qa_max_context_chars,
        max_answer_tokens=app_settings.qa_max_answer_tokens,
        snippet_chars=app_settings.qa_snippet_chars,
        generation_timeout=app_settings.generation_timeout,
        audit_sink=audit_sink,
    )
    service = DocumentIntelligenceService(
        upload_service=upload_service,
        search_service=search_service,
        qa_service=qa_service,
        document_store=document_store,
        orchestrator=orchestrator,
        queue=queue,
        audit_sink=audit_sink,
    )

    _logger.info(
        "container_built",
        embedding_provider=embedding_client.provider_name,
        llm_provider=llm.get_provider_name(),
        search_index=search_index.get_provider_name(),
        db_path=app_settings.sqlite_db_path,
    )
    return Container(
        settings=app_settings,
        document_store=document_store,
        chunk_store=chunk_store,
        queue=queue,
        blob_store=blob_store,
        embedding_client=embedding_client,
        search_index=search_index,
        llm=llm,
        orchestrator=orchestrator,
        service=service,
    )
