"""Shared pytest fixtures for the docintel test suite.

Provides deterministic in-memory stand-ins for the external collaborators
(embedding provider, search index, generation provider, audit sink) and a
fully wired pipeline over SQLite stores in ``tmp_path``.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest
import pytest_asyncio

from docintel.config.settings import Settings
from docintel.interfaces.audit_sink import IAuditSink
from docintel.interfaces.embedding_provider import IEmbeddingProvider
from docintel.interfaces.llm_provider import ILLMProvider
from docintel.interfaces.search_index_provider import ISearchIndexProvider
from docintel.models.audit import AuditEvent
from docintel.models.jobs import JobStage
from docintel.models.search import SearchEntry, SearchHit, UpsertResult
from docintel.pipeline.orchestrator import IngestionOrchestrator
from docintel.pipeline.worker import Worker
from docintel.providers.cache.memory_cache import MemoryCacheProvider
from docintel.providers.extraction import default_extractors
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
from docintel.utils.errors import EmbeddingError, IndexUnavailableError, LLMError, ProviderUnavailableError
from docintel.utils.highlight import build_highlight

_EMBEDDING_DIM = 64
_WORD_RE = re.compile(r"\w+")


def _bag_of_words_vector(text: str, dimension: int = _EMBEDDING_DIM) -> list[float]:
    """Deterministic embedding: hashed word counts, L2-normalised.

    Texts that share words point in similar directions, so ranking in tests
    behaves like a (very small) semantic model.
    """
    vec = [0.0] * dimension
    for word in _WORD_RE.findall(text.lower()):
        bucket = int(hashlib.sha256(word.encode("utf-8")).hexdigest(), 16) % dimension
        vec[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        vec[0] = 1.0
        return vec
    return [v / norm for v in vec]


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class MockEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider.

    Parameters
    ----------
    transient_failures:
        Maps a substring to how many calls containing it fail with
        :class:`ProviderUnavailableError` before succeeding.
    permanent_failures:
        Substrings whose texts always fail with :class:`EmbeddingError`.
    """

    def __init__(
        self,
        transient_failures: dict[str, int] | None = None,
        permanent_failures: set[str] | None = None,
    ) -> None:
        self.transient_failures = dict(transient_failures or {})
        self.permanent_failures = set(permanent_failures or set())
        self.calls: list[list[str]] = []
        self.available = True

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if not self.available:
            raise ProviderUnavailableError(message="embedding backend down", provider_name="mock")
        for text in texts:
            for marker in self.permanent_failures:
                if marker in text:
                    raise EmbeddingError(message=f"rejected input {marker!r}", provider_name="mock")
            for marker, remaining in self.transient_failures.items():
                if marker in text and remaining > 0:
                    self.transient_failures[marker] = remaining - 1
                    raise ProviderUnavailableError(message="try again", provider_name="mock")
        return [_bag_of_words_vector(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return _EMBEDDING_DIM

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return self.available


class MockSearchIndex(ISearchIndexProvider):
    """In-memory search index with tenant filtering and cosine ranking.

    ``fail_ids`` makes those entry ids fail on upsert; ``available=False``
    makes every call raise :class:`IndexUnavailableError`.
    """

    def __init__(self, embedding_client: EmbeddingClient | None = None) -> None:
        self.entries: dict[str, SearchEntry] = {}
        self.fail_ids: set[str] = set()
        self.available = True
        self._embedding_client = embedding_client

    def _check(self) -> None:
        if not self.available:
            raise IndexUnavailableError(message="index down", provider_name="mock-index")

    async def upsert(self, entries: list[SearchEntry]) -> UpsertResult:
        self._check()
        succeeded: list[str] = []
        failed: dict[str, str] = {}
        for entry in entries:
            if entry.id in self.fail_ids:
                failed[entry.id] = "rejected"
                continue
            self.entries[entry.id] = entry
            succeeded.append(entry.id)
        result = UpsertResult(succeeded=succeeded, failed=failed)
        if result.is_total_failure:
            raise IndexUnavailableError(message="all entries rejected", provider_name="mock-index")
        return result

    async def delete(self, ids: list[str], tenant_id: str) -> None:
        self._check()
        for entry_id in ids:
            entry = self.entries.get(entry_id)
            if entry is not None and entry.tenant_id == tenant_id:
                del self.entries[entry_id]

    async def delete_by_document(self, tenant_id: str, document_id: str) -> int:
        self._check()
        doomed = [
            e.id
            for e in self.entries.values()
            if e.tenant_id == tenant_id and e.document_id == document_id
        ]
        for entry_id in doomed:
            del self.entries[entry_id]
        return len(doomed)

    async def query(
        self,
        tenant_id: str,
        k: int,
        text: str | None = None,
        vector: list[float] | None = None,
    ) -> list[SearchHit]:
        self._check()
        if k <= 0 or (vector is None and not text):
            return []
        if vector is None:
            vector = (
                await self._embedding_client.embed_one(text or "")
                if self._embedding_client is not None
                else _bag_of_words_vector(text or "")
            )
        scored = sorted(
            (
                (_cosine(vector, e.embedding), e)
                for e in self.entries.values()
                if e.tenant_id == tenant_id
            ),
            key=lambda pair: pair[0],
            reverse=True,
        )
        return [
            SearchHit(
                id=e.id,
                tenant_id=e.tenant_id,
                document_id=e.document_id,
                chunk_index=e.chunk_index,
                content=e.content,
                filename=e.filename,
                score=max(0.0, min(1.0, score)),
                highlight=build_highlight(e.content, text),
            )
            for score, e in scored[:k]
        ]

    async def count(self, tenant_id: str, document_id: str | None = None) -> int:
        self._check()
        return sum(
            1
            for e in self.entries.values()
            if e.tenant_id == tenant_id and (document_id is None or e.document_id == document_id)
        )

    def get_provider_name(self) -> str:
        return "mock-index"

    def is_available(self) -> bool:
        return self.available


class MockLLMProvider(ILLMProvider):
    """Generation provider returning scripted replies.

    ``reply`` is either a fixed string or a callable receiving the user
    prompt.  Setting ``error`` makes every call raise it.
    """

    def __init__(self, reply: str | Callable[[str], str] = "") -> None:
        self.reply = reply
        self.error: Exception | None = None
        self.prompts: list[tuple[str, str]] = []

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 1000,
    ) -> str:
        self.prompts.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        if callable(self.reply):
            return self.reply(user_prompt)
        return self.reply

    def get_provider_name(self) -> str:
        return "mock-llm"

    def is_available(self) -> bool:
        return True

    async def validate_credentials(self) -> bool:
        return True


class RecordingAuditSink(IAuditSink):
    """Keeps every emitted event in memory."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def emit(self, event: AuditEvent) -> None:
        self.events.append(event)


def unavailable_llm() -> MockLLMProvider:
    llm = MockLLMProvider()
    llm.error = LLMError(message="upstream 500", provider_name="mock-llm")
    return llm


# ---------------------------------------------------------------------------
# Settings & stores
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every store at ``tmp_path`` with instant retries."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path),
        sqlite_db_path=str(tmp_path / "docintel.db"),
        blob_root=str(tmp_path / "blobs"),
        chromadb_persist_dir=str(tmp_path / "chroma"),
        chunk_max_size=1000,
        chunk_overlap=100,
        ingest_retry_base_delay=0.0,
        embed_retry_base_delay=0.0,
        index_retry_base_delay=0.0,
        embed_max_attempts=5,
    )


@pytest_asyncio.fixture
async def document_store(settings: Settings) -> SQLiteDocumentStore:
    store = SQLiteDocumentStore(db_path=settings.sqlite_db_path)
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def chunk_store(settings: Settings) -> SQLiteChunkStore:
    store = SQLiteChunkStore(db_path=settings.sqlite_db_path)
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def job_queue(settings: Settings) -> SQLiteJobQueue:
    queue = SQLiteJobQueue(db_path=settings.sqlite_db_path)
    await queue.initialize()
    return queue


@pytest.fixture
def blob_store(settings: Settings) -> FilesystemBlobStore:
    return FilesystemBlobStore(root=settings.blob_root)


# ---------------------------------------------------------------------------
# Fully wired pipeline
# ---------------------------------------------------------------------------


@dataclass
class Stack:
    """Every component of a test pipeline, wired like ``build_container``."""

    settings: Settings
    documents: SQLiteDocumentStore
    chunks: SQLiteChunkStore
    queue: SQLiteJobQueue
    blobs: FilesystemBlobStore
    embedding_provider: MockEmbeddingProvider
    embedding_client: EmbeddingClient
    index: MockSearchIndex
    llm: MockLLMProvider
    audit: RecordingAuditSink
    orchestrator: IngestionOrchestrator
    worker: Worker
    search: SearchService
    qa: QAService
    service: DocumentIntelligenceService

    async def drain(self, max_jobs: int = 500) -> int:
        """Run queued jobs until the queue has nothing visible."""
        return await self.worker.run_until_idle(max_jobs=max_jobs)


def build_stack(
    settings: Settings,
    documents: SQLiteDocumentStore,
    chunks: SQLiteChunkStore,
    queue: SQLiteJobQueue,
    blobs: FilesystemBlobStore,
    embedding_provider: MockEmbeddingProvider | None = None,
    llm: MockLLMProvider | None = None,
) -> Stack:
    embedding_provider = embedding_provider or MockEmbeddingProvider()
    embedding_client = EmbeddingClient(
        provider=embedding_provider,
        cache=MemoryCacheProvider(max_size=1000, ttl=60),
        batch_size=8,
    )
    index = MockSearchIndex(embedding_client)
    llm = llm or MockLLMProvider()
    audit = RecordingAuditSink()
    extraction = TextExtractionService(default_extractors(), timeout=10.0)

    orchestrator = IngestionOrchestrator(
        document_store=documents,
        chunk_store=chunks,
        blob_store=blobs,
        extraction=extraction,
        chunker=TextChunker(max_size=settings.chunk_max_size, overlap=settings.chunk_overlap),
        embedding_client=embedding_client,
        search_index=index,
        queue=queue,
        embedding_timeout=5.0,
        index_timeout=5.0,
    )
    worker = Worker(
        queue=queue,
        orchestrator=orchestrator,
        policies={stage: settings.retry_policy(stage) for stage in JobStage},
        visibility_timeout=60.0,
        poll_interval=0.01,
        name="test-worker",
    )
    search = SearchService(index, embedding_client, audit_sink=audit, timeout=5.0)
    qa = QAService(search, llm, top_k=5, max_context_chars=4000, audit_sink=audit)
    uploads = UploadService(
        document_store=documents,
        blob_store=blobs,
        queue=queue,
        extraction=extraction,
        max_upload_bytes=settings.max_upload_bytes,
        audit_sink=audit,
    )
    service = DocumentIntelligenceService(
        upload_service=uploads,
        search_service=search,
        qa_service=qa,
        document_store=documents,
        orchestrator=orchestrator,
        queue=queue,
        audit_sink=audit,
    )
    return Stack(
        settings=settings,
        documents=documents,
        chunks=chunks,
        queue=queue,
        blobs=blobs,
        embedding_provider=embedding_provider,
        embedding_client=embedding_client,
        index=index,
        llm=llm,
        audit=audit,
        orchestrator=orchestrator,
        worker=worker,
        search=search,
        qa=qa,
        service=service,
    )


@pytest.fixture
def stack(
    settings: Settings,
    document_store: SQLiteDocumentStore,
    chunk_store: SQLiteChunkStore,
    job_queue: SQLiteJobQueue,
    blob_store: FilesystemBlobStore,
) -> Stack:
    return build_stack(settings, document_store, chunk_store, job_queue, blob_store)


@pytest.fixture
def stack_factory(
    settings: Settings,
    document_store: SQLiteDocumentStore,
    chunk_store: SQLiteChunkStore,
    job_queue: SQLiteJobQueue,
    blob_store: FilesystemBlobStore,
) -> Callable[..., Stack]:
    """Build a stack with custom embedding / generation fakes."""

    def _factory(
        embedding_provider: MockEmbeddingProvider | None = None,
        llm: MockLLMProvider | None = None,
    ) -> Stack:
        return build_stack(
            settings,
            document_store,
            chunk_store,
            job_queue,
            blob_store,
            embedding_provider=embedding_provider,
            llm=llm,
        )

    return _factory


@pytest.fixture
def sample_text() -> str:
    """2,500 characters of prose: three chunks at size 1000 / overlap 100."""
    paragraph = (
        "Quarterly revenue grew in the northern region while logistics costs "
        "fell after the warehouse consolidation. "
    )
    text = (paragraph * 40)[:2500]
    assert len(text) == 2500
    return text


@pytest.fixture(autouse=True)
def _reset_chromadb_clients():
    """Drop ChromaDB's process-wide client cache so each test opens its own store."""
    from chromadb.api.client import SharedSystemClient

    SharedSystemClient.clear_system_cache()
    yield
    SharedSystemClient.clear_system_cache()
