"""Ingestion orchestrator: the stage handlers behind the worker loop.

Every queued job is one of three variants, and each has a handler here:

    ingest       load the blob, extract text, chunk it, fan out one
                 embed-chunk job per chunk.
    embed-chunk  embed one chunk, persist it, then run the join check.
    index        project every chunk into the search index and mark the
                 document ready.

The **join** is the only synchronisation point between chunk jobs.  It runs
after every chunk job terminates (success or dead-letter) and compares
``stored chunks + failure markers`` against the document's ``chunk_count``.
Only the call that sees the total reached moves the document on; the index
job's dedup key absorbs the case where two chunk jobs finish at once.

Handlers never hold state between jobs.  All writes are single-key
upserts keyed by ``(document_id, chunk_index)``, so a handler that is
delivered twice (at-least-once queue) overwrites instead of duplicating.

The worker owns retry and dead-letter decisions.  Handlers raise
:class:`~docintel.utils.errors.TransientError` for "try again" and
:class:`~docintel.utils.errors.PermanentError` for "never again"; once a job
is dead-lettered the worker calls :meth:`IngestionOrchestrator.on_dead_letter`
so the document can be moved to its terminal state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog

from docintel.models.document import Chunk, ChunkFailure, Document, DocumentStatus, chunk_id_for
from docintel.models.jobs import EmbedChunkJob, IndexJob, IngestJob, Job, JobStage
from docintel.models.search import SearchEntry
from docintel.utils.errors import (
    DocIntelError,
    DocumentNotFoundError,
    ExtractionError,
    IndexUnavailableError,
    PartialIndexError,
    PipelineError,
    ProviderTimeoutError,
    TransientError,
    UnsupportedMediaTypeError,
)
from docintel.utils.logging import get_logger

if TYPE_CHECKING:
    from docintel.interfaces.blob_store import IBlobStore
    from docintel.interfaces.chunk_store import IChunkStore
    from docintel.interfaces.document_store import IDocumentStore
    from docintel.interfaces.job_queue import IJobQueue
    from docintel.interfaces.search_index_provider import ISearchIndexProvider
    from docintel.services.chunker import TextChunker
    from docintel.services.embedding_client import EmbeddingClient
    from docintel.services.extraction import TextExtractionService

Handler = Callable[[Any], Awaitable[None]]


def embed_dedup_key(document_id: str, chunk_index: int) -> str:
    return f"embed:{document_id}:{chunk_index}"


def index_dedup_key(document_id: str) -> str:
    return f"index:{document_id}"


class IngestionOrchestrator:
    """Runs the ingest, embed-chunk and index stages for queued jobs.

    All collaborators are injected; the orchestrator never builds them.

    Parameters
    ----------
    document_store:
        Document of record; every status change goes through it.
    chunk_store:
        Embedded chunk records and per-chunk failure markers.
    blob_store:
        Raw upload bytes.
    extraction:
        Media-type dispatch to the text extractors.
    chunker:
        Splits extracted text into overlapping windows.
    embedding_client:
        Batched, memoised embedding calls.
    search_index:
        Tenant-scoped search index.
    queue:
        Receives the fan-out embed-chunk jobs and the index job.
    embedding_timeout:
        Seconds allowed for one chunk's embedding call.
    index_timeout:
        Seconds allowed for one document's index upsert.
    """

    def __init__(
        self,
        document_store: IDocumentStore,
        chunk_store: IChunkStore,
        blob_store: IBlobStore,
        extraction: TextExtractionService,
        chunker: TextChunker,
        embedding_client: EmbeddingClient,
        search_index: ISearchIndexProvider,
        queue: IJobQueue,
        embedding_timeout: float | None = 30.0,
        index_timeout: float | None = 60.0,
    ) -> None:
        self._documents = document_store
        self._chunks = chunk_store
        self._blobs = blob_store
        self._extraction = extraction
        self._chunker = chunker
        self._embedding_client = embedding_client
        self._index = search_index
        self._queue = queue
        self._embedding_timeout = embedding_timeout
        self._index_timeout = index_timeout
        self._logger: structlog.BoundLogger = get_logger(__name__)

        self._handlers: dict[JobStage, Handler] = {
            JobStage.INGEST: self._handle_ingest,
            JobStage.EMBED_CHUNK: self._handle_embed_chunk,
            JobStage.INDEX: self._handle_index,
        }
        missing = set(JobStage) - set(self._handlers)
        if missing:
            raise PipelineError(
                message=f"No handler registered for stages: {sorted(s.value for s in missing)}"
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def handle(self, job: Job) -> None:
        """Dispatch *job* to the handler for its stage."""
        await self._handlers[JobStage(job.stage)](job)

    async def on_dead_letter(self, job: Job, reason: str) -> None:
        """Move the document to its terminal state after a job is abandoned.

        ingest
            The document becomes ``error``.
        embed-chunk
            A failure marker is recorded for the chunk and the join runs,
            so the document fails once every sibling chunk has finished.
        index
            The document becomes ``error`` and its search entries are
            removed, so no partially indexed document stays searchable.
        """
        if isinstance(job, IngestJob):
            await self._fail(job.document_id, job.tenant_id, reason, JobStage.INGEST)
        elif isinstance(job, EmbedChunkJob):
            await self._chunks.record_failure(
                ChunkFailure(
                    document_id=job.document_id,
                    chunk_index=job.chunk_index,
                    reason=reason,
                )
            )
            self._logger.warning(
                "chunk_failed",
                document_id=job.document_id,
                chunk_index=job.chunk_index,
                reason=reason,
            )
            await self._join(job.document_id, job.tenant_id)
        elif isinstance(job, IndexJob):
            await self._fail(job.document_id, job.tenant_id, reason, JobStage.INDEX)
            removed = await self._index.delete_by_document(job.tenant_id, job.document_id)
            self._logger.info(
                "search_entries_removed", document_id=job.document_id, removed=removed
            )

    async def abort(self, document_id: str, tenant_id: str, reason: str = "aborted") -> Document:
        """Mark an in-flight document as failed.

        Chunk jobs already running finish normally; the join sees the
        ``error`` status and discards their results.

        A document failed at indexing loses its index stage, so pending
        index retries no longer apply to it.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist for *tenant_id*.
        """
        document = await self._require(document_id, tenant_id)
        if document.status == DocumentStatus.ERROR and document.error_stage != JobStage.INDEX:
            return document
        updated = await self._documents.update(
            document.transition(DocumentStatus.ERROR, reason=reason)
        )
        await self._index.delete_by_document(tenant_id, document_id)
        self._logger.info("document_aborted", document_id=document_id, reason=reason)
        return updated

    # ------------------------------------------------------------------
    # Stage: ingest
    # ------------------------------------------------------------------

    async def _handle_ingest(self, job: IngestJob) -> None:
        document = await self._require(job.document_id, job.tenant_id)
        document = await self._documents.update(
            document.transition(DocumentStatus.PROCESSING, stage=JobStage.INGEST)
        )

        data = await self._blobs.get(document.blob_path)
        try:
            text = await self._extraction.extract(data, document.mime_type)
        except (ExtractionError, UnsupportedMediaTypeError) as exc:
            await self._fail(document.id, document.tenant_id, str(exc), JobStage.INGEST)
            if isinstance(exc, UnsupportedMediaTypeError):
                raise ExtractionError(message=str(exc)) from exc
            raise

        chunks = self._chunker.chunk(text)
        if not chunks:
            await self._fail(document.id, document.tenant_id, "no extractable text", JobStage.INGEST)
            raise ExtractionError(message=f"Document {document.id} has no extractable text")

        # Chunk records from a previous ingest must not satisfy this ingest's join.
        previous_count = document.chunk_count or 0
        stale = await self._chunks.delete_chunks_from(document.id, 0)
        if previous_count > len(chunks):
            await self._index.delete(
                [chunk_id_for(document.id, i) for i in range(len(chunks), previous_count)],
                document.tenant_id,
            )
        await self._chunks.clear_failures(document.id)
        document = await self._documents.update(
            document.model_copy(update={"chunk_count": len(chunks), "text_length": len(text)})
        )

        job_ids = await self._queue.enqueue_many(
            (
                EmbedChunkJob(
                    document_id=document.id,
                    tenant_id=document.tenant_id,
                    chunk_index=index,
                    text=chunk_text,
                ),
                embed_dedup_key(document.id, index),
            )
            for index, chunk_text in enumerate(chunks)
        )
        self._logger.info(
            "document_chunked",
            document_id=document.id,
            tenant_id=document.tenant_id,
            text_length=len(text),
            chunk_count=len(chunks),
            previous_chunks_removed=stale,
            jobs_enqueued=sum(1 for job_id in job_ids if job_id is not None),
        )

    # ------------------------------------------------------------------
    # Stage: embed-chunk
    # ------------------------------------------------------------------

    async def _handle_embed_chunk(self, job: EmbedChunkJob) -> None:
        try:
            vector = await asyncio.wait_for(
                self._embedding_client.embed_one(job.text),
                timeout=self._embedding_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                message=f"Embedding chunk {job.chunk_index} timed out",
                provider_name=self._embedding_client.provider_name,
            ) from exc

        await self._chunks.upsert_chunk(
            Chunk(
                document_id=job.document_id,
                tenant_id=job.tenant_id,
                chunk_index=job.chunk_index,
                text=job.text,
                embedding=vector,
            )
        )
        self._logger.debug(
            "chunk_embedded", document_id=job.document_id, chunk_index=job.chunk_index
        )
        await self._join(job.document_id, job.tenant_id)

    async def _join(self, document_id: str, tenant_id: str) -> None:
        document = await self._documents.get(document_id, tenant_id)
        if document is None or document.status == DocumentStatus.ERROR:
            self._logger.info(
                "join_discarded",
                document_id=document_id,
                status=document.status.value if document else None,
            )
            return
        if document.chunk_count is None:
            return

        stored = await self._chunks.count_chunks(document_id)
        failures = await self._chunks.get_failures(document_id)
        if stored + len(failures) < document.chunk_count:
            return

        if failures:
            failed = sorted(f.chunk_index for f in failures)
            await self._fail(
                document_id,
                tenant_id,
                f"{len(failures)} of {document.chunk_count} chunks failed: {failed}",
                JobStage.EMBED_CHUNK,
            )
            await self._index.delete_by_document(tenant_id, document_id)
            return

        job_id = await self._queue.enqueue(
            IndexJob(document_id=document_id, tenant_id=tenant_id),
            dedup_key=index_dedup_key(document_id),
        )
        self._logger.info(
            "join_complete",
            document_id=document_id,
            chunk_count=document.chunk_count,
            index_job_id=job_id,
        )

    # ------------------------------------------------------------------
    # Stage: index
    # ------------------------------------------------------------------

    async def _handle_index(self, job: IndexJob) -> None:
        document = await self._require(job.document_id, job.tenant_id)
        if not self._may_index(document):
            self._logger.info(
                "index_skipped",
                document_id=document.id,
                status=document.status.value,
                error_stage=document.error_stage.value if document.error_stage else None,
            )
            return

        chunks = await self._chunks.get_chunks(document.id)
        expected = document.chunk_count or 0
        if len(chunks) < expected:
            raise TransientError(
                message=(
                    f"Document {document.id} has {len(chunks)} of {expected} chunks; "
                    "not ready to index"
                )
            )
        chunks = chunks[:expected]

        entries = [SearchEntry.from_chunk(chunk, document.filename) for chunk in chunks]
        try:
            result = await asyncio.wait_for(self._index.upsert(entries), timeout=self._index_timeout)
        except asyncio.TimeoutError as exc:
            await self._fail(document.id, document.tenant_id, "index upsert timed out", JobStage.INDEX)
            await self._withdraw(document, None)
            raise ProviderTimeoutError(
                message=f"Indexing document {document.id} timed out",
                provider_name=self._index.get_provider_name(),
            ) from exc
        except IndexUnavailableError as exc:
            await self._fail(document.id, document.tenant_id, str(exc), JobStage.INDEX)
            raise

        if not result.is_complete:
            reason = f"{len(result.failed)} of {len(entries)} search entries failed"
            await self._fail(document.id, document.tenant_id, reason, JobStage.INDEX)
            await self._withdraw(document, list(result.succeeded))
            raise PartialIndexError(
                result=result,
                message=reason,
                provider_name=self._index.get_provider_name(),
            )

        current = await self._require(document.id, document.tenant_id)
        if not self._may_index(current):
            await self._withdraw(current, None)
            self._logger.info(
                "index_discarded", document_id=document.id, status=current.status.value
            )
            return
        await self._documents.update(current.transition(DocumentStatus.READY, stage=JobStage.INDEX))
        self._logger.info(
            "document_ready",
            document_id=document.id,
            tenant_id=document.tenant_id,
            entries=len(result.succeeded),
        )

    @staticmethod
    def _may_index(document: Document) -> bool:
        if document.status in (DocumentStatus.PROCESSING, DocumentStatus.READY):
            return True
        return document.status == DocumentStatus.ERROR and document.error_stage == JobStage.INDEX

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _require(self, document_id: str, tenant_id: str) -> Document:
        document = await self._documents.get(document_id, tenant_id)
        if document is None:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        return document

    async def _withdraw(self, document: Document, ids: list[str] | None) -> None:
        """Remove search entries written by a failed index attempt.

        With *ids* of None every entry of the document is removed. Errors are
        logged, not raised, so the caller re-raises the original failure.
        """
        try:
            if ids is None:
                removed = await self._index.delete_by_document(document.tenant_id, document.id)
            else:
                await self._index.delete(ids, document.tenant_id)
                removed = len(ids)
        except (DocIntelError, asyncio.TimeoutError) as exc:
            self._logger.warning(
                "search_entries_withdraw_failed", document_id=document.id, error=str(exc)
            )
            return
        self._logger.info("search_entries_removed", document_id=document.id, removed=removed)

    async def _fail(self, document_id: str, tenant_id: str, reason: str, stage: JobStage) -> None:
        document = await self._documents.get(document_id, tenant_id)
        if document is None:
            return
        if document.status == DocumentStatus.ERROR and document.error_stage != JobStage.INDEX:
            return
        await self._documents.update(
            document.transition(DocumentStatus.ERROR, reason=reason, stage=stage)
        )
        self._logger.warning(
            "document_failed",
            document_id=document_id,
            tenant_id=tenant_id,
            stage=stage.value,
            reason=reason,
        )
