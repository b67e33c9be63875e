"""Unit tests for UploadService validation, de-duplication and enqueueing."""

from __future__ import annotations

import pytest

from docintel.models.audit import AuditAction, AuditResult
from docintel.models.document import DocumentStatus
from docintel.models.jobs import JobStage
from docintel.providers.extraction import default_extractors
from docintel.providers.storage.filesystem_blob_store import FilesystemBlobStore
from docintel.providers.storage.sqlite_document_store import SQLiteDocumentStore
from docintel.providers.storage.sqlite_job_queue import SQLiteJobQueue
from docintel.services.extraction import TextExtractionService
from docintel.services.upload_service import UploadService, compute_checksum
from docintel.utils.errors import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    EmptyUploadError,
    FileTooLargeError,
    UnsupportedMediaTypeError,
    ValidationError,
)

from conftest import RecordingAuditSink


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def uploads(
    document_store: SQLiteDocumentStore,
    blob_store: FilesystemBlobStore,
    job_queue: SQLiteJobQueue,
    audit: RecordingAuditSink,
) -> UploadService:
    return UploadService(
        document_store=document_store,
        blob_store=blob_store,
        queue=job_queue,
        extraction=TextExtractionService(default_extractors()),
        max_upload_bytes=1024,
        default_language="en",
        audit_sink=audit,
    )


@pytest.mark.asyncio
async def test_upload_creates_document_and_ingest_job(
    uploads: UploadService,
    document_store: SQLiteDocumentStore,
    blob_store: FilesystemBlobStore,
    job_queue: SQLiteJobQueue,
    audit: RecordingAuditSink,
) -> None:
    result = await uploads.upload("acme", "notes.txt", b"hello world", "Text/Plain; charset=utf-8")

    assert not result.duplicate
    assert result.status == DocumentStatus.UPLOADED

    doc = await document_store.get(result.document_id, "acme")
    assert doc is not None
    assert doc.mime_type == "text/plain"
    assert doc.checksum == compute_checksum(b"hello world")
    assert doc.language == "en"
    assert await blob_store.get(doc.blob_path) == b"hello world"

    leased = await job_queue.dequeue([JobStage.INGEST], visibility_timeout=60)
    assert leased is not None
    assert leased.job.document_id == result.document_id

    assert audit.events[-1].action == AuditAction.DOCUMENT_UPLOAD
    assert audit.events[-1].result == AuditResult.SUCCESS
    assert audit.events[-1].resource == result.document_id


@pytest.mark.asyncio
async def test_declared_language_is_kept(
    uploads: UploadService, document_store: SQLiteDocumentStore
) -> None:
    result = await uploads.upload("acme", "notiz.txt", b"hallo", "text/plain", language="de")
    doc = await document_store.get(result.document_id, "acme")
    assert doc is not None and doc.language == "de"


@pytest.mark.asyncio
async def test_same_bytes_same_tenant_is_duplicate(
    uploads: UploadService, job_queue: SQLiteJobQueue, audit: RecordingAuditSink
) -> None:
    first = await uploads.upload("acme", "a.txt", b"same bytes", "text/plain")
    second = await uploads.upload("acme", "b.txt", b"same bytes", "text/plain")

    assert second.duplicate
    assert second.document_id == first.document_id
    assert (await job_queue.stats())["ingest"] == {"pending": 1}
    assert audit.events[-1].result == AuditResult.DUPLICATE


@pytest.mark.asyncio
async def test_duplicate_upload_requeues_lost_ingest_job(
    uploads: UploadService,
    job_queue: SQLiteJobQueue,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_enqueue = job_queue.enqueue
    calls = 0

    async def _enqueue_fails_once(job, dedup_key=None, delay=0.0):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("database is locked")
        return await original_enqueue(job, dedup_key=dedup_key, delay=delay)

    monkeypatch.setattr(job_queue, "enqueue", _enqueue_fails_once)

    with pytest.raises(RuntimeError):
        await uploads.upload("acme", "a.txt", b"stranded", "text/plain")
    assert (await job_queue.stats())["ingest"] == {}

    retry = await uploads.upload("acme", "a.txt", b"stranded", "text/plain")

    assert retry.duplicate
    assert retry.status == DocumentStatus.UPLOADED
    leased = await job_queue.dequeue([JobStage.INGEST], visibility_timeout=60)
    assert leased is not None
    assert leased.job.document_id == retry.document_id


@pytest.mark.asyncio
async def test_same_bytes_other_tenant_is_new_document(uploads: UploadService) -> None:
    first = await uploads.upload("acme", "a.txt", b"same bytes", "text/plain")
    second = await uploads.upload("globex", "a.txt", b"same bytes", "text/plain")

    assert not second.duplicate
    assert second.document_id != first.document_id


@pytest.mark.asyncio
async def test_lost_create_race_returns_winner(
    uploads: UploadService,
    document_store: SQLiteDocumentStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    winner = await uploads.upload("acme", "a.txt", b"raced", "text/plain")

    # The loser's checksum lookup ran before the winner committed.
    async def _not_found_yet(tenant_id: str, checksum: str):
        return None

    monkeypatch.setattr(document_store, "get_by_checksum", _not_found_yet)
    original_create = SQLiteDocumentStore.create

    async def _create(document):
        try:
            return await original_create(document_store, document)
        except DuplicateDocumentError as exc:
            raise DuplicateDocumentError(existing_id=winner.document_id) from exc

    monkeypatch.setattr(document_store, "create", _create)

    loser = await uploads.upload("acme", "b.txt", b"raced", "text/plain")

    assert loser.duplicate
    assert loser.document_id == winner.document_id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("tenant", "filename", "data", "mime_type", "error"),
    [
        ("acme", "a.txt", b"", "text/plain", EmptyUploadError),
        ("acme", "a.txt", b"x" * 1025, "text/plain", FileTooLargeError),
        ("acme", "a.png", b"\x89PNG", "image/png", UnsupportedMediaTypeError),
        ("", "a.txt", b"x", "text/plain", ValidationError),
        ("acme", "  ", b"x", "text/plain", ValidationError),
    ],
)
async def test_invalid_uploads_are_rejected(
    uploads: UploadService,
    document_store: SQLiteDocumentStore,
    audit: RecordingAuditSink,
    tenant: str,
    filename: str,
    data: bytes,
    mime_type: str,
    error: type[Exception],
) -> None:
    with pytest.raises(error):
        await uploads.upload(tenant, filename, data, mime_type)

    assert await document_store.query_by_tenant("acme") == []
    assert audit.events[-1].result == AuditResult.FAILURE


@pytest.mark.asyncio
async def test_reprocess_enqueues_once(uploads: UploadService, job_queue: SQLiteJobQueue) -> None:
    result = await uploads.upload("acme", "a.txt", b"content", "text/plain")
    leased = await job_queue.dequeue([JobStage.INGEST], visibility_timeout=60)
    assert leased is not None
    await job_queue.ack(leased.job_id)

    first = await uploads.reprocess(result.document_id, "acme")
    second = await uploads.reprocess(result.document_id, "acme")

    assert first is not None
    assert second is None


@pytest.mark.asyncio
async def test_reprocess_unknown_document(uploads: UploadService) -> None:
    with pytest.raises(DocumentNotFoundError):
        await uploads.reprocess("missing", "acme")


@pytest.mark.asyncio
async def test_reprocess_is_tenant_scoped(uploads: UploadService) -> None:
    result = await uploads.upload("acme", "a.txt", b"content", "text/plain")

    with pytest.raises(DocumentNotFoundError):
        await uploads.reprocess(result.document_id, "globex")
