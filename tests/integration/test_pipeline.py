"""Integration tests for the staged ingestion pipeline.

Real SQLite stores, queue and blob store in ``tmp_path``; deterministic
in-memory embedding provider and search index.  Jobs are run by a single
worker draining the queue, with zero retry delays.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from docintel.models.audit import AuditAction
from docintel.models.document import DocumentStatus
from docintel.models.jobs import EmbedChunkJob, JobStage
from docintel.pipeline.runner import WorkerPool
from docintel.utils.errors import DocumentNotFoundError

from conftest import MockEmbeddingProvider, Stack


def _with_marker(sample_text: str, marker: str = "omega") -> str:
    """Place *marker* at offset 1950, inside the third chunk only."""
    return sample_text[:1950] + marker + sample_text[1950 + len(marker):]


async def _upload(stack: Stack, text: str, tenant: str = "acme", filename: str = "report.txt") -> str:
    result = await stack.service.upload(tenant, filename, text.encode("utf-8"), "text/plain")
    return result.document_id


# ---------------------------------------------------------------------------
# Happy path & idempotency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_to_ready(stack: Stack, sample_text: str) -> None:
    doc_id = await _upload(stack, sample_text)

    processed = await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.READY
    assert doc.chunk_count == 3
    assert doc.text_length == 2500
    assert processed == 5  # ingest + 3 embed-chunk + index
    assert [c.chunk_index for c in await stack.chunks.get_chunks(doc_id)] == [0, 1, 2]
    assert await stack.index.count("acme", doc_id) == 3
    assert sorted(stack.index.entries) == [f"{doc_id}-{i}" for i in range(3)]
    assert await stack.queue.stats() == {"ingest": {}, "embed-chunk": {}, "index": {}}


@pytest.mark.asyncio
async def test_duplicate_upload_same_tenant(stack: Stack, sample_text: str) -> None:
    first = await _upload(stack, sample_text)
    second = await stack.service.upload("acme", "copy.txt", sample_text.encode(), "text/plain")

    assert second.duplicate
    assert second.document_id == first
    await stack.drain()
    assert len(await stack.service.list_documents("acme")) == 1


@pytest.mark.asyncio
async def test_same_bytes_in_two_tenants_are_separate_documents(
    stack: Stack, sample_text: str
) -> None:
    acme = await _upload(stack, sample_text, tenant="acme")
    globex = await _upload(stack, sample_text, tenant="globex")

    await stack.drain()

    assert acme != globex
    assert await stack.index.count("acme") == 3
    assert await stack.index.count("globex") == 3


@pytest.mark.asyncio
async def test_reprocess_is_idempotent(stack: Stack, sample_text: str) -> None:
    doc_id = await _upload(stack, sample_text)
    await stack.drain()
    before = {c.chunk_index: c.text for c in await stack.chunks.get_chunks(doc_id)}

    assert await stack.service.reprocess(doc_id, "acme") is not None
    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    after = {c.chunk_index: c.text for c in await stack.chunks.get_chunks(doc_id)}
    assert doc.status == DocumentStatus.READY
    assert after == before
    assert await stack.index.count("acme", doc_id) == 3
    assert any(e.action == AuditAction.DOCUMENT_REPROCESS for e in stack.audit.events)


@pytest.mark.asyncio
async def test_reprocess_with_shorter_text_drops_stale_chunks(
    stack: Stack, sample_text: str
) -> None:
    doc_id = await _upload(stack, sample_text)
    await stack.drain()
    doc = await stack.service.require_document(doc_id, "acme")

    await stack.blobs.put("acme", doc_id, doc.filename, b"A much shorter replacement text.")
    await stack.service.reprocess(doc_id, "acme")
    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.READY
    assert doc.chunk_count == 1
    assert await stack.chunks.count_chunks(doc_id) == 1
    assert sorted(stack.index.entries) == [f"{doc_id}-0"]


@pytest.mark.asyncio
async def test_reprocess_unknown_document(stack: Stack) -> None:
    with pytest.raises(DocumentNotFoundError):
        await stack.service.reprocess("missing", "acme")


# ---------------------------------------------------------------------------
# Retry and failure handling
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_transient_embedding_failure_is_retried(
    stack_factory: Callable[..., Stack], sample_text: str
) -> None:
    provider = MockEmbeddingProvider(transient_failures={"omega": 2})
    stack = stack_factory(embedding_provider=provider)
    doc_id = await _upload(stack, _with_marker(sample_text))

    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.READY
    assert await stack.index.count("acme", doc_id) == 3
    assert await stack.queue.list_dead_letters() == []
    assert provider.transient_failures["omega"] == 0


@pytest.mark.asyncio
async def test_permanent_chunk_failure_fails_document(
    stack_factory: Callable[..., Stack], sample_text: str
) -> None:
    stack = stack_factory(embedding_provider=MockEmbeddingProvider(permanent_failures={"omega"}))
    doc_id = await _upload(stack, _with_marker(sample_text))

    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_stage == JobStage.EMBED_CHUNK
    assert "[2]" in (doc.error_reason or "")
    assert [c.chunk_index for c in await stack.chunks.get_chunks(doc_id)] == [0, 1]
    assert await stack.index.count("acme", doc_id) == 0

    letters = await stack.queue.list_dead_letters()
    assert len(letters) == 1
    assert letters[0].job.stage == "embed-chunk"
    assert letters[0].attempt == 1


@pytest.mark.asyncio
async def test_exhausted_transient_failure_fails_document(
    stack_factory: Callable[..., Stack], sample_text: str
) -> None:
    provider = MockEmbeddingProvider(transient_failures={"omega": 100})
    stack = stack_factory(embedding_provider=provider)
    doc_id = await _upload(stack, _with_marker(sample_text))

    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.ERROR
    letters = await stack.queue.list_dead_letters(JobStage.EMBED_CHUNK)
    assert letters[0].attempt == stack.settings.embed_max_attempts
    assert letters[0].reason.startswith("retries exhausted")


@pytest.mark.asyncio
async def test_unextractable_upload_fails_at_ingest(stack: Stack) -> None:
    result = await stack.service.upload("acme", "blank.txt", b"  \n\n  ", "text/plain")

    await stack.drain()

    doc = await stack.service.require_document(result.document_id, "acme")
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_stage == JobStage.INGEST
    assert len(await stack.queue.list_dead_letters(JobStage.INGEST)) == 1


@pytest.mark.asyncio
async def test_partial_index_failure_then_recovery(stack: Stack, sample_text: str) -> None:
    doc_id = await _upload(stack, sample_text)
    for _ in range(4):  # ingest + 3 embed-chunk
        assert await stack.worker.run_once()
    stack.index.fail_ids = {f"{doc_id}-1"}

    assert await stack.worker.run_once()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_stage == JobStage.INDEX

    stack.index.fail_ids = set()
    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.READY
    assert await stack.index.count("acme", doc_id) == 3


@pytest.mark.asyncio
async def test_failed_index_attempt_leaves_no_searchable_entries(
    stack: Stack, sample_text: str
) -> None:
    doc_id = await _upload(stack, sample_text)
    for _ in range(4):
        await stack.worker.run_once()
    stack.index.fail_ids = {f"{doc_id}-1"}

    await stack.worker.run_once()

    assert await stack.index.count("acme", doc_id) == 0
    assert await stack.service.search("acme", "revenue") == []


@pytest.mark.asyncio
async def test_abort_after_index_failure_stops_index_retry(
    stack: Stack, sample_text: str
) -> None:
    doc_id = await _upload(stack, sample_text)
    for _ in range(4):
        await stack.worker.run_once()
    stack.index.fail_ids = {f"{doc_id}-1"}
    await stack.worker.run_once()

    aborted = await stack.service.abort(doc_id, "acme")
    assert aborted.status == DocumentStatus.ERROR
    assert aborted.error_stage is None

    stack.index.fail_ids = set()
    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_stage is None
    assert await stack.index.count("acme", doc_id) == 0


@pytest.mark.asyncio
async def test_abort_during_index_write_discards_entries(
    stack: Stack, sample_text: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    doc_id = await _upload(stack, sample_text)
    for _ in range(4):
        await stack.worker.run_once()
    original_upsert = stack.index.upsert

    async def _upsert_then_abort(entries):
        result = await original_upsert(entries)
        await stack.service.abort(doc_id, "acme")
        return result

    monkeypatch.setattr(stack.index, "upsert", _upsert_then_abort)

    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.ERROR
    assert await stack.index.count("acme", doc_id) == 0
    assert await stack.queue.list_dead_letters(JobStage.INDEX) == []


@pytest.mark.asyncio
async def test_persistent_partial_index_failure_removes_entries(
    stack: Stack, sample_text: str
) -> None:
    doc_id = await _upload(stack, sample_text)
    for _ in range(4):
        await stack.worker.run_once()
    stack.index.fail_ids = {f"{doc_id}-1"}

    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_stage == JobStage.INDEX
    assert await stack.index.count("acme", doc_id) == 0
    assert len(await stack.queue.list_dead_letters(JobStage.INDEX)) == 1


# ---------------------------------------------------------------------------
# Join
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_document_not_ready_until_every_chunk_is_stored(
    stack: Stack, sample_text: str
) -> None:
    doc_id = await _upload(stack, sample_text)
    for _ in range(3):  # ingest + 2 of 3 embed-chunk jobs
        await stack.worker.run_once()

    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.PROCESSING
    assert (await stack.queue.stats())["index"] == {}

    await stack.worker.run_once()
    assert (await stack.queue.stats())["index"] == {"pending": 1}


@pytest.mark.asyncio
async def test_redelivered_chunk_job_does_not_duplicate_index_job(
    stack: Stack, sample_text: str
) -> None:
    doc_id = await _upload(stack, sample_text)
    for _ in range(4):
        await stack.worker.run_once()
    chunk = (await stack.chunks.get_chunks(doc_id))[0]

    await stack.orchestrator.handle(
        EmbedChunkJob(document_id=doc_id, tenant_id="acme", chunk_index=0, text=chunk.text)
    )

    assert await stack.chunks.count_chunks(doc_id) == 3
    assert (await stack.queue.stats())["index"] == {"pending": 1}
    await stack.drain()
    doc = await stack.service.require_document(doc_id, "acme")
    assert doc.status == DocumentStatus.READY
    assert await stack.index.count("acme", doc_id) == 3


# ---------------------------------------------------------------------------
# Abort
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_abort_discards_in_flight_chunks(stack: Stack, sample_text: str) -> None:
    doc_id = await _upload(stack, sample_text)
    assert await stack.worker.run_once()  # ingest only

    aborted = await stack.service.abort(doc_id, "acme", actor_id="ops")
    await stack.drain()

    doc = await stack.service.require_document(doc_id, "acme")
    assert aborted.status == DocumentStatus.ERROR
    assert doc.status == DocumentStatus.ERROR
    assert doc.error_reason == "aborted by operator"
    assert await stack.index.count("acme", doc_id) == 0
    assert (await stack.queue.stats())["index"] == {}
    assert stack.audit.events[-1].action == AuditAction.DOCUMENT_ABORT


@pytest.mark.asyncio
async def test_abort_failed_document_is_a_no_op(stack: Stack, sample_text: str) -> None:
    doc_id = await _upload(stack, sample_text)
    await stack.worker.run_once()
    first = await stack.service.abort(doc_id, "acme", reason="first")

    second = await stack.service.abort(doc_id, "acme", reason="second")

    assert second.error_reason == first.error_reason == "first"


@pytest.mark.asyncio
async def test_abort_is_tenant_scoped(stack: Stack, sample_text: str) -> None:
    doc_id = await _upload(stack, sample_text)

    with pytest.raises(DocumentNotFoundError):
        await stack.service.abort(doc_id, "globex")


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_worker_pool_processes_upload(stack: Stack, sample_text: str) -> None:
    settings = stack.settings.model_copy(
        update={"worker_poll_interval": 0.01, "embed_concurrency": 2, "ingest_concurrency": 1}
    )
    pool = WorkerPool.from_settings(stack.queue, stack.orchestrator, settings)
    doc_id = await _upload(stack, sample_text)

    pool.start()
    assert pool.running
    try:
        for _ in range(500):
            doc = await stack.service.require_document(doc_id, "acme")
            if doc.status == DocumentStatus.READY:
                break
            await asyncio.sleep(0.01)
    finally:
        await pool.stop(timeout=5)

    assert doc.status == DocumentStatus.READY
    assert not pool.running
    assert await stack.index.count("acme", doc_id) == 3
