"""Unit tests for SQLiteJobQueue leasing, retry and dead-letter handling."""

from __future__ import annotations

import pytest

from docintel.models.jobs import EmbedChunkJob, IndexJob, IngestJob, JobStage
from docintel.providers.storage.sqlite_job_queue import SQLiteJobQueue

_ALL = list(JobStage)


def _ingest(doc: str = "doc-1") -> IngestJob:
    return IngestJob(document_id=doc, tenant_id="acme")


@pytest.mark.asyncio
async def test_enqueue_then_dequeue(job_queue: SQLiteJobQueue) -> None:
    job_id = await job_queue.enqueue(_ingest())

    leased = await job_queue.dequeue(_ALL, visibility_timeout=60)

    assert leased is not None
    assert leased.job_id == job_id
    assert leased.job == _ingest()
    assert leased.attempt == 1
    assert await job_queue.dequeue(_ALL, visibility_timeout=60) is None


@pytest.mark.asyncio
async def test_dequeue_filters_by_stage(job_queue: SQLiteJobQueue) -> None:
    await job_queue.enqueue(IndexJob(document_id="d", tenant_id="acme"))

    assert await job_queue.dequeue([JobStage.INGEST], visibility_timeout=60) is None
    leased = await job_queue.dequeue([JobStage.INDEX], visibility_timeout=60)
    assert leased is not None
    assert leased.stage is JobStage.INDEX


@pytest.mark.asyncio
async def test_dedup_key_suppresses_live_duplicates(job_queue: SQLiteJobQueue) -> None:
    first = await job_queue.enqueue(IndexJob(document_id="d", tenant_id="t"), dedup_key="index:d")
    second = await job_queue.enqueue(IndexJob(document_id="d", tenant_id="t"), dedup_key="index:d")

    assert first is not None
    assert second is None
    assert (await job_queue.stats())["index"] == {"pending": 1}


@pytest.mark.asyncio
async def test_dedup_key_is_reusable_after_ack(job_queue: SQLiteJobQueue) -> None:
    await job_queue.enqueue(_ingest(), dedup_key="ingest:doc-1")
    leased = await job_queue.dequeue(_ALL, visibility_timeout=60)
    assert leased is not None
    await job_queue.ack(leased.job_id)

    assert await job_queue.enqueue(_ingest(), dedup_key="ingest:doc-1") is not None


@pytest.mark.asyncio
async def test_enqueue_many_reports_skipped_duplicates(job_queue: SQLiteJobQueue) -> None:
    jobs = [
        (EmbedChunkJob(document_id="d", tenant_id="t", chunk_index=i, text=f"c{i}"), f"embed:d:{i}")
        for i in range(3)
    ]
    await job_queue.enqueue(jobs[1][0], dedup_key=jobs[1][1])

    ids = await job_queue.enqueue_many(jobs)

    assert ids[0] is not None
    assert ids[1] is None
    assert ids[2] is not None


@pytest.mark.asyncio
async def test_expired_lease_is_delivered_again(job_queue: SQLiteJobQueue) -> None:
    await job_queue.enqueue(_ingest())

    first = await job_queue.dequeue(_ALL, visibility_timeout=0)
    second = await job_queue.dequeue(_ALL, visibility_timeout=60)

    assert first is not None and second is not None
    assert second.job_id == first.job_id
    assert second.attempt == 2


@pytest.mark.asyncio
async def test_retry_delays_and_records_error(job_queue: SQLiteJobQueue) -> None:
    await job_queue.enqueue(_ingest())
    leased = await job_queue.dequeue(_ALL, visibility_timeout=60)
    assert leased is not None

    await job_queue.retry(leased.job_id, delay=3600, error="timeout")
    assert await job_queue.dequeue(_ALL, visibility_timeout=60) is None

    await job_queue.retry(leased.job_id, delay=0, error="timeout")
    again = await job_queue.dequeue(_ALL, visibility_timeout=60)
    assert again is not None
    assert again.attempt == 2
    assert again.last_error == "timeout"


@pytest.mark.asyncio
async def test_dead_letter_and_requeue(job_queue: SQLiteJobQueue) -> None:
    await job_queue.enqueue(_ingest(), dedup_key="ingest:doc-1")
    leased = await job_queue.dequeue(_ALL, visibility_timeout=60)
    assert leased is not None

    await job_queue.dead_letter(leased.job_id, reason="corrupt pdf")

    letters = await job_queue.list_dead_letters()
    assert len(letters) == 1
    assert letters[0].reason == "corrupt pdf"
    assert letters[0].attempt == 1
    assert await job_queue.list_dead_letters(JobStage.INDEX) == []
    assert await job_queue.dequeue(_ALL, visibility_timeout=60) is None

    assert await job_queue.requeue_dead_letter(leased.job_id)
    requeued = await job_queue.dequeue(_ALL, visibility_timeout=60)
    assert requeued is not None
    assert requeued.job_id == leased.job_id
    assert requeued.attempt == 1


@pytest.mark.asyncio
async def test_dead_letter_frees_dedup_key(job_queue: SQLiteJobQueue) -> None:
    await job_queue.enqueue(_ingest(), dedup_key="ingest:doc-1")
    leased = await job_queue.dequeue(_ALL, visibility_timeout=60)
    assert leased is not None
    await job_queue.dead_letter(leased.job_id, reason="boom")

    assert await job_queue.enqueue(_ingest(), dedup_key="ingest:doc-1") is not None
    assert not await job_queue.requeue_dead_letter(leased.job_id)


@pytest.mark.asyncio
async def test_requeue_unknown_job_returns_false(job_queue: SQLiteJobQueue) -> None:
    assert not await job_queue.requeue_dead_letter("missing")


@pytest.mark.asyncio
async def test_stats_lists_every_stage(job_queue: SQLiteJobQueue) -> None:
    await job_queue.enqueue(_ingest("a"))
    await job_queue.enqueue(_ingest("b"))
    await job_queue.dequeue([JobStage.INGEST], visibility_timeout=60)

    stats = await job_queue.stats()

    assert stats["ingest"] == {"pending": 1, "leased": 1}
    assert stats["embed-chunk"] == {}
    assert stats["index"] == {}
