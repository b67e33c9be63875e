"""Unit tests for the SQLite document / chunk stores and the filesystem blob store."""

from __future__ import annotations

import hashlib

import pytest

from docintel.models.document import Chunk, ChunkFailure, Document, DocumentStatus
from docintel.models.jobs import JobStage
from docintel.providers.storage.filesystem_blob_store import FilesystemBlobStore
from docintel.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from docintel.providers.storage.sqlite_document_store import SQLiteDocumentStore
from docintel.utils.errors import BlobNotFoundError, DocumentNotFoundError, DuplicateDocumentError


def _document(tenant: str = "acme", content: bytes = b"hello", filename: str = "a.txt") -> Document:
    return Document(
        tenant_id=tenant,
        filename=filename,
        mime_type="text/plain",
        size_bytes=len(content),
        checksum=hashlib.sha256(content).hexdigest(),
    )


# ---------------------------------------------------------------------------
# SQLiteDocumentStore
# ---------------------------------------------------------------------------


class TestDocumentStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, document_store: SQLiteDocumentStore) -> None:
        doc = await document_store.create(_document())

        fetched = await document_store.get(doc.id, "acme")

        assert fetched is not None
        assert fetched.id == doc.id
        assert fetched.status == DocumentStatus.UPLOADED
        assert fetched.chunk_count is None

    @pytest.mark.asyncio
    async def test_get_is_tenant_scoped(self, document_store: SQLiteDocumentStore) -> None:
        doc = await document_store.create(_document())
        assert await document_store.get(doc.id, "other-tenant") is None

    @pytest.mark.asyncio
    async def test_duplicate_checksum_in_same_tenant(
        self, document_store: SQLiteDocumentStore
    ) -> None:
        first = await document_store.create(_document())

        with pytest.raises(DuplicateDocumentError) as exc_info:
            await document_store.create(_document(filename="copy.txt"))

        assert exc_info.value.existing_id == first.id

    @pytest.mark.asyncio
    async def test_same_checksum_in_different_tenants(
        self, document_store: SQLiteDocumentStore
    ) -> None:
        await document_store.create(_document(tenant="acme"))
        await document_store.create(_document(tenant="globex"))

        assert len(await document_store.query_by_tenant("acme")) == 1
        assert len(await document_store.query_by_tenant("globex")) == 1

    @pytest.mark.asyncio
    async def test_get_by_checksum(self, document_store: SQLiteDocumentStore) -> None:
        doc = await document_store.create(_document())

        found = await document_store.get_by_checksum("acme", doc.checksum)

        assert found is not None and found.id == doc.id
        assert await document_store.get_by_checksum("globex", doc.checksum) is None

    @pytest.mark.asyncio
    async def test_update_persists_status_and_error(
        self, document_store: SQLiteDocumentStore
    ) -> None:
        doc = await document_store.create(_document())
        failed = doc.transition(DocumentStatus.ERROR, reason="bad bytes", stage=JobStage.INGEST)

        await document_store.update(failed.model_copy(update={"chunk_count": 3}))
        fetched = await document_store.get(doc.id, "acme")

        assert fetched is not None
        assert fetched.status == DocumentStatus.ERROR
        assert fetched.error_reason == "bad bytes"
        assert fetched.error_stage == JobStage.INGEST
        assert fetched.chunk_count == 3

    @pytest.mark.asyncio
    async def test_update_missing_document_raises(
        self, document_store: SQLiteDocumentStore
    ) -> None:
        with pytest.raises(DocumentNotFoundError):
            await document_store.update(_document())

    @pytest.mark.asyncio
    async def test_query_by_status_and_limit(self, document_store: SQLiteDocumentStore) -> None:
        first = await document_store.create(_document(content=b"one"))
        await document_store.create(_document(content=b"two"))
        await document_store.create(_document(content=b"three"))
        await document_store.update(first.transition(DocumentStatus.PROCESSING))

        processing = await document_store.query_by_tenant("acme", status=DocumentStatus.PROCESSING)
        limited = await document_store.query_by_tenant("acme", limit=2)

        assert [d.id for d in processing] == [first.id]
        assert len(limited) == 2


# ---------------------------------------------------------------------------
# SQLiteChunkStore
# ---------------------------------------------------------------------------


def _chunk(index: int, text: str = "text", doc: str = "doc-1") -> Chunk:
    return Chunk(document_id=doc, tenant_id="acme", chunk_index=index, text=text, embedding=[0.1, 0.2])


class TestChunkStore:
    @pytest.mark.asyncio
    async def test_upsert_overwrites_same_index(self, chunk_store: SQLiteChunkStore) -> None:
        await chunk_store.upsert_chunk(_chunk(0, "old"))
        await chunk_store.upsert_chunk(_chunk(0, "new"))

        chunks = await chunk_store.get_chunks("doc-1")

        assert len(chunks) == 1
        assert chunks[0].text == "new"
        assert chunks[0].embedding == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_chunks_are_ordered_by_index(self, chunk_store: SQLiteChunkStore) -> None:
        for i in (2, 0, 1):
            await chunk_store.upsert_chunk(_chunk(i))

        assert [c.chunk_index for c in await chunk_store.get_chunks("doc-1")] == [0, 1, 2]
        assert await chunk_store.count_chunks("doc-1") == 3
        assert await chunk_store.count_chunks("doc-2") == 0

    @pytest.mark.asyncio
    async def test_delete_chunks_from(self, chunk_store: SQLiteChunkStore) -> None:
        for i in range(4):
            await chunk_store.upsert_chunk(_chunk(i))
        await chunk_store.upsert_chunk(_chunk(3, doc="doc-2"))

        deleted = await chunk_store.delete_chunks_from("doc-1", 2)

        assert deleted == 2
        assert await chunk_store.count_chunks("doc-1") == 2
        assert await chunk_store.count_chunks("doc-2") == 1

    @pytest.mark.asyncio
    async def test_failures_are_recorded_and_cleared(self, chunk_store: SQLiteChunkStore) -> None:
        await chunk_store.record_failure(ChunkFailure(document_id="doc-1", chunk_index=2, reason="x"))
        await chunk_store.record_failure(ChunkFailure(document_id="doc-1", chunk_index=2, reason="y"))

        failures = await chunk_store.get_failures("doc-1")
        assert len(failures) == 1
        assert failures[0].reason == "y"

        await chunk_store.clear_failures("doc-1")
        assert await chunk_store.get_failures("doc-1") == []


# ---------------------------------------------------------------------------
# FilesystemBlobStore
# ---------------------------------------------------------------------------


class TestBlobStore:
    @pytest.mark.asyncio
    async def test_put_then_get(self, blob_store: FilesystemBlobStore) -> None:
        path = await blob_store.put("acme", "doc-1", "report.pdf", b"%PDF-1.7")

        assert path == "acme/doc-1/report.pdf"
        assert await blob_store.get(path) == b"%PDF-1.7"

    @pytest.mark.asyncio
    async def test_unsafe_names_are_sanitised(self, blob_store: FilesystemBlobStore) -> None:
        path = await blob_store.put("../evil", "doc-1", "../../etc/passwd", b"x")

        assert ".." not in path
        assert await blob_store.get(path) == b"x"

    @pytest.mark.asyncio
    async def test_path_escaping_root_is_refused(self, blob_store: FilesystemBlobStore) -> None:
        with pytest.raises(BlobNotFoundError, match="escapes"):
            await blob_store.get("../../outside.txt")

    @pytest.mark.asyncio
    async def test_missing_blob(self, blob_store: FilesystemBlobStore) -> None:
        with pytest.raises(BlobNotFoundError):
            await blob_store.get("acme/nope/file.txt")

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, blob_store: FilesystemBlobStore) -> None:
        path = await blob_store.put("acme", "doc-1", "a.txt", b"data")

        await blob_store.delete(path)
        await blob_store.delete(path)

        with pytest.raises(BlobNotFoundError):
            await blob_store.get(path)
