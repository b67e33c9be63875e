"""ChromaDB search index adapter.

Wraps ``chromadb.PersistentClient`` to implement
:class:`ISearchIndexProvider`.  Entries are stored with pre-computed
embeddings in a cosine-space collection; tenant, document and chunk index
live in metadata so every query and delete can be filtered by tenant.

ChromaDB's client is synchronous, so calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from docintel.interfaces.search_index_provider import ISearchIndexProvider
from docintel.models.search import SearchEntry, SearchHit, UpsertResult
from docintel.services.embedding_client import EmbeddingClient
from docintel.utils.errors import IndexUnavailableError
from docintel.utils.highlight import build_highlight

logger = structlog.get_logger(logger_name=__name__)


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Stops ChromaDB from loading its default model; embeddings are always supplied."""

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "docintel supplies pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBSearchIndex(ISearchIndexProvider):
    """Search index backed by a persistent ChromaDB collection.

    Parameters
    ----------
    embedding_client:
        Used to embed free-text queries when no vector is supplied.
    persist_directory:
        On-disk location of the ChromaDB database.
    collection_name:
        Collection holding every tenant's entries.
    batch_size:
        Maximum entries per ChromaDB upsert call.
    snippet_chars:
        Width of each highlight fragment.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "docintel_chunks",
        batch_size: int = 256,
        snippet_chars: int = 240,
    ) -> None:
        self._embedding_client = embedding_client
        self._batch_size = batch_size
        self._snippet_chars = snippet_chars
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        # A collection persisted with a different embedding function refuses
        # the no-op one; open it with whatever it was created with.
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )

    # ------------------------------------------------------------------
    # ISearchIndexProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, entries: list[SearchEntry]) -> UpsertResult:
        """Upsert entries in batches; a failed batch marks only its own ids as failed."""
        if not entries:
            return UpsertResult()

        succeeded: list[str] = []
        failed: dict[str, str] = {}
        for start in range(0, len(entries), self._batch_size):
            batch = entries[start : start + self._batch_size]
            try:
                await asyncio.to_thread(
                    self._collection.upsert,
                    ids=[e.id for e in batch],
                    embeddings=[e.embedding for e in batch],
                    documents=[e.content for e in batch],
                    metadatas=[self._entry_to_metadata(e) for e in batch],
                )
                succeeded.extend(e.id for e in batch)
            except Exception as exc:
                logger.warning(
                    "chromadb_upsert_batch_failed",
                    batch_start=start,
                    batch_size=len(batch),
                    error=str(exc),
                )
                failed.update({e.id: str(exc) for e in batch})

        result = UpsertResult(succeeded=succeeded, failed=failed)
        if result.is_total_failure:
            raise IndexUnavailableError(
                message=f"ChromaDB rejected all {len(entries)} entries",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "chromadb_upsert",
            succeeded=len(succeeded),
            failed=len(failed),
        )
        return result

    async def delete(self, ids: list[str], tenant_id: str) -> None:
        if not ids:
            return
        try:
            await asyncio.to_thread(
                self._collection.delete, ids=ids, where={"tenant_id": tenant_id}
            )
        except Exception as exc:
            raise IndexUnavailableError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete_by_document(self, tenant_id: str, document_id: str) -> int:
        where = self._where(tenant_id, document_id)
        try:
            existing = await asyncio.to_thread(self._collection.get, where=where, include=[])
            ids = existing["ids"] or []
            if ids:
                await asyncio.to_thread(self._collection.delete, ids=ids, where=where)
        except Exception as exc:
            raise IndexUnavailableError(
                message=f"ChromaDB delete_by_document failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info(
            "chromadb_delete_by_document",
            tenant_id=tenant_id,
            document_id=document_id,
            deleted_count=len(ids),
        )
        return len(ids)

    async def query(
        self,
        tenant_id: str,
        k: int,
        text: str | None = None,
        vector: list[float] | None = None,
    ) -> list[SearchHit]:
        if k <= 0 or (vector is None and not text):
            return []

        if vector is None:
            vector = await self._embedding_client.embed_one(text or "")

        try:
            results = await asyncio.to_thread(
                self._collection.query,
                query_embeddings=[vector],
                n_results=k,
                where={"tenant_id": tenant_id},
            )
        except Exception as exc:
            raise IndexUnavailableError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results["ids"] or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results["documents"] else [""] * len(ids)
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(ids)
        distances = results["distances"][0] if results["distances"] else [0.0] * len(ids)

        hits: list[SearchHit] = []
        for entry_id, content, meta, distance in zip(
            ids, documents, metadatas, distances, strict=True
        ):
            meta = meta or {}
            if meta.get("tenant_id") != tenant_id:
                logger.error("chromadb_tenant_filter_leak", entry_id=entry_id)
                continue
            hits.append(
                SearchHit(
                    id=entry_id,
                    tenant_id=tenant_id,
                    document_id=str(meta.get("document_id", "")),
                    chunk_index=int(meta.get("chunk_index", 0)),
                    content=content or "",
                    filename=str(meta.get("filename", "")),
                    score=max(0.0, min(1.0, 1.0 - float(distance))),
                    highlight=build_highlight(content or "", text, self._snippet_chars),
                )
            )

        logger.info(
            "chromadb_query",
            tenant_id=tenant_id,
            results_count=len(hits),
            top_score=hits[0].score if hits else 0.0,
        )
        return hits

    async def count(self, tenant_id: str, document_id: str | None = None) -> int:
        try:
            existing = await asyncio.to_thread(
                self._collection.get, where=self._where(tenant_id, document_id), include=[]
            )
        except Exception as exc:
            raise IndexUnavailableError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        return len(existing["ids"] or [])

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        return self._collection is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _where(tenant_id: str, document_id: str | None) -> dict[str, Any]:
        if document_id is None:
            return {"tenant_id": tenant_id}
        return {"$and": [{"tenant_id": tenant_id}, {"document_id": document_id}]}

    @staticmethod
    def _entry_to_metadata(entry: SearchEntry) -> dict[str, Any]:
        # ChromaDB metadata values must be str, int, float or bool.
        return {
            "tenant_id": entry.tenant_id,
            "document_id": entry.document_id,
            "chunk_index": entry.chunk_index,
            "filename": entry.filename,
        }
