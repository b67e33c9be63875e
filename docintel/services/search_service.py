"""Tenant-scoped semantic search over the search index.

Embeds the query through the embedding client and asks the index for the
best ``k`` entries of one tenant.  Any failure to reach the embedding
provider or the index surfaces as :class:`ServiceUnavailableError`, so
callers can tell "could not search" apart from "nothing found".
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from docintel.models.audit import AuditAction, AuditEvent, AuditResult
from docintel.utils.errors import DocIntelError, ServiceUnavailableError

if TYPE_CHECKING:
    from docintel.interfaces.audit_sink import IAuditSink
    from docintel.interfaces.search_index_provider import ISearchIndexProvider
    from docintel.models.search import SearchHit
    from docintel.services.embedding_client import EmbeddingClient

logger = structlog.get_logger(logger_name=__name__)


class SearchService:
    """Runs semantic queries against one tenant's indexed chunks.

    Parameters
    ----------
    search_index:
        The index to query.
    embedding_client:
        Embeds query text with the same model used at indexing time.
    audit_sink:
        Optional sink receiving a ``search.execute`` event per query.
    timeout:
        Seconds allowed for embedding plus index query.
    """

    def __init__(
        self,
        search_index: ISearchIndexProvider,
        embedding_client: EmbeddingClient,
        audit_sink: IAuditSink | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._index = search_index
        self._embedding_client = embedding_client
        self._audit = audit_sink
        self._timeout = timeout

    async def search(
        self,
        tenant_id: str,
        query: str,
        k: int = 10,
        actor_id: str | None = None,
    ) -> list[SearchHit]:
        """Return up to *k* hits for *query* within *tenant_id*, best first.

        An empty query or a non-positive *k* returns an empty list without
        touching any provider.

        Raises
        ------
        ServiceUnavailableError
            If the embedding provider or the index could not be reached.
        """
        query = query.strip()
        if not query or k <= 0:
            return []

        try:
            hits = await asyncio.wait_for(self._query(tenant_id, query, k), timeout=self._timeout)
        except (DocIntelError, asyncio.TimeoutError) as exc:
            logger.error("search_unavailable", tenant_id=tenant_id, error=str(exc))
            await self._emit(tenant_id, actor_id, AuditResult.FAILURE, {"error": str(exc)})
            raise ServiceUnavailableError(
                message=f"Search is unavailable: {exc}",
                provider_name=self._index.get_provider_name(),
            ) from exc

        logger.info(
            "search_executed",
            tenant_id=tenant_id,
            query_length=len(query),
            results_count=len(hits),
        )
        await self._emit(tenant_id, actor_id, AuditResult.SUCCESS, {"results": len(hits)})
        return hits

    async def _query(self, tenant_id: str, query: str, k: int) -> list[SearchHit]:
        vector = await self._embedding_client.embed_one(query)
        hits = await self._index.query(tenant_id, k, text=query, vector=vector)
        return [hit for hit in hits if hit.tenant_id == tenant_id][:k]

    async def _emit(
        self,
        tenant_id: str,
        actor_id: str | None,
        result: AuditResult,
        metadata: dict[str, object],
    ) -> None:
        if self._audit is None:
            return
        await self._audit.emit(
            AuditEvent(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action=AuditAction.SEARCH_EXECUTE,
                result=result,
                metadata=metadata,
            )
        )
