"""Document intelligence facade.

The single entry point a presentation layer (HTTP API, CLI, chat bot)
talks to.  It owns no logic of its own beyond tenant scoping and audit;
each call is delegated to the service that implements it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from docintel.models.audit import AuditAction, AuditEvent
from docintel.utils.errors import DocumentNotFoundError

if TYPE_CHECKING:
    from docintel.interfaces.audit_sink import IAuditSink
    from docintel.interfaces.document_store import IDocumentStore
    from docintel.interfaces.job_queue import IJobQueue
    from docintel.models.document import Document, DocumentStatus
    from docintel.models.qa import QAResult
    from docintel.models.search import SearchHit
    from docintel.pipeline.orchestrator import IngestionOrchestrator
    from docintel.services.qa_service import QAService
    from docintel.services.search_service import SearchService
    from docintel.services.upload_service import UploadResult, UploadService

logger = structlog.get_logger(logger_name=__name__)


class DocumentIntelligenceService:
    """Tenant-scoped upload, search, question answering and document admin."""

    def __init__(
        self,
        upload_service: UploadService,
        search_service: SearchService,
        qa_service: QAService,
        document_store: IDocumentStore,
        orchestrator: IngestionOrchestrator,
        queue: IJobQueue,
        audit_sink: IAuditSink | None = None,
    ) -> None:
        self._uploads = upload_service
        self._search = search_service
        self._qa = qa_service
        self._documents = document_store
        self._orchestrator = orchestrator
        self._queue = queue
        self._audit = audit_sink

    # ------------------------------------------------------------------
    # Presentation-facing operations
    # ------------------------------------------------------------------

    async def upload(
        self,
        tenant_id: str,
        filename: str,
        data: bytes,
        mime_type: str,
        language: str | None = None,
        actor_id: str | None = None,
    ) -> UploadResult:
        return await self._uploads.upload(
            tenant_id, filename, data, mime_type, language=language, actor_id=actor_id
        )

    async def search(
        self,
        tenant_id: str,
        query: str,
        k: int = 10,
        actor_id: str | None = None,
    ) -> list[SearchHit]:
        return await self._search.search(tenant_id, query, k, actor_id)

    async def ask(
        self,
        question: str,
        tenant_id: str,
        k: int | None = None,
        actor_id: str | None = None,
    ) -> QAResult:
        return await self._qa.ask(question, tenant_id, k=k, actor_id=actor_id)

    # ------------------------------------------------------------------
    # Document administration
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str, tenant_id: str) -> Document | None:
        return await self._documents.get(document_id, tenant_id)

    async def list_documents(
        self,
        tenant_id: str,
        status: DocumentStatus | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        return await self._documents.query_by_tenant(tenant_id, status=status, limit=limit)

    async def abort(
        self,
        document_id: str,
        tenant_id: str,
        reason: str = "aborted by operator",
        actor_id: str | None = None,
    ) -> Document:
        """Stop processing a document; it ends in ``error``.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist for *tenant_id*.
        """
        document = await self._orchestrator.abort(document_id, tenant_id, reason)
        if self._audit is not None:
            await self._audit.emit(
                AuditEvent(
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                    action=AuditAction.DOCUMENT_ABORT,
                    resource=document_id,
                    metadata={"reason": reason},
                )
            )
        return document

    async def reprocess(
        self,
        document_id: str,
        tenant_id: str,
        actor_id: str | None = None,
    ) -> str | None:
        """Re-run ingestion for a document; returns the ingest job id.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist for *tenant_id*.
        """
        return await self._uploads.reprocess(document_id, tenant_id, actor_id=actor_id)

    async def require_document(self, document_id: str, tenant_id: str) -> Document:
        document = await self.get_document(document_id, tenant_id)
        if document is None:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        return document

    async def queue_stats(self) -> dict[str, dict[str, int]]:
        stats = await self._queue.stats()
        logger.debug("queue_stats", stats=stats)
        return stats
