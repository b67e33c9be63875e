"""Upload handling: validate, deduplicate, store and enqueue.

An upload is validated synchronously (size, media type, non-empty) and
identified by the SHA-256 of its bytes.  If the tenant already holds a
document with the same checksum, the existing id is returned and nothing
new is stored or enqueued.  Otherwise the bytes go to the blob store, a
``Document`` is created in ``uploaded`` state and an ingest job is queued.

Two concurrent uploads of the same bytes both pass the checksum lookup;
the store's unique constraint lets only one create a record, and the loser
deletes its blob and reports the winner's id as a duplicate.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict

from docintel.models.audit import AuditAction, AuditEvent, AuditResult
from docintel.models.document import Document, DocumentStatus, new_document_id
from docintel.models.jobs import IngestJob
from docintel.services.extraction import normalize_media_type
from docintel.utils.errors import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    EmptyUploadError,
    FileTooLargeError,
    UnsupportedMediaTypeError,
    ValidationError,
)

if TYPE_CHECKING:
    from docintel.interfaces.audit_sink import IAuditSink
    from docintel.interfaces.blob_store import IBlobStore
    from docintel.interfaces.document_store import IDocumentStore
    from docintel.interfaces.job_queue import IJobQueue
    from docintel.services.extraction import TextExtractionService

logger = structlog.get_logger(logger_name=__name__)


def compute_checksum(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def ingest_dedup_key(document_id: str) -> str:
    return f"ingest:{document_id}"


class UploadResult(BaseModel):
    """Outcome of an upload."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    duplicate: bool = False
    status: DocumentStatus


class UploadService:
    """Accepts uploads and starts ingestion.

    Parameters
    ----------
    document_store:
        Document-of-record store.
    blob_store:
        Raw byte storage.
    queue:
        Job queue receiving the ingest job.
    extraction:
        Used only to check that the media type is supported.
    max_upload_bytes:
        Largest accepted upload.
    default_language:
        Language recorded when the caller does not declare one.
    audit_sink:
        Optional sink receiving ``document.upload`` events.
    """

    def __init__(
        self,
        document_store: IDocumentStore,
        blob_store: IBlobStore,
        queue: IJobQueue,
        extraction: TextExtractionService,
        max_upload_bytes: int = 50 * 1024 * 1024,
        default_language: str = "en",
        audit_sink: IAuditSink | None = None,
    ) -> None:
        self._documents = document_store
        self._blobs = blob_store
        self._queue = queue
        self._extraction = extraction
        self._max_upload_bytes = max_upload_bytes
        self._default_language = default_language
        self._audit = audit_sink

    # ------------------------------------------------------------------
    # Public API
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
        """Store an upload and enqueue its ingestion.

        Returns
        -------
        UploadResult
            The new document's id, or the existing id with
            ``duplicate=True``.

        Raises
        ------
        ValidationError
            If the upload is empty, too large, of an unsupported media
            type, or lacks a tenant or filename.
        """
        media_type = normalize_media_type(mime_type)
        try:
            self._validate(tenant_id, filename, data, media_type)
        except ValidationError as exc:
            logger.warning(
                "upload_rejected", tenant_id=tenant_id, filename=filename, reason=str(exc)
            )
            await self._emit(tenant_id, actor_id, "", AuditResult.FAILURE, {"reason": str(exc)})
            raise

        checksum = compute_checksum(data)
        existing = await self._documents.get_by_checksum(tenant_id, checksum)
        if existing is not None:
            return await self._duplicate(existing, actor_id)

        document_id = new_document_id()
        blob_path = await self._blobs.put(tenant_id, document_id, filename, data)
        document = Document(
            id=document_id,
            tenant_id=tenant_id,
            filename=filename,
            mime_type=media_type,
            size_bytes=len(data),
            checksum=checksum,
            language=language or self._default_language,
            blob_path=blob_path,
        )

        try:
            await self._documents.create(document)
        except DuplicateDocumentError as exc:
            await self._blobs.delete(blob_path)
            winner = (
                await self._documents.get(exc.existing_id, tenant_id) if exc.existing_id else None
            )
            if winner is None:
                raise
            return await self._duplicate(winner, actor_id)

        await self._queue.enqueue(
            IngestJob(document_id=document.id, tenant_id=tenant_id),
            dedup_key=ingest_dedup_key(document.id),
        )
        logger.info(
            "document_uploaded",
            document_id=document.id,
            tenant_id=tenant_id,
            filename=filename,
            mime_type=media_type,
            size_bytes=len(data),
        )
        await self._emit(
            tenant_id,
            actor_id,
            document.id,
            AuditResult.SUCCESS,
            {"filename": filename, "size_bytes": len(data), "mime_type": media_type},
        )
        return UploadResult(document_id=document.id, status=document.status)

    async def reprocess(self, document_id: str, tenant_id: str, actor_id: str | None = None) -> str | None:
        """Enqueue a fresh ingest of an existing document.

        Returns the job id, or ``None`` if an ingest is already queued.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist for *tenant_id*.
        """
        document = await self._documents.get(document_id, tenant_id)
        if document is None:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        job_id = await self._queue.enqueue(
            IngestJob(document_id=document_id, tenant_id=tenant_id),
            dedup_key=ingest_dedup_key(document_id),
        )
        logger.info("document_reprocess_requested", document_id=document_id, job_id=job_id)
        if self._audit is not None:
            await self._audit.emit(
                AuditEvent(
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                    action=AuditAction.DOCUMENT_REPROCESS,
                    resource=document_id,
                )
            )
        return job_id

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, tenant_id: str, filename: str, data: bytes, media_type: str) -> None:
        if not tenant_id or not tenant_id.strip():
            raise ValidationError(message="tenant_id is required")
        if not filename or not filename.strip():
            raise ValidationError(message="filename is required")
        if not data:
            raise EmptyUploadError()
        if len(data) > self._max_upload_bytes:
            raise FileTooLargeError(
                message=f"{len(data)} bytes exceeds the {self._max_upload_bytes}-byte limit"
            )
        if not self._extraction.supports(media_type):
            raise UnsupportedMediaTypeError(message=f"Unsupported media type '{media_type}'")

    async def _duplicate(self, document: Document, actor_id: str | None) -> UploadResult:
        requeued = None
        if document.status == DocumentStatus.UPLOADED:
            # An earlier upload may have stored the document without enqueuing its
            # ingest job; the dedup key makes this a no-op when the job exists.
            requeued = await self._queue.enqueue(
                IngestJob(document_id=document.id, tenant_id=document.tenant_id),
                dedup_key=ingest_dedup_key(document.id),
            )
        logger.info(
            "document_duplicate",
            document_id=document.id,
            tenant_id=document.tenant_id,
            ingest_requeued=requeued is not None,
        )
        await self._emit(document.tenant_id, actor_id, document.id, AuditResult.DUPLICATE, {})
        return UploadResult(document_id=document.id, duplicate=True, status=document.status)

    async def _emit(
        self,
        tenant_id: str,
        actor_id: str | None,
        resource: str,
        result: AuditResult,
        metadata: dict[str, object],
    ) -> None:
        if self._audit is None:
            return
        await self._audit.emit(
            AuditEvent(
                tenant_id=tenant_id or "unknown",
                actor_id=actor_id,
                action=AuditAction.DOCUMENT_UPLOAD,
                resource=resource,
                result=result,
                metadata=metadata,
            )
        )
