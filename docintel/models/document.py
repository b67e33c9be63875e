"""Document and chunk models for the ingestion pipeline.

A :class:`Document` is created by the upload handler in ``uploaded`` state
and advanced by the ingestion orchestrator through ``processing`` to
``ready`` (searchable) or ``error``.  All models are frozen; status changes
go through :meth:`Document.transition`, which returns a new instance and
refuses moves the state machine does not allow.

Chunks are keyed by ``(document_id, chunk_index)``.  Their ``id`` is derived
from that key, so re-running any stage overwrites instead of duplicating.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from docintel.models.jobs import JobStage
from docintel.utils.errors import InvalidStatusTransitionError


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_document_id() -> str:
    return str(uuid.uuid4())


def chunk_id_for(document_id: str, chunk_index: int) -> str:
    """Return the deterministic id shared by a chunk and its search entry."""
    return f"{document_id}-{chunk_index}"


# ---------------------------------------------------------------------------
# DocumentStatus: the lifecycle state machine.
# ---------------------------------------------------------------------------
class DocumentStatus(str, Enum):  # noqa: UP042
    """Lifecycle of an uploaded document.

        UPLOADED → PROCESSING → READY
                        ↓
                      ERROR

    READY documents return to PROCESSING when re-ingested; ERROR documents
    may be re-ingested too.
    """

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


_ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.UPLOADED: frozenset({DocumentStatus.PROCESSING, DocumentStatus.ERROR}),
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.PROCESSING, DocumentStatus.READY, DocumentStatus.ERROR}
    ),
    DocumentStatus.READY: frozenset(
        {DocumentStatus.PROCESSING, DocumentStatus.READY, DocumentStatus.ERROR}
    ),
    DocumentStatus.ERROR: frozenset(
        {DocumentStatus.PROCESSING, DocumentStatus.READY, DocumentStatus.ERROR}
    ),
}


class Document(BaseModel):
    """An uploaded file and its processing state."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_document_id, description="Document UUID.")
    tenant_id: str = Field(min_length=1, description="Owning tenant; partitions every query.")
    filename: str = Field(min_length=1, description="Original filename as uploaded.")
    mime_type: str = Field(description="Normalised media type, e.g. 'application/pdf'.")
    size_bytes: int = Field(ge=0, description="Size of the uploaded bytes.")
    checksum: str = Field(
        min_length=64, max_length=64, description="SHA-256 hex digest of the content."
    )
    status: DocumentStatus = Field(default=DocumentStatus.UPLOADED)
    language: str = Field(default="en", description="Declared document language.")
    blob_path: str = Field(default="", description="Location of the raw bytes in the blob store.")
    chunk_count: int | None = Field(
        default=None, ge=0, description="Number of chunks produced by the last ingest."
    )
    text_length: int | None = Field(
        default=None, ge=0, description="Length of the extracted text."
    )
    error_reason: str | None = Field(default=None, description="Why processing failed.")
    error_stage: JobStage | None = Field(
        default=None, description="Stage that moved the document to ERROR."
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def can_transition(self, status: DocumentStatus, stage: JobStage | None = None) -> bool:
        """Return True when moving to *status* is allowed from the current state.

        ``ERROR → READY`` is only reachable from an indexing failure: a
        later indexing attempt succeeded.  A document failed by chunk
        embedding or by an operator abort never becomes READY without a
        fresh ingest.
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            return False
        if self.status == DocumentStatus.ERROR and status == DocumentStatus.READY:
            return self.error_stage == JobStage.INDEX and stage == JobStage.INDEX
        return True

    def transition(
        self,
        status: DocumentStatus,
        *,
        reason: str | None = None,
        stage: JobStage | None = None,
    ) -> Document:
        """Return a copy of this document in *status*.

        Parameters
        ----------
        status:
            Target status.
        reason:
            Human-readable failure reason; required semantics only for ERROR.
        stage:
            Stage performing the transition.  Recorded as ``error_stage``
            when moving to ERROR.

        Raises
        ------
        InvalidStatusTransitionError
            If the state machine does not allow the move.
        """
        if not self.can_transition(status, stage):
            raise InvalidStatusTransitionError(
                message=(
                    f"Document {self.id} cannot move from "
                    f"{self.status.value} to {status.value}"
                ),
            )

        update: dict[str, object] = {"status": status, "updated_at": utcnow()}
        if status == DocumentStatus.ERROR:
            update["error_reason"] = reason or "processing failed"
            update["error_stage"] = stage
        else:
            update["error_reason"] = None
            update["error_stage"] = None
        return self.model_copy(update=update)


# ---------------------------------------------------------------------------
# Chunk: one embedded window of a document's text.
# ---------------------------------------------------------------------------
class Chunk(BaseModel):
    """A contiguous slice of a document's text and its embedding."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    tenant_id: str
    chunk_index: int = Field(ge=0)
    text: str
    embedding: list[float] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return chunk_id_for(self.document_id, self.chunk_index)


class ChunkFailure(BaseModel):
    """Marker for a chunk whose embed job failed permanently."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_index: int = Field(ge=0)
    reason: str
    created_at: datetime = Field(default_factory=utcnow)
