"""Audit event model.

Events are emitted to an :class:`~docintel.interfaces.audit_sink.IAuditSink`;
persisting them belongs to the external audit collaborator.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditAction(str, Enum):  # noqa: UP042
    DOCUMENT_UPLOAD = "document.upload"
    DOCUMENT_ABORT = "document.abort"
    DOCUMENT_REPROCESS = "document.reprocess"
    SEARCH_EXECUTE = "search.execute"
    QUESTION_ANSWER = "question.answer"


class AuditResult(str, Enum):  # noqa: UP042
    SUCCESS = "success"
    FAILURE = "failure"
    DUPLICATE = "duplicate"


class AuditEvent(BaseModel):
    """A single auditable action."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    actor_id: str | None = None
    action: AuditAction
    resource: str = Field(default="", description="Id of the affected resource, if any.")
    result: AuditResult = AuditResult.SUCCESS
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
