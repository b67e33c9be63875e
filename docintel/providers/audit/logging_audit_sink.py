"""Audit sink that writes events to the structured log.

Durable audit storage is an external collaborator; this sink hands events
to it through the log pipeline (JSON in production).  A failure to emit is
logged and swallowed so auditing never breaks the audited operation.
"""

from __future__ import annotations

import structlog

from docintel.interfaces.audit_sink import IAuditSink
from docintel.models.audit import AuditEvent

logger = structlog.get_logger(logger_name=__name__)


class LoggingAuditSink(IAuditSink):
    """Emits each :class:`AuditEvent` as an ``audit_event`` log line."""

    async def emit(self, event: AuditEvent) -> None:
        try:
            logger.info("audit_event", **event.model_dump(mode="json"))
        except Exception as exc:  # noqa: BLE001
            logger.warning("audit_emit_failed", action=event.action.value, error=str(exc))
