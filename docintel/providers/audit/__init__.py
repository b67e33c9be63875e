"""Audit sinks."""

from docintel.providers.audit.logging_audit_sink import LoggingAuditSink

__all__ = ["LoggingAuditSink"]
