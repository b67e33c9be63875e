"""Abstract base class for audit event sinks.

Emitting an event must never fail the operation being audited.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docintel.models.audit import AuditEvent


class IAuditSink(ABC):
    """Contract for the external audit collaborator."""

    @abstractmethod
    async def emit(self, event: AuditEvent) -> None:
        """Record *event*; implementations log and drop their own failures."""
