"""Abstract base class for the document metadata store.

Holds :class:`~docintel.models.document.Document` records.  Every read is
partitioned by ``tenant_id``, and ``(tenant_id, checksum)`` is unique.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docintel.models.document import Document, DocumentStatus


# Concrete implementation: SQLiteDocumentStore (docintel/providers/storage/)
class IDocumentStore(ABC):
    """Contract for document metadata persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def create(self, document: Document) -> Document:
        """Insert a new document.

        Raises
        ------
        docintel.utils.errors.DuplicateDocumentError
            If the tenant already has a document with the same checksum.
        """

    @abstractmethod
    async def get(self, document_id: str, tenant_id: str) -> Document | None:
        """Return the document, or ``None`` if it does not exist for *tenant_id*."""

    @abstractmethod
    async def get_by_checksum(self, tenant_id: str, checksum: str) -> Document | None:
        """Return the tenant's document with *checksum*, if any."""

    @abstractmethod
    async def update(self, document: Document) -> Document:
        """Replace the stored record for ``document.id``.

        Raises
        ------
        docintel.utils.errors.DocumentNotFoundError
            If no record exists for the id and tenant.
        """

    @abstractmethod
    async def query_by_tenant(
        self,
        tenant_id: str,
        status: DocumentStatus | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Return the tenant's documents, newest first, optionally by status."""
