"""Abstract base class for search-index providers.

The search index holds one :class:`~docintel.models.search.SearchEntry` per
chunk and answers tenant-scoped vector queries.  Implementations may wrap
ChromaDB (local), a managed vector service, or an in-memory fake in tests.

Every write and query is partitioned by ``tenant_id`` at the filter level;
a query for tenant A must never return tenant B's entries.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docintel.models.search import SearchEntry, SearchHit, UpsertResult


# Concrete implementation: ChromaDBSearchIndex (docintel/providers/search_index/)
class ISearchIndexProvider(ABC):
    """Contract for the search index used by indexing and retrieval."""

    @abstractmethod
    async def upsert(self, entries: list[SearchEntry]) -> UpsertResult:
        """Insert or replace entries by id.

        Parameters
        ----------
        entries:
            Entries to write.  Writing an id that already exists replaces
            the previous entry.

        Returns
        -------
        UpsertResult
            Which ids were written and which failed.  Partial failure is
            reported here rather than raised.

        Raises
        ------
        docintel.utils.errors.IndexUnavailableError
            If no entry at all could be written.
        """

    @abstractmethod
    async def delete(self, ids: list[str], tenant_id: str) -> None:
        """Delete entries by id within *tenant_id*; unknown ids are ignored."""

    @abstractmethod
    async def delete_by_document(self, tenant_id: str, document_id: str) -> int:
        """Delete every entry of a document and return how many were removed."""

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        k: int,
        text: str | None = None,
        vector: list[float] | None = None,
    ) -> list[SearchHit]:
        """Return up to *k* hits for *tenant_id*, best first.

        Parameters
        ----------
        tenant_id:
            Tenant whose entries are searched.  Applied as a filter.
        k:
            Maximum number of hits.
        text:
            Free-text query.  Embedded by the provider when *vector* is not
            given, and used to build highlights.
        vector:
            Pre-computed query embedding.

        Raises
        ------
        docintel.utils.errors.IndexUnavailableError
            If the index cannot be reached.
        """

    @abstractmethod
    async def count(self, tenant_id: str, document_id: str | None = None) -> int:
        """Return the number of entries for a tenant, optionally one document."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the index is initialised and usable."""
