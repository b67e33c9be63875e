"""Abstract base class for chunk persistence.

Chunk records are keyed by ``(document_id, chunk_index)``; writes overwrite.
Failure markers record chunks whose embed job failed permanently so the
join can tell "finished" from "still running".
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docintel.models.document import Chunk, ChunkFailure


# Concrete implementation: SQLiteChunkStore (docintel/providers/storage/)
class IChunkStore(ABC):
    """Contract for chunk records and chunk failure markers."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def upsert_chunk(self, chunk: Chunk) -> None:
        """Insert or replace the record for ``(chunk.document_id, chunk.chunk_index)``."""

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return the document's chunks ordered by ``chunk_index``."""

    @abstractmethod
    async def count_chunks(self, document_id: str) -> int:
        """Return the number of chunk records for a document."""

    @abstractmethod
    async def delete_chunks_from(self, document_id: str, first_index: int) -> int:
        """Delete records with ``chunk_index >= first_index``; return how many."""

    @abstractmethod
    async def record_failure(self, failure: ChunkFailure) -> None:
        """Insert or replace a failure marker for one chunk."""

    @abstractmethod
    async def get_failures(self, document_id: str) -> list[ChunkFailure]:
        """Return the document's failure markers ordered by ``chunk_index``."""

    @abstractmethod
    async def clear_failures(self, document_id: str) -> None:
        """Delete every failure marker of a document."""
