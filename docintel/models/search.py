"""Search index models.

:class:`SearchEntry` is the projection of a :class:`~docintel.models.document.Chunk`
written to the index; its ``id`` equals the chunk id so re-indexing
overwrites.  :class:`UpsertResult` reports per-entry outcome of a write so
partial failures are visible to the orchestrator.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from docintel.models.document import Chunk


class SearchEntry(BaseModel):
    """One indexed chunk."""

    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    document_id: str
    chunk_index: int = Field(ge=0)
    content: str
    embedding: list[float]
    filename: str = ""

    @classmethod
    def from_chunk(cls, chunk: Chunk, filename: str = "") -> SearchEntry:
        return cls(
            id=chunk.id,
            tenant_id=chunk.tenant_id,
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            content=chunk.text,
            embedding=list(chunk.embedding),
            filename=filename,
        )


class SearchHit(BaseModel):
    """A ranked search result."""

    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    document_id: str
    chunk_index: int = Field(ge=0)
    content: str
    filename: str = ""
    score: float = Field(ge=0.0, le=1.0, description="Relevance, 1.0 = identical.")
    highlight: str = Field(default="", description="Snippet with <mark> around query terms.")


class UpsertResult(BaseModel):
    """Outcome of a batched index write."""

    model_config = ConfigDict(frozen=True)

    succeeded: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(
        default_factory=dict, description="Entry id mapped to its failure reason."
    )

    @property
    def is_complete(self) -> bool:
        return not self.failed

    @property
    def is_total_failure(self) -> bool:
        return bool(self.failed) and not self.succeeded
