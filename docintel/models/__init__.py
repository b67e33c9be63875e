"""Pydantic v2 data models for documents, jobs, search and QA."""

from docintel.models.audit import AuditAction, AuditEvent, AuditResult
from docintel.models.document import (
    Chunk,
    ChunkFailure,
    Document,
    DocumentStatus,
    chunk_id_for,
)
from docintel.models.jobs import (
    DeadLetter,
    EmbedChunkJob,
    IndexJob,
    IngestJob,
    Job,
    JobStage,
    QueuedJob,
    RetryPolicy,
    parse_job,
)
from docintel.models.qa import Citation, ContextBlock, ContextWindow, QAOutcome, QAResult
from docintel.models.search import SearchEntry, SearchHit, UpsertResult

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditResult",
    "Chunk",
    "ChunkFailure",
    "Citation",
    "ContextBlock",
    "ContextWindow",
    "DeadLetter",
    "Document",
    "DocumentStatus",
    "EmbedChunkJob",
    "IndexJob",
    "IngestJob",
    "Job",
    "JobStage",
    "QAOutcome",
    "QAResult",
    "QueuedJob",
    "RetryPolicy",
    "SearchEntry",
    "SearchHit",
    "UpsertResult",
    "chunk_id_for",
    "parse_job",
]
