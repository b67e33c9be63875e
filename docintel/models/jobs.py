"""Queue job models for the staged ingestion pipeline.

Each stage has its own job variant carrying only what that stage needs.
The ``stage`` tag holds the :class:`JobStage` value.
The variants form a tagged union discriminated on ``stage``; the queue
stores the JSON form and :data:`JOB_ADAPTER` parses it back into the right
class.  Workers dispatch on ``job.stage``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class JobStage(str, Enum):  # noqa: UP042
    """Pipeline stages, in execution order."""

    INGEST = "ingest"
    EMBED_CHUNK = "embed-chunk"
    INDEX = "index"


class IngestJob(BaseModel):
    """Extract and chunk an uploaded document, then fan out chunk jobs."""

    model_config = ConfigDict(frozen=True)

    stage: Literal["ingest"] = "ingest"
    document_id: str
    tenant_id: str


class EmbedChunkJob(BaseModel):
    """Embed one chunk of a document and persist it."""

    model_config = ConfigDict(frozen=True)

    stage: Literal["embed-chunk"] = "embed-chunk"
    document_id: str
    tenant_id: str
    chunk_index: int = Field(ge=0)
    text: str


class IndexJob(BaseModel):
    """Write every chunk of a document into the search index."""

    model_config = ConfigDict(frozen=True)

    stage: Literal["index"] = "index"
    document_id: str
    tenant_id: str


Job = Annotated[Union[IngestJob, EmbedChunkJob, IndexJob], Field(discriminator="stage")]

JOB_ADAPTER: TypeAdapter[Job] = TypeAdapter(Job)


def parse_job(payload: str) -> Job:
    """Parse a stored JSON payload into its job variant."""
    return JOB_ADAPTER.validate_json(payload)


class QueuedJob(BaseModel):
    """A job leased from the queue, with its delivery metadata."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    job: Job
    attempt: int = Field(ge=1, description="1-based delivery count, including this one.")
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    last_error: str | None = None

    @property
    def stage(self) -> JobStage:
        return JobStage(self.job.stage)


class DeadLetter(BaseModel):
    """A job that exhausted its retries or failed permanently."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    job: Job
    attempt: int
    reason: str
    failed_at: datetime


class RetryPolicy(BaseModel):
    """Bounded exponential backoff for one stage."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0, description="Seconds before the first retry.")
    max_delay: float = Field(default=60.0, ge=0.0, description="Upper bound on any retry delay.")

    def delay_for(self, attempt: int) -> float:
        """Return the delay before retrying after failed delivery *attempt*."""
        return min(self.max_delay, self.base_delay * 2 ** max(attempt - 1, 0))

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts
