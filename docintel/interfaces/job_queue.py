"""Abstract base class for the durable job queue.

Delivery is at-least-once: a dequeued job is leased for a visibility
timeout and becomes visible again if its worker neither acknowledges,
retries nor dead-letters it in time.  Handlers must therefore be
idempotent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from docintel.models.jobs import DeadLetter, Job, JobStage, QueuedJob


# Concrete implementation: SQLiteJobQueue (docintel/providers/storage/)
class IJobQueue(ABC):
    """Contract for enqueueing, leasing and settling pipeline jobs."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def enqueue(
        self,
        job: Job,
        dedup_key: str | None = None,
        delay: float = 0.0,
    ) -> str | None:
        """Add a job and return its id.

        Parameters
        ----------
        job:
            The job to run.
        dedup_key:
            When set, the job is skipped (``None`` returned) if a live job
            with the same key is already queued or leased.
        delay:
            Seconds before the job becomes visible.
        """

    @abstractmethod
    async def enqueue_many(self, jobs: Iterable[tuple[Job, str | None]]) -> list[str | None]:
        """Enqueue ``(job, dedup_key)`` pairs in one transaction."""

    @abstractmethod
    async def dequeue(
        self,
        stages: Iterable[JobStage],
        visibility_timeout: float,
    ) -> QueuedJob | None:
        """Lease the oldest visible job of *stages*, or return ``None``.

        The returned job's ``attempt`` counts this delivery.
        """

    @abstractmethod
    async def ack(self, job_id: str) -> None:
        """Mark a leased job as done and remove it."""

    @abstractmethod
    async def retry(self, job_id: str, delay: float, error: str) -> None:
        """Release a leased job so it becomes visible again after *delay*."""

    @abstractmethod
    async def dead_letter(self, job_id: str, reason: str) -> None:
        """Move a job to the dead-letter state; it is never delivered again."""

    @abstractmethod
    async def list_dead_letters(self, stage: JobStage | None = None) -> list[DeadLetter]:
        """Return dead-lettered jobs, oldest first."""

    @abstractmethod
    async def requeue_dead_letter(self, job_id: str) -> bool:
        """Make a dead-lettered job visible again with a fresh attempt count.

        Returns ``False`` if no dead letter with that id exists.
        """

    @abstractmethod
    async def stats(self) -> dict[str, dict[str, int]]:
        """Return job counts keyed by stage, then by state."""
