"""Generic worker loop: lease a job, run its handler, settle the outcome.

A worker knows nothing about what a stage does.  It leases the oldest
visible job for its stages, hands it to
:meth:`IngestionOrchestrator.handle`, and then settles the lease:

    success                   ack
    transient, budget left    retry after exponential backoff
    transient, budget spent   dead-letter
    validation / permanent    dead-letter immediately

Every dead-letter is followed by :meth:`IngestionOrchestrator.on_dead_letter`
so the document reaches a terminal state.  ``job_id``, ``stage`` and
``attempt`` are bound into ``structlog.contextvars`` for the duration of a
job, so every log line emitted by a handler carries them.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from docintel.models.jobs import JobStage, QueuedJob, RetryPolicy
from docintel.utils.errors import is_transient

if TYPE_CHECKING:
    from docintel.interfaces.job_queue import IJobQueue
    from docintel.pipeline.orchestrator import IngestionOrchestrator

logger = structlog.get_logger(logger_name=__name__)


class Worker:
    """Pulls jobs for a set of stages and runs them one at a time.

    Parameters
    ----------
    queue:
        The durable job queue.
    orchestrator:
        Dispatches jobs to stage handlers.
    policies:
        Retry policy per stage.  Stages without an entry use
        :class:`RetryPolicy` defaults.
    stages:
        Stages this worker leases; defaults to all of them.
    visibility_timeout:
        Seconds a leased job stays hidden from other workers.
    poll_interval:
        Seconds to sleep when no job is visible.
    name:
        Identifier used in log lines.
    """

    def __init__(
        self,
        queue: IJobQueue,
        orchestrator: IngestionOrchestrator,
        policies: dict[JobStage, RetryPolicy] | None = None,
        stages: Iterable[JobStage] | None = None,
        visibility_timeout: float = 300.0,
        poll_interval: float = 1.0,
        name: str = "worker",
    ) -> None:
        self._queue = queue
        self._orchestrator = orchestrator
        self._policies = dict(policies or {})
        self._stages = tuple(stages) if stages is not None else tuple(JobStage)
        self._visibility_timeout = visibility_timeout
        self._poll_interval = poll_interval
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def stages(self) -> tuple[JobStage, ...]:
        return self._stages

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_once(self) -> bool:
        """Lease and process at most one job.

        Returns
        -------
        bool
            ``True`` if a job was processed, ``False`` if none was visible.
        """
        queued = await self._queue.dequeue(self._stages, self._visibility_timeout)
        if queued is None:
            return False

        with structlog.contextvars.bound_contextvars(
            job_id=queued.job_id,
            stage=queued.stage.value,
            attempt=queued.attempt,
            worker=self._name,
        ):
            await self._process(queued)
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        """Process jobs until *stop_event* is set."""
        logger.info("worker_started", worker=self._name, stages=[s.value for s in self._stages])
        while not stop_event.is_set():
            try:
                processed = await self.run_once()
            except Exception as exc:
                # Queue or dead-letter hook failure; the lease expires and
                # the job is delivered again.
                logger.exception("worker_iteration_failed", worker=self._name, error=str(exc))
                processed = False
            if processed:
                continue
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
        logger.info("worker_stopped", worker=self._name)

    async def run_until_idle(self, max_jobs: int | None = None) -> int:
        """Process jobs until none is visible, or *max_jobs* have run.

        Jobs scheduled for a later retry are not waited for.

        Returns
        -------
        int
            Number of jobs processed.
        """
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if not await self.run_once():
                break
            processed += 1
        return processed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _process(self, queued: QueuedJob) -> None:
        try:
            await self._orchestrator.handle(queued.job)
        except Exception as exc:
            await self._settle_failure(queued, exc)
            return

        await self._queue.ack(queued.job_id)
        logger.debug("job_succeeded")

    async def _settle_failure(self, queued: QueuedJob, exc: Exception) -> None:
        error = str(exc) or type(exc).__name__
        policy = self._policies.get(queued.stage, RetryPolicy())

        if is_transient(exc) and policy.should_retry(queued.attempt):
            delay = policy.delay_for(queued.attempt)
            await self._queue.retry(queued.job_id, delay, error)
            logger.warning(
                "job_retry_scheduled",
                error=error,
                error_type=type(exc).__name__,
                delay=delay,
                max_attempts=policy.max_attempts,
            )
            return

        reason = error if not is_transient(exc) else f"retries exhausted: {error}"
        # The document reaches its terminal state before the job leaves the
        # queue; if this hook fails the lease expires and the job returns.
        try:
            await self._orchestrator.on_dead_letter(queued.job, reason)
        except Exception:
            logger.exception("dead_letter_hook_failed", reason=reason)
            raise
        await self._queue.dead_letter(queued.job_id, reason)
        logger.error(
            "job_dead_lettered",
            error=error,
            error_type=type(exc).__name__,
            transient=is_transient(exc),
        )
