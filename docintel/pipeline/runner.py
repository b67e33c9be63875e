"""Worker pool: N independent workers per stage as asyncio tasks."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from docintel.models.jobs import JobStage
from docintel.pipeline.worker import Worker

if TYPE_CHECKING:
    from docintel.config.settings import Settings
    from docintel.interfaces.job_queue import IJobQueue
    from docintel.pipeline.orchestrator import IngestionOrchestrator

logger = structlog.get_logger(logger_name=__name__)


class WorkerPool:
    """Starts and stops a fixed set of workers.

    Workers share the queue and the orchestrator but no per-job state, so
    any number of them may run side by side, in this process or others.
    """

    def __init__(self, workers: list[Worker]) -> None:
        self._workers = workers
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    def from_settings(
        cls,
        queue: IJobQueue,
        orchestrator: IngestionOrchestrator,
        settings: Settings,
        stages: list[JobStage] | None = None,
    ) -> WorkerPool:
        """Build ``stage_concurrency(stage)`` workers for each stage."""
        policies = {stage: settings.retry_policy(stage) for stage in JobStage}
        workers = [
            Worker(
                queue=queue,
                orchestrator=orchestrator,
                policies=policies,
                stages=[stage],
                visibility_timeout=settings.visibility_timeout,
                poll_interval=settings.worker_poll_interval,
                name=f"{stage.value}-{i}",
            )
            for stage in (stages or list(JobStage))
            for i in range(max(1, settings.stage_concurrency(stage)))
        ]
        return cls(workers)

    @property
    def workers(self) -> list[Worker]:
        return list(self._workers)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(worker.run(self._stop_event), name=worker.name)
            for worker in self._workers
        ]
        logger.info("worker_pool_started", workers=len(self._tasks))

    async def stop(self, timeout: float = 30.0) -> None:
        """Signal every worker to stop and wait for in-flight jobs.

        Workers still busy after *timeout* seconds are cancelled; their
        leases expire and the jobs are delivered again.
        """
        self._stop_event.set()
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("worker_pool_stopped", cancelled=len(pending))
        self._tasks = []

    async def run_forever(self) -> None:
        """Start the pool and block until :meth:`stop` is called."""
        self.start()
        await self._stop_event.wait()
        await self.stop()
