"""Staged ingestion pipeline: stage handlers, worker loop and worker pool."""

from docintel.pipeline.orchestrator import IngestionOrchestrator
from docintel.pipeline.runner import WorkerPool
from docintel.pipeline.worker import Worker

__all__ = [
    "IngestionOrchestrator",
    "Worker",
    "WorkerPool",
]
