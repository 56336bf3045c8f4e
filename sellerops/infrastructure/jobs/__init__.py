"""Durable job core: queues, handler registry, worker pool and built-in handlers."""

from sellerops.infrastructure.jobs.memory_queue import InMemoryJobQueue
from sellerops.infrastructure.jobs.registry import JobContext, JobHandlerRegistry
from sellerops.infrastructure.jobs.sql_queue import SqlJobQueue
from sellerops.infrastructure.jobs.worker import JobWorker, JobWorkerPool, StaleClaimSweeper

__all__ = [
    "InMemoryJobQueue",
    "JobContext",
    "JobHandlerRegistry",
    "JobWorker",
    "JobWorkerPool",
    "SqlJobQueue",
    "StaleClaimSweeper",
]
