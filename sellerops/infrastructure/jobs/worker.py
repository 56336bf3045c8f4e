"""Job worker pool: claim, execute under timeout, retry or dead-letter.

Each worker is an asyncio task running claim -> execute -> settle. A handler
exception never escapes the worker; it becomes a failed attempt. Only store
failures (StoreUnavailableException) pause a worker, and it resumes on the
next poll.
"""

from __future__ import annotations

import asyncio
import signal
import time
from typing import Any

from sellerops.application.dtos import JobResult
from sellerops.application.interfaces.stores import IJobQueue
from sellerops.domain.exceptions import (
    JobCancelledError,
    JobTimeoutError,
    PermanentJobError,
    StoreUnavailableException,
)
from sellerops.infrastructure.jobs.registry import JobContext, JobHandlerRegistry
from sellerops.shared.enums import JobStatus
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.telemetry.metrics import record_job_event, update_job_queue_length
from sellerops.shared.telemetry.tracing import TracedOperation, set_span_error

logger = get_logger(__name__)


class JobWorker:
    """Processes one job at a time."""

    def __init__(
        self, queue: IJobQueue, registry: JobHandlerRegistry, worker_id: str = "worker-1"
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.worker_id = worker_id
        self.current_job: JobResult | None = None

    async def run_once(self) -> bool:
        """Claim and process one job. Returns False when nothing was claimable."""
        job = await self.queue.claim_next()
        if job is None:
            return False
        self.current_job = job
        try:
            await self.process(job)
        finally:
            self.current_job = None
        return True

    async def process(self, job: JobResult) -> JobResult | None:
        """Run the handler for a claimed job and record the outcome."""
        async with TracedOperation(
            "job.execute",
            {"job.id": job.id, "job.type": job.job_type, "job.attempt": job.attempt},
        ):
            try:
                handler = self.registry.handler_for(job.job_type)
            except PermanentJobError as e:
                set_span_error(e)
                logger.error("Job %s: %s", job.id, e.message)
                return await self._fail(job, e.message, permanent=True)

            timeout = self.registry.timeout_for(job.job_type)
            ctx = JobContext(job, self.queue)
            logger.info(
                "[%s] Running job %s (%s) attempt %d/%d",
                self.worker_id, job.id, job.job_type, job.attempt, job.max_attempts,
            )
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(handler(job, ctx), timeout=timeout)
            except TimeoutError:
                ctx.abandon()
                error = JobTimeoutError(job.job_type, timeout)
                set_span_error(error)
                return await self._fail(job, error.message, started=started)
            except JobCancelledError:
                logger.info("Job %s stopped after cancellation", job.id)
                record_job_event(
                    job.job_type, "CANCELLED", time.monotonic() - started, job.attempt > 1
                )
                return await self.queue.get(job.id)
            except PermanentJobError as e:
                set_span_error(e)
                return await self._fail(job, e.message, permanent=True, started=started)
            except asyncio.CancelledError:
                logger.warning(
                    "[%s] Job %s abandoned during shutdown; left RUNNING for stale sweep",
                    self.worker_id, job.id,
                )
                raise
            except Exception as e:
                set_span_error(e)
                logger.warning("Job %s handler raised: %s", job.id, e, exc_info=True)
                return await self._fail(job, f"{type(e).__name__}: {e}", started=started)
            settled = await self.queue.mark_succeeded(
                job.id, result if isinstance(result, dict) else None, attempt=job.attempt
            )
            record_job_event(
                job.job_type, "SUCCEEDED", time.monotonic() - started, job.attempt > 1
            )
            return settled

    async def _fail(
        self,
        job: JobResult,
        message: str,
        *,
        permanent: bool = False,
        started: float | None = None,
    ) -> JobResult | None:
        """Log the failure on the job, settle this attempt and count it."""
        await self.queue.append_log(
            job.id, "attempt failed", attempt=job.attempt, error=message, permanent=permanent
        )
        settled = await self.queue.mark_failed(
            job.id, message, permanent=permanent, attempt=job.attempt
        )
        status = "RETRY" if settled is not None and settled.status is JobStatus.PENDING else "FAILED"
        record_job_event(
            job.job_type,
            status,
            time.monotonic() - started if started is not None else None,
            job.attempt > 1,
        )
        return settled


class StaleClaimSweeper:
    """Resets jobs whose worker vanished (RUNNING past started_at + timeout + grace)."""

    def __init__(
        self,
        queue: IJobQueue,
        registry: JobHandlerRegistry,
        grace_seconds: float = 60.0,
        interval_seconds: float = 60.0,
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.grace_seconds = grace_seconds
        self.interval_seconds = interval_seconds

    async def sweep_once(self) -> int:
        count = await self.queue.reclaim_stale(self.registry.timeout_for, self.grace_seconds)
        if count:
            logger.warning("Stale-claim sweep reclaimed %d job(s)", count)
        update_job_queue_length(await self.queue.count_by_status())
        return count

    async def run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.sweep_once()
            except StoreUnavailableException as e:
                logger.error("Stale-claim sweep skipped: %s", e.message)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                continue


class JobWorkerPool:
    """
    Runs N workers plus the stale-claim sweeper.

    Usage:
        pool = JobWorkerPool(queue, registry, concurrency=4)
        await pool.start()
        # ... process runs ...
        await pool.stop()
    """

    def __init__(
        self,
        queue: IJobQueue,
        registry: JobHandlerRegistry,
        *,
        concurrency: int = 4,
        poll_interval_seconds: float = 5.0,
        shutdown_grace_seconds: float = 30.0,
        sweeper: StaleClaimSweeper | None = None,
    ) -> None:
        self.queue = queue
        self.registry = registry
        self.workers = [
            JobWorker(queue, registry, worker_id=f"worker-{i + 1}") for i in range(concurrency)
        ]
        self.poll_interval_seconds = poll_interval_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.sweeper = sweeper
        self._tasks: list[asyncio.Task[Any]] = []
        self._stop_event = asyncio.Event()
        self._shutdown_requested = asyncio.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> list[JobResult]:
        return [w.current_job for w in self.workers if w.current_job is not None]

    async def start(self) -> None:
        if self._running:
            logger.warning("JobWorkerPool already running")
            return
        self._running = True
        self._stop_event.clear()
        for worker in self.workers:
            self._tasks.append(
                asyncio.create_task(self._run_loop(worker), name=worker.worker_id)
            )
        if self.sweeper is not None:
            self._tasks.append(
                asyncio.create_task(self.sweeper.run(self._stop_event), name="stale-sweeper")
            )
        logger.info(
            "Job worker pool started: %d worker(s), handlers=%s",
            len(self.workers), self.registry.job_types(),
        )

    async def _run_loop(self, worker: JobWorker) -> None:
        while not self._stop_event.is_set():
            try:
                claimed = await worker.run_once()
            except StoreUnavailableException as e:
                logger.error("[%s] %s; pausing", worker.worker_id, e.message)
                claimed = False
            except Exception:
                logger.exception("[%s] Unexpected worker error", worker.worker_id)
                claimed = False
            if claimed:
                continue
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval_seconds)
            except TimeoutError:
                continue

    async def stop(self, grace_seconds: float | None = None) -> None:
        """Stop claiming now; wait for in-flight jobs up to the grace period.

        Jobs still running after the grace period are cancelled locally and
        stay RUNNING in the store until the stale-claim sweep resets them.
        """
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        grace = self.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        in_flight = [job.id for job in self.in_flight]
        if in_flight:
            logger.info("Waiting up to %ss for in-flight job(s) %s", grace, in_flight)
        pending: set[asyncio.Task[Any]] = set()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=grace)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Grace period elapsed; %d worker task(s) cancelled", len(pending))
        self._tasks.clear()
        logger.info("Job worker pool stopped")

    def request_shutdown(self) -> None:
        self._shutdown_requested.set()

    def install_signal_handlers(self) -> None:
        """Route SIGTERM/SIGINT to request_shutdown (no-op where unsupported)."""
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.request_shutdown)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            pass

    async def run_until_shutdown(self) -> None:
        """Start, block until a shutdown is requested, then stop gracefully."""
        await self.start()
        try:
            await self._shutdown_requested.wait()
        finally:
            await self.stop()
