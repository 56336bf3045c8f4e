"""SQL-backed job queue.

Every public method runs in its own session and transaction. Claiming is
two steps: pick the oldest due PENDING id (FOR UPDATE SKIP LOCKED where the
dialect has it), then a compare-and-swap UPDATE ... WHERE status='PENDING'.
Losing the swap means another worker won; the loop tries the next row.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sellerops.application.dtos import DeadLetterResult, JobResult, payload_entity_id
from sellerops.application.services.retry_policy import RetryPolicy
from sellerops.domain.exceptions import (
    InvalidJobStateException,
    ResourceNotFoundException,
    StoreUnavailableException,
)
from sellerops.infrastructure.persistence.database import session_scope
from sellerops.infrastructure.persistence.repositories.job_repo import (
    JobRepository,
    to_dead_letter_result,
    to_job_result,
)
from sellerops.infrastructure.persistence.models.job import Job
from sellerops.shared.enums import JobStatus
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)

_STORE_NAME = "job store"
_MAX_CLAIM_RACES = 5
_MAX_DEDUP_RACES = 2


class SqlJobQueue:
    """Job queue over the jobs / job_dead_letters tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retry_policy: RetryPolicy | None = None,
        default_max_attempts: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self._retry = retry_policy or RetryPolicy()
        self._default_max_attempts = default_max_attempts

    def _session(self):
        return session_scope(self._session_factory)

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        max_attempts: int | None = None,
        correlation_id: str | None = None,
        scheduled_for: datetime | None = None,
        dedup_key: str | None = None,
        entity_id: str | None = None,
    ) -> JobResult:
        """Insert a PENDING job (attempt 0). An active job with the same
        job_type and dedup_key is returned instead of inserting a duplicate.

        The lookup alone cannot stop two concurrent enqueues; the partial
        unique index on active (job_type, dedup_key) does, and the loser
        re-reads the winner's row.
        """
        races = 0
        while True:
            try:
                async with self._session() as session:
                    repo = JobRepository(session)
                    if dedup_key:
                        existing = await repo.find_active_by_dedup_key(job_type, dedup_key)
                        if existing is not None:
                            logger.debug(
                                "Dedup hit for %s key=%s -> job %s", job_type, dedup_key, existing.id
                            )
                            return to_job_result(existing)
                    now = utc_now()
                    job = await repo.create(
                        Job(
                            job_type=job_type,
                            status=JobStatus.PENDING.value,
                            payload=payload,
                            attempt=0,
                            max_attempts=max_attempts or self._default_max_attempts,
                            scheduled_for=scheduled_for or now,
                            correlation_id=correlation_id,
                            dedup_key=dedup_key,
                            entity_id=entity_id or payload_entity_id(payload),
                            log=[],
                            created_at=now,
                            updated_at=now,
                        )
                    )
                    logger.info("Enqueued job %s (%s)", job.id, job_type)
                    return to_job_result(job)
            except IntegrityError:
                races += 1
                if not dedup_key or races >= _MAX_DEDUP_RACES:
                    raise
                logger.info("Concurrent enqueue of %s key=%s; re-reading", job_type, dedup_key)
            except OperationalError as e:
                raise StoreUnavailableException(_STORE_NAME, str(e)) from e

    async def claim_next(self, now: datetime | None = None) -> JobResult | None:
        for _ in range(_MAX_CLAIM_RACES):
            try:
                async with self._session() as session:
                    repo = JobRepository(session)
                    at = now or utc_now()
                    job_id = await repo.next_claimable_id(at)
                    if job_id is None:
                        return None
                    if await repo.claim(job_id, at):
                        row = await repo.get_by_id(job_id, refresh=True)
                        assert row is not None
                        return to_job_result(row)
            except OperationalError as e:
                raise StoreUnavailableException(_STORE_NAME, str(e)) from e
            logger.debug("Lost claim race for job %s; retrying", job_id)
        return None

    async def claim(self, job_id: int, now: datetime | None = None) -> JobResult | None:
        async with self._session() as session:
            repo = JobRepository(session)
            if not await repo.claim(job_id, now or utc_now()):
                return None
            row = await repo.get_by_id(job_id, refresh=True)
            return to_job_result(row) if row is not None else None

    async def mark_succeeded(
        self,
        job_id: int,
        result: dict[str, Any] | None = None,
        *,
        attempt: int | None = None,
    ) -> JobResult | None:
        async with self._session() as session:
            repo = JobRepository(session)
            if not await repo.mark_succeeded(job_id, result, utc_now(), attempt):
                logger.warning(
                    "Job %s attempt %s finished but no longer owns the job; result dropped",
                    job_id, attempt,
                )
            row = await repo.get_by_id(job_id, refresh=True)
            return to_job_result(row) if row is not None else None

    async def mark_failed(
        self,
        job_id: int,
        error_message: str,
        *,
        permanent: bool = False,
        attempt: int | None = None,
    ) -> JobResult | None:
        """Retry with backoff while attempts remain; otherwise FAILED + one DLQ row.

        The status update and the DLQ insert share one transaction, and the
        row is written only by the caller whose RUNNING -> FAILED swap won.
        The insert is also conflict-free on job_id, so re-running this after
        a crash never yields a second entry.
        """
        async with self._session() as session:
            repo = JobRepository(session)
            row = await repo.get_by_id(job_id, refresh=True)
            if row is None:
                return None
            if row.status != JobStatus.RUNNING.value or (
                attempt is not None and row.attempt != attempt
            ):
                logger.info(
                    "Job %s failure of attempt %s ignored: %s, attempt %d",
                    job_id, attempt, row.status, row.attempt,
                )
                return to_job_result(row)
            now = utc_now()
            if not permanent and row.attempt < row.max_attempts:
                run_at = self._retry.next_run_at(row.attempt, now)
                if not await repo.reschedule(job_id, error_message, run_at, now, row.attempt):
                    logger.info("Job %s changed state before its retry was scheduled", job_id)
                    return to_job_result(await repo.get_by_id(job_id, refresh=True))
                logger.warning(
                    "Job %s (%s) attempt %d/%d failed: %s; retry at %s",
                    job_id, row.job_type, row.attempt, row.max_attempts, error_message,
                    run_at.isoformat(),
                )
            else:
                if not await repo.mark_failed(job_id, error_message, now, row.attempt):
                    logger.info("Job %s changed state before it was failed", job_id)
                    return to_job_result(await repo.get_by_id(job_id, refresh=True))
                inserted = await repo.insert_dead_letter(row, error_message, now)
                logger.error(
                    "Job %s (%s) dead-lettered after %d attempt(s)%s: %s",
                    job_id, row.job_type, row.attempt,
                    " (permanent)" if permanent else "",
                    error_message,
                )
                if not inserted:
                    logger.info("Dead letter for job %s already present", job_id)
            row = await repo.get_by_id(job_id, refresh=True)
            return to_job_result(row) if row is not None else None

    async def append_log(self, job_id: int, message: str, **data: Any) -> None:
        entry = {**data, "message": message, "timestamp": utc_now().isoformat()}
        async with self._session() as session:
            if not await JobRepository(session).append_log(job_id, entry):
                logger.debug("Log entry for unknown job %s dropped", job_id)

    async def cancel(self, job_id: int) -> JobResult:
        async with self._session() as session:
            repo = JobRepository(session)
            row = await repo.get_by_id(job_id)
            if row is None:
                raise ResourceNotFoundException("job", job_id)
            if not await repo.cancel(job_id, utc_now()):
                raise InvalidJobStateException(job_id, row.status, "cancel")
            row = await repo.get_by_id(job_id, refresh=True)
            assert row is not None
            logger.info("Cancelled job %s", job_id)
            return to_job_result(row)

    async def is_cancelled(self, job_id: int) -> bool:
        job = await self.get(job_id)
        return job is not None and job.status is JobStatus.CANCELLED

    async def get(self, job_id: int) -> JobResult | None:
        async with self._session() as session:
            row = await JobRepository(session).get_by_id(job_id, refresh=True)
            return to_job_result(row) if row is not None else None

    async def list_jobs(
        self,
        *,
        statuses: list[JobStatus] | None = None,
        job_types: list[str] | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[JobResult]:
        async with self._session() as session:
            rows = await JobRepository(session).list_jobs(
                statuses=[s.value for s in statuses] if statuses else None,
                job_types=job_types,
                entity_id=entity_id,
                limit=limit,
                offset=offset,
            )
            return [to_job_result(r) for r in rows]

    async def count_by_status(self) -> dict[str, int]:
        async with self._session() as session:
            return await JobRepository(session).count_by_status()

    async def list_dead_letters(
        self, *, include_resolved: bool = False, limit: int = 50, offset: int = 0
    ) -> list[DeadLetterResult]:
        async with self._session() as session:
            rows = await JobRepository(session).list_dead_letters(
                include_resolved=include_resolved, limit=limit, offset=offset
            )
            return [to_dead_letter_result(r) for r in rows]

    async def get_dead_letter(self, job_id: int) -> DeadLetterResult | None:
        async with self._session() as session:
            row = await JobRepository(session).get_dead_letter(job_id)
            return to_dead_letter_result(row) if row is not None else None

    async def replay_dead_letter(self, job_id: int, *, notes: str | None = None) -> JobResult:
        """Enqueue a fresh copy of a dead-lettered job and mark the entry resolved."""
        async with self._session() as session:
            repo = JobRepository(session)
            entry = await repo.get_dead_letter(job_id)
            if entry is None:
                raise ResourceNotFoundException("dead_letter", job_id)
            if entry.resolved_at is not None:
                raise InvalidJobStateException(job_id, "RESOLVED", "replay")
            original = await repo.get_by_id(job_id)
            now = utc_now()
            replay = await repo.create(
                Job(
                    job_type=entry.job_type,
                    status=JobStatus.PENDING.value,
                    payload=entry.payload,
                    attempt=0,
                    max_attempts=original.max_attempts if original else self._default_max_attempts,
                    scheduled_for=now,
                    correlation_id=f"replay:{job_id}",
                    entity_id=original.entity_id if original else None,
                    log=[],
                    created_at=now,
                    updated_at=now,
                )
            )
            if not await repo.resolve_dead_letter(job_id, replay.id, notes, now):
                raise InvalidJobStateException(job_id, "RESOLVED", "replay")
            logger.info("Replayed dead letter %s as job %s", job_id, replay.id)
            return to_job_result(replay)

    async def reclaim_stale(
        self, timeout_for: Callable[[str], float], grace_seconds: float
    ) -> int:
        """Reset jobs RUNNING past started_at + timeout + grace.

        A stale job that already used every attempt is dead-lettered instead.
        """
        reclaimed = 0
        async with self._session() as session:
            repo = JobRepository(session)
            now = utc_now()
            for row in await repo.list_running():
                started = ensure_utc(row.started_at)
                if started is None:
                    continue
                deadline = started + timedelta(seconds=timeout_for(row.job_type) + grace_seconds)
                if deadline > now:
                    continue
                if row.attempt >= row.max_attempts:
                    message = "Claim expired (worker lost) on final attempt"
                    if await repo.mark_failed(row.id, message, now, row.attempt):
                        await repo.insert_dead_letter(row, message, now)
                        reclaimed += 1
                        logger.error("Stale job %s dead-lettered", row.id)
                elif await repo.reset_stale(row.id, row.started_at, now):
                    reclaimed += 1
                    logger.warning(
                        "Reclaimed stale job %s (%s) started at %s",
                        row.id, row.job_type, started.isoformat(),
                    )
        return reclaimed
