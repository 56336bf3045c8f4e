"""In-memory job queue for single-process deployments and tests.

Same interface and state machine as SqlJobQueue. Every operation holds one
asyncio.Lock, which plays the role of the single-row atomic UPDATE.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from sellerops.application.dtos import DeadLetterResult, JobResult, payload_entity_id
from sellerops.application.services.retry_policy import RetryPolicy
from sellerops.domain.exceptions import InvalidJobStateException, ResourceNotFoundException
from sellerops.shared.enums import JobStatus
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.utils.datetime import utc_now

logger = get_logger(__name__)


class InMemoryJobQueue:
    """In-memory store for job state and dead letters."""

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        default_max_attempts: int = 3,
    ) -> None:
        self._retry = retry_policy or RetryPolicy()
        self._default_max_attempts = default_max_attempts
        self._jobs: dict[int, JobResult] = {}
        self._dead_letters: dict[int, DeadLetterResult] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

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
        async with self._lock:
            return self._enqueue_locked(
                job_type,
                payload,
                max_attempts=max_attempts,
                correlation_id=correlation_id,
                scheduled_for=scheduled_for,
                dedup_key=dedup_key,
                entity_id=entity_id,
            )

    def _enqueue_locked(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        max_attempts: int | None,
        correlation_id: str | None,
        scheduled_for: datetime | None,
        dedup_key: str | None,
        entity_id: str | None,
    ) -> JobResult:
        if dedup_key:
            for job in self._jobs.values():
                if (
                    job.job_type == job_type
                    and job.dedup_key == dedup_key
                    and job.status in (JobStatus.PENDING, JobStatus.RUNNING)
                ):
                    return job
        now = utc_now()
        job = JobResult(
            id=next(self._ids),
            job_type=job_type,
            status=JobStatus.PENDING,
            payload=dict(payload),
            attempt=0,
            max_attempts=max_attempts or self._default_max_attempts,
            scheduled_for=scheduled_for or now,
            created_at=now,
            correlation_id=correlation_id,
            dedup_key=dedup_key,
            entity_id=entity_id or payload_entity_id(payload),
        )
        self._jobs[job.id] = job
        logger.info("Enqueued job %s (%s)", job.id, job_type)
        return job

    def _claim_locked(self, job: JobResult, now: datetime) -> JobResult:
        claimed = replace(
            job,
            status=JobStatus.RUNNING,
            attempt=job.attempt + 1,
            started_at=now,
            completed_at=None,
        )
        self._jobs[job.id] = claimed
        return claimed

    async def claim_next(self, now: datetime | None = None) -> JobResult | None:
        async with self._lock:
            at = now or utc_now()
            due = [
                j for j in self._jobs.values()
                if j.status is JobStatus.PENDING and j.scheduled_for <= at
            ]
            if not due:
                return None
            oldest = min(due, key=lambda j: (j.scheduled_for, j.id))
            return self._claim_locked(oldest, at)

    async def claim(self, job_id: int, now: datetime | None = None) -> JobResult | None:
        async with self._lock:
            at = now or utc_now()
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PENDING or job.scheduled_for > at:
                return None
            return self._claim_locked(job, at)

    @staticmethod
    def _owns(job: JobResult, attempt: int | None) -> bool:
        return job.status is JobStatus.RUNNING and (attempt is None or job.attempt == attempt)

    async def mark_succeeded(
        self,
        job_id: int,
        result: dict[str, Any] | None = None,
        *,
        attempt: int | None = None,
    ) -> JobResult | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if not self._owns(job, attempt):
                logger.warning(
                    "Job %s attempt %s finished but no longer owns the job (%s, attempt %d); result dropped",
                    job_id, attempt, job.status.value, job.attempt,
                )
                return job
            done = replace(
                job,
                status=JobStatus.SUCCEEDED,
                completed_at=utc_now(),
                result=result,
                error_message=None,
            )
            self._jobs[job_id] = done
            return done

    def _dead_letter_locked(self, job: JobResult, error_message: str, now: datetime) -> None:
        if job.id in self._dead_letters:
            logger.info("Dead letter for job %s already present", job.id)
            return
        self._dead_letters[job.id] = DeadLetterResult(
            job_id=job.id,
            job_type=job.job_type,
            payload=dict(job.payload),
            error_message=error_message,
            attempts_made=job.attempt,
            failed_at=now,
        )

    async def mark_failed(
        self,
        job_id: int,
        error_message: str,
        *,
        permanent: bool = False,
        attempt: int | None = None,
    ) -> JobResult | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if not self._owns(job, attempt):
                logger.info(
                    "Job %s failure of attempt %s ignored: %s, attempt %d",
                    job_id, attempt, job.status.value, job.attempt,
                )
                return job
            now = utc_now()
            if not permanent and job.attempt < job.max_attempts:
                updated = replace(
                    job,
                    status=JobStatus.PENDING,
                    scheduled_for=self._retry.next_run_at(job.attempt, now),
                    started_at=None,
                    error_message=error_message,
                )
                logger.warning(
                    "Job %s (%s) attempt %d/%d failed: %s",
                    job_id, job.job_type, job.attempt, job.max_attempts, error_message,
                )
            else:
                updated = replace(
                    job,
                    status=JobStatus.FAILED,
                    completed_at=now,
                    error_message=error_message,
                )
                self._dead_letter_locked(updated, error_message, now)
                logger.error(
                    "Job %s (%s) dead-lettered after %d attempt(s): %s",
                    job_id, job.job_type, job.attempt, error_message,
                )
            self._jobs[job_id] = updated
            return updated

    async def append_log(self, job_id: int, message: str, **data: Any) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.debug("Log entry for unknown job %s dropped", job_id)
                return
            entry = {**data, "message": message, "timestamp": utc_now().isoformat()}
            self._jobs[job_id] = replace(job, log=[*job.log, entry])

    async def cancel(self, job_id: int) -> JobResult:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise ResourceNotFoundException("job", job_id)
            if job.status not in (JobStatus.PENDING, JobStatus.RUNNING):
                raise InvalidJobStateException(job_id, job.status.value, "cancel")
            cancelled = replace(job, status=JobStatus.CANCELLED, completed_at=utc_now())
            self._jobs[job_id] = cancelled
            return cancelled

    async def is_cancelled(self, job_id: int) -> bool:
        job = self._jobs.get(job_id)
        return job is not None and job.status is JobStatus.CANCELLED

    async def get(self, job_id: int) -> JobResult | None:
        return self._jobs.get(job_id)

    async def list_jobs(
        self,
        *,
        statuses: list[JobStatus] | None = None,
        job_types: list[str] | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[JobResult]:
        jobs = sorted(self._jobs.values(), key=lambda j: j.id, reverse=True)
        if entity_id is not None:
            jobs = [j for j in jobs if j.entity_id == entity_id]
        if statuses:
            jobs = [j for j in jobs if j.status in statuses]
        if job_types:
            jobs = [j for j in jobs if j.job_type in job_types]
        return jobs[offset: offset + limit]

    async def count_by_status(self) -> dict[str, int]:
        counts = {status: 0 for status in JobStatus.values()}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return counts

    async def list_dead_letters(
        self, *, include_resolved: bool = False, limit: int = 50, offset: int = 0
    ) -> list[DeadLetterResult]:
        entries = sorted(self._dead_letters.values(), key=lambda d: d.failed_at, reverse=True)
        if not include_resolved:
            entries = [d for d in entries if not d.is_resolved]
        return entries[offset: offset + limit]

    async def get_dead_letter(self, job_id: int) -> DeadLetterResult | None:
        return self._dead_letters.get(job_id)

    async def replay_dead_letter(self, job_id: int, *, notes: str | None = None) -> JobResult:
        async with self._lock:
            entry = self._dead_letters.get(job_id)
            if entry is None:
                raise ResourceNotFoundException("dead_letter", job_id)
            if entry.is_resolved:
                raise InvalidJobStateException(job_id, "RESOLVED", "replay")
            original = self._jobs.get(job_id)
            replay = self._enqueue_locked(
                entry.job_type,
                entry.payload,
                max_attempts=original.max_attempts if original else None,
                correlation_id=f"replay:{job_id}",
                scheduled_for=None,
                dedup_key=None,
                entity_id=original.entity_id if original else None,
            )
            self._dead_letters[job_id] = replace(
                entry,
                resolved_at=utc_now(),
                resolution_notes=notes,
                metadata={"replayed_job_id": replay.id},
            )
            return replay

    async def reclaim_stale(
        self, timeout_for: Callable[[str], float], grace_seconds: float
    ) -> int:
        reclaimed = 0
        async with self._lock:
            now = utc_now()
            for job in list(self._jobs.values()):
                if job.status is not JobStatus.RUNNING or job.started_at is None:
                    continue
                deadline = job.started_at + timedelta(
                    seconds=timeout_for(job.job_type) + grace_seconds
                )
                if deadline > now:
                    continue
                if job.attempt >= job.max_attempts:
                    message = "Claim expired (worker lost) on final attempt"
                    failed = replace(
                        job, status=JobStatus.FAILED, completed_at=now, error_message=message
                    )
                    self._jobs[job.id] = failed
                    self._dead_letter_locked(failed, message, now)
                else:
                    self._jobs[job.id] = replace(
                        job,
                        status=JobStatus.PENDING,
                        scheduled_for=now,
                        started_at=None,
                        error_message="Claim expired (worker lost)",
                    )
                reclaimed += 1
        return reclaimed
