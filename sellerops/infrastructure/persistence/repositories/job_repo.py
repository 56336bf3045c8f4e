"""Job and dead-letter repository.

State transitions are compare-and-swap UPDATEs guarded by the expected
status; callers check the returned bool to learn whether they won.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from sellerops.application.dtos import DeadLetterResult, JobResult
from sellerops.infrastructure.persistence.models.job import DeadLetterEntry, Job
from sellerops.infrastructure.persistence.repositories.base import BaseRepository
from sellerops.shared.enums import JobStatus
from sellerops.shared.utils.datetime import ensure_utc

_ACTIVE = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def to_job_result(row: Job) -> JobResult:
    return JobResult(
        id=row.id,
        job_type=row.job_type,
        status=JobStatus(row.status),
        payload=dict(row.payload or {}),
        attempt=row.attempt,
        max_attempts=row.max_attempts,
        scheduled_for=ensure_utc(row.scheduled_for),  # type: ignore[arg-type]
        created_at=ensure_utc(row.created_at),  # type: ignore[arg-type]
        started_at=ensure_utc(row.started_at),
        completed_at=ensure_utc(row.completed_at),
        error_message=row.error_message,
        correlation_id=row.correlation_id,
        dedup_key=row.dedup_key,
        entity_id=row.entity_id,
        result=row.result,
        log=list(row.log or []),
    )


def to_dead_letter_result(row: DeadLetterEntry) -> DeadLetterResult:
    return DeadLetterResult(
        job_id=row.job_id,
        job_type=row.job_type,
        payload=dict(row.payload or {}),
        error_message=row.error_message,
        attempts_made=row.attempts_made,
        failed_at=ensure_utc(row.failed_at),  # type: ignore[arg-type]
        resolved_at=ensure_utc(row.resolved_at),
        resolution_notes=row.resolution_notes,
        metadata={"replayed_job_id": row.replayed_job_id} if row.replayed_job_id else {},
    )


class JobRepository(BaseRepository[Job]):
    """Job repository (jobs + job_dead_letters)."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, Job)

    async def find_active_by_dedup_key(self, job_type: str, dedup_key: str) -> Job | None:
        result = await self.db.execute(
            select(Job)
            .where(
                Job.job_type == job_type,
                Job.dedup_key == dedup_key,
                Job.status.in_(_ACTIVE),
            )
            .order_by(Job.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def next_claimable_id(self, now: datetime) -> int | None:
        """Oldest due PENDING job id. Rows locked by other claimers are skipped."""
        result = await self.db.execute(
            select(Job.id)
            .where(Job.status == JobStatus.PENDING.value, Job.scheduled_for <= now)
            .order_by(Job.scheduled_for.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()

    async def _transition(
        self,
        job_id: int,
        expected: tuple[str, ...],
        guard_attempt: int | None = None,
        **values: Any,
    ) -> bool:
        """Apply values if the job is in an expected status (and, with
        guard_attempt, still on that attempt)."""
        q = update(Job).where(Job.id == job_id, Job.status.in_(expected))
        if guard_attempt is not None:
            q = q.where(Job.attempt == guard_attempt)
        result = await self.db.execute(
            q.values(**values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim(self, job_id: int, now: datetime) -> bool:
        """PENDING -> RUNNING, attempt + 1. False if another worker won."""
        result = await self.db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.PENDING.value,
                Job.scheduled_for <= now,
            )
            .values(
                status=JobStatus.RUNNING.value,
                attempt=Job.attempt + 1,
                started_at=now,
                completed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_succeeded(
        self,
        job_id: int,
        result: dict[str, Any] | None,
        now: datetime,
        attempt: int | None = None,
    ) -> bool:
        return await self._transition(
            job_id,
            (JobStatus.RUNNING.value,),
            attempt,
            status=JobStatus.SUCCEEDED.value,
            completed_at=now,
            result=result,
            error_message=None,
            updated_at=now,
        )

    async def reschedule(
        self,
        job_id: int,
        error_message: str,
        scheduled_for: datetime,
        now: datetime,
        attempt: int | None = None,
    ) -> bool:
        """RUNNING -> PENDING for a retry at scheduled_for."""
        return await self._transition(
            job_id,
            (JobStatus.RUNNING.value,),
            attempt,
            status=JobStatus.PENDING.value,
            scheduled_for=scheduled_for,
            started_at=None,
            error_message=error_message,
            updated_at=now,
        )

    async def mark_failed(
        self, job_id: int, error_message: str, now: datetime, attempt: int | None = None
    ) -> bool:
        return await self._transition(
            job_id,
            (JobStatus.RUNNING.value,),
            attempt,
            status=JobStatus.FAILED.value,
            completed_at=now,
            error_message=error_message,
            updated_at=now,
        )

    async def cancel(self, job_id: int, now: datetime) -> bool:
        return await self._transition(
            job_id,
            _ACTIVE,
            status=JobStatus.CANCELLED.value,
            completed_at=now,
            updated_at=now,
        )

    async def reset_stale(self, job_id: int, started_at: datetime, now: datetime) -> bool:
        """RUNNING -> PENDING only if the claim is still the one we judged stale."""
        result = await self.db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.RUNNING.value,
                Job.started_at == started_at,
            )
            .values(
                status=JobStatus.PENDING.value,
                scheduled_for=now,
                started_at=None,
                error_message="Claim expired (worker lost)",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def append_log(self, job_id: int, entry: dict[str, Any]) -> bool:
        """Append entry to the job's log array. False if the job does not exist."""
        result = await self.db.execute(
            select(Job).where(Job.id == job_id).with_for_update()
        )
        job = result.scalar_one_or_none()
        if job is None:
            return False
        job.log = [*(job.log or []), entry]
        await self.db.flush()
        return True

    async def list_running(self) -> list[Job]:
        result = await self.db.execute(
            select(Job).where(Job.status == JobStatus.RUNNING.value).order_by(Job.id.asc())
        )
        return list(result.scalars().all())

    async def list_jobs(
        self,
        *,
        statuses: list[str] | None = None,
        job_types: list[str] | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        q = select(Job)
        if entity_id is not None:
            q = q.where(Job.entity_id == entity_id)
        if statuses:
            q = q.where(Job.status.in_(statuses))
        if job_types:
            q = q.where(Job.job_type.in_(job_types))
        q = q.order_by(Job.id.desc()).offset(offset).limit(limit)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Job.status, func.count(Job.id)).group_by(Job.status)
        )
        counts = {status: 0 for status in JobStatus.values()}
        counts.update({status: count for status, count in result.all()})
        return counts

    # Dead letters

    async def insert_dead_letter(self, job: Job, error_message: str, now: datetime) -> bool:
        """Insert the DLQ row unless one exists for this job. True if inserted."""
        values = {
            "job_id": job.id,
            "job_type": job.job_type,
            "payload": job.payload,
            "error_message": error_message,
            "attempts_made": job.attempt,
            "failed_at": now,
        }
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(DeadLetterEntry).values(**values).on_conflict_do_nothing(
                index_elements=[DeadLetterEntry.job_id]
            )
        elif dialect == "sqlite":
            stmt = sqlite_insert(DeadLetterEntry).values(**values).on_conflict_do_nothing(
                index_elements=[DeadLetterEntry.job_id]
            )
        else:
            if await self.get_dead_letter(job.id) is not None:
                return False
            self.db.add(DeadLetterEntry(**values))
            await self.db.flush()
            return True
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def get_dead_letter(self, job_id: int) -> DeadLetterEntry | None:
        result = await self.db.execute(
            select(DeadLetterEntry)
            .where(DeadLetterEntry.job_id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_dead_letters(
        self, *, include_resolved: bool = False, limit: int = 50, offset: int = 0
    ) -> list[DeadLetterEntry]:
        q = select(DeadLetterEntry)
        if not include_resolved:
            q = q.where(DeadLetterEntry.resolved_at.is_(None))
        q = q.order_by(DeadLetterEntry.failed_at.desc(), DeadLetterEntry.id.desc())
        result = await self.db.execute(q.offset(offset).limit(limit))
        return list(result.scalars().all())

    async def count_dead_letters(self, job_id: int) -> int:
        result = await self.db.execute(
            select(func.count(DeadLetterEntry.id)).where(DeadLetterEntry.job_id == job_id)
        )
        return int(result.scalar_one())

    async def resolve_dead_letter(
        self, job_id: int, replayed_job_id: int | None, notes: str | None, now: datetime
    ) -> bool:
        result = await self.db.execute(
            update(DeadLetterEntry)
            .where(DeadLetterEntry.job_id == job_id, DeadLetterEntry.resolved_at.is_(None))
            .values(resolved_at=now, replayed_job_id=replayed_job_id, resolution_notes=notes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
