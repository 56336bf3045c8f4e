"""Store interfaces: job queue, cooldown/lock store and execution history.

The job store and the cooldown store are the only shared mutable
resources. Every method is a single-row atomic operation; nothing spans
both stores in one transaction.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from sellerops.shared.enums import JobStatus

if TYPE_CHECKING:
    from sellerops.application.dtos import (
        DeadLetterResult,
        ExecutionRecord,
        JobResult,
    )
    from sellerops.domain.entities import Rule


class IJobQueue(Protocol):
    """Durable job queue with atomic claim and dead-lettering."""

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
        """Insert a PENDING job. An active job with the same (job_type, dedup_key)
        is returned instead of a new one. entity_id defaults to payload["entity_id"]."""

    async def claim_next(self, now: datetime | None = None) -> JobResult | None:
        """Claim the oldest due PENDING job, or return None if there is none."""

    async def claim(self, job_id: int, now: datetime | None = None) -> JobResult | None:
        """Claim one specific job; None if it is not PENDING or not due."""

    async def mark_succeeded(
        self,
        job_id: int,
        result: dict[str, Any] | None = None,
        *,
        attempt: int | None = None,
    ) -> JobResult | None:
        """Settle a RUNNING job. With attempt, only the claim that started that
        attempt may settle it; a stale worker's call is ignored."""

    async def mark_failed(
        self,
        job_id: int,
        error_message: str,
        *,
        permanent: bool = False,
        attempt: int | None = None,
    ) -> JobResult | None:
        """Re-schedule with backoff, or fail and dead-letter when exhausted."""

    async def append_log(self, job_id: int, message: str, **data: Any) -> None:
        """Append a timestamped entry to the job's log."""

    async def cancel(self, job_id: int) -> JobResult: ...

    async def is_cancelled(self, job_id: int) -> bool: ...

    async def get(self, job_id: int) -> JobResult | None: ...

    async def list_jobs(
        self,
        *,
        statuses: list[JobStatus] | None = None,
        job_types: list[str] | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[JobResult]:
        """Newest first."""

    async def count_by_status(self) -> dict[str, int]: ...

    async def list_dead_letters(
        self, *, include_resolved: bool = False, limit: int = 50, offset: int = 0
    ) -> list[DeadLetterResult]: ...

    async def get_dead_letter(self, job_id: int) -> DeadLetterResult | None: ...

    async def replay_dead_letter(
        self, job_id: int, *, notes: str | None = None
    ) -> JobResult: ...

    async def reclaim_stale(
        self, timeout_for: Callable[[str], float], grace_seconds: float
    ) -> int:
        """Reset RUNNING jobs past started_at + timeout + grace; return count."""


class ICooldownStore(Protocol):
    """Atomic check-and-set with expiry."""

    async def try_acquire(self, key: str, ttl_seconds: float, token: str = "1") -> bool:
        """Set key to token if absent (or expired); True if this caller now holds it."""

    async def release(self, key: str, token: str | None = None) -> bool:
        """Delete key. With a token, only while the key still holds that token."""

    async def is_held(self, key: str) -> bool: ...

    async def get_value(self, key: str) -> Any | None:
        """Read a JSON value stored with set_value (last-known-good results)."""

    async def set_value(self, key: str, value: Any, ttl_seconds: float | None = None) -> None: ...


class IExecutionStore(Protocol):
    """Rule execution history and rule bookkeeping."""

    async def save_execution(self, record: ExecutionRecord) -> None: ...

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None: ...

    async def list_executions(
        self, rule_id: str, *, limit: int = 50, offset: int = 0
    ) -> list[ExecutionRecord]: ...

    async def count_firings_since(self, rule_id: str, since: datetime) -> int:
        """Count records since the given instant that matched at least one entity."""

    async def mark_rolled_back(self, execution_id: str) -> None: ...

    async def record_trigger(self, rule_id: str, triggered_at: datetime) -> None:
        """Increment trigger_count and set last_triggered_at."""


class IRuleSource(Protocol):
    async def load_active_rules(self) -> list[Rule]:
        """Return active rules ordered by priority (highest first)."""
