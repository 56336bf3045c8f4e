"""DTOs for jobs and dead letters (no dependency on ORM)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sellerops.shared.enums import JobStatus


@dataclass(frozen=True)
class JobResult:
    """Snapshot of a job row. attempt equals the number of attempts started."""

    id: int
    job_type: str
    status: JobStatus
    payload: dict[str, Any]
    attempt: int
    max_attempts: int
    scheduled_for: datetime
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    correlation_id: str | None = None
    dedup_key: str | None = None
    entity_id: str | None = None
    result: dict[str, Any] | None = None
    log: list[dict[str, Any]] = field(default_factory=list)

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempt)


@dataclass(frozen=True)
class DeadLetterResult:
    """Job that exhausted its retry budget or failed permanently."""

    job_id: int
    job_type: str
    payload: dict[str, Any]
    error_message: str | None
    attempts_made: int
    failed_at: datetime
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


def payload_entity_id(payload: dict[str, Any]) -> str | None:
    """Entity a job acts on, when its payload names one."""
    value = payload.get("entity_id")
    return str(value) if value is not None else None
