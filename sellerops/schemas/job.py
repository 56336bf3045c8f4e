"""Job and dead-letter API schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sellerops.shared.enums import JobStatus


class JobEnqueueRequest(BaseModel):
    """Request body for enqueueing a job."""

    job_type: str = Field(..., min_length=1, max_length=128)
    payload: dict[str, Any] = Field(default_factory=dict)
    max_attempts: int | None = Field(default=None, ge=1, le=50)
    correlation_id: str | None = Field(default=None, max_length=255)
    dedup_key: str | None = Field(default=None, max_length=255)
    entity_id: str | None = Field(default=None, max_length=255)
    scheduled_for: datetime | None = None


class JobResponse(BaseModel):
    """Job response."""

    model_config = ConfigDict(from_attributes=True)

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
    log: list[dict[str, Any]] = Field(default_factory=list)


class JobStatsResponse(BaseModel):
    """Job counts per status."""

    counts: dict[str, int]
    total: int


class DeadLetterResponse(BaseModel):
    """Dead-letter entry response."""

    model_config = ConfigDict(from_attributes=True)

    job_id: int
    job_type: str
    payload: dict[str, Any]
    error_message: str | None
    attempts_made: int
    failed_at: datetime
    resolved_at: datetime | None = None
    resolution_notes: str | None = None


class DeadLetterReplayRequest(BaseModel):
    """Optional notes recorded on the entry when it is replayed."""

    notes: str | None = Field(default=None, max_length=2000)
