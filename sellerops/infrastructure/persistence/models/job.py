"""Job and DeadLetterEntry ORM models. Durable job queue."""

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from sellerops.infrastructure.persistence.database import Base
from sellerops.infrastructure.persistence.models.mixins import (
    TimestampMixin,
    _status_check,
)
from sellerops.shared.enums import JobStatus

# SQLite only auto-increments INTEGER PRIMARY KEY
_JobId = BigInteger().with_variant(Integer, "sqlite")

_ACTIVE_DEDUP = sa.text(
    "dedup_key IS NOT NULL AND status IN ('PENDING', 'RUNNING')"
)


class Job(TimestampMixin, Base):
    """Queued unit of work. Table: jobs. id order is insertion order (FIFO tie-break)."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(_JobId, primary_key=True, autoincrement=True)
    job_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    attempt: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, server_default=sa.text("3")
    )
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    dedup_key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    log: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list, server_default=sa.text("'[]'")
    )

    __table_args__ = (
        Index("ix_jobs_status_scheduled_for", "status", "scheduled_for", "id"),
        Index("ix_jobs_entity_id_created_at", "entity_id", "created_at"),
        # At most one PENDING/RUNNING job per (job_type, dedup_key)
        Index(
            "uq_jobs_active_dedup",
            "job_type",
            "dedup_key",
            unique=True,
            postgresql_where=_ACTIVE_DEDUP,
            sqlite_where=_ACTIVE_DEDUP,
        ),
        CheckConstraint(_status_check(JobStatus.values()), name="jobs_status_check"),
        CheckConstraint("attempt >= 0", name="jobs_attempt_check"),
        CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
    )


class DeadLetterEntry(Base):
    """Job that exhausted retries or failed permanently. Table: job_dead_letters.

    job_id is unique so a retried failure path cannot write a second row.
    """

    __tablename__ = "job_dead_letters"

    id: Mapped[int] = mapped_column(_JobId, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    job_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False)
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    replayed_job_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("ix_job_dead_letters_unresolved", "resolved_at", "failed_at"),
    )
