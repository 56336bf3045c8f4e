"""jobs: per-job log, entity_id and unique active dedup key

Revision ID: c7d2f5a8e1b4
Revises: a1c4e7f2b9d3
Create Date: 2026-10-18

Adds jobs.log (JSON array of timestamped entries) and jobs.entity_id for
per-entity job history. Replaces the plain dedup_key index with a partial
unique index so two concurrent enqueues cannot both create an active job
for the same (job_type, dedup_key).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "c7d2f5a8e1b4"
down_revision: Union[str, Sequence[str], None] = "a1c4e7f2b9d3"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ACTIVE_DEDUP = sa.text("dedup_key IS NOT NULL AND status IN ('PENDING', 'RUNNING')")


def upgrade() -> None:
    op.add_column("jobs", sa.Column("entity_id", sa.String(length=255), nullable=True))
    op.add_column(
        "jobs",
        sa.Column("log", sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
    )
    op.create_index(
        "ix_jobs_entity_id_created_at", "jobs", ["entity_id", "created_at"], unique=False
    )
    op.create_index(
        "uq_jobs_active_dedup",
        "jobs",
        ["job_type", "dedup_key"],
        unique=True,
        postgresql_where=_ACTIVE_DEDUP,
        sqlite_where=_ACTIVE_DEDUP,
    )


def downgrade() -> None:
    op.drop_index("uq_jobs_active_dedup", table_name="jobs")
    op.drop_index("ix_jobs_entity_id_created_at", table_name="jobs")
    op.drop_column("jobs", "log")
    op.drop_column("jobs", "entity_id")
