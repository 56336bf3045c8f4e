"""SQLAlchemy mixins for common model patterns."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

from sellerops.shared.utils.datetime import utc_now
from sellerops.shared.utils.generators import generate_id


def _status_check(values: list[str]) -> str:
    """SQL for ``status IN (...)`` built from enum values."""
    return "status IN ({})".format(
        ", ".join("'{}'".format(v.replace("'", "''")) for v in values)
    )


class CuidMixin:
    """String primary key defaulting to a CUID."""

    @declared_attr
    def id(cls) -> Mapped[str]:
        return mapped_column(String, primary_key=True, default=generate_id)


class TimestampMixin:
    """created_at and updated_at, set in Python (UTC) with server defaults as backup."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            default=utc_now,
            server_default=func.now(),
            nullable=False,
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            default=utc_now,
            onupdate=utc_now,
            server_default=func.now(),
            nullable=False,
        )
