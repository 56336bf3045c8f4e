"""AutomationRule and RuleExecution ORM models."""

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    JSON,
    Boolean,
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
    CuidMixin,
    TimestampMixin,
    _status_check,
)
from sellerops.shared.enums import ExecutionStatus


class AutomationRule(CuidMixin, TimestampMixin, Base):
    """Rule definition. Table: automation_rules. Trigger, scope, conditions,
    actions and controls are stored as JSON in rule_from_dict format."""

    __tablename__ = "automation_rules"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa.true()
    )
    trigger: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    scope: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    actions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    controls: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    trigger_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    last_triggered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class RuleExecution(CuidMixin, Base):
    """Append-only audit of one rule firing. Table: rule_executions.

    No foreign key to automation_rules: history outlives deleted rules.
    """

    __tablename__ = "rule_executions"

    rule_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExecutionStatus.RUNNING.value
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    entities_evaluated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entities_matched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    actions_executed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    actions_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    action_results: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    trigger_context: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_rule_executions_rule_started", "rule_id", "started_at"),
        CheckConstraint(
            _status_check(ExecutionStatus.values()), name="rule_executions_status_check"
        ),
    )
