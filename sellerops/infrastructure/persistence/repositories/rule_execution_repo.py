"""Rule execution history repository."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sellerops.application.dtos import ActionOutcome, ExecutionRecord
from sellerops.infrastructure.persistence.models.rule import RuleExecution
from sellerops.infrastructure.persistence.repositories.base import BaseRepository
from sellerops.shared.enums import ExecutionStatus
from sellerops.shared.utils.datetime import ensure_utc


def to_execution_record(row: RuleExecution) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        rule_id=row.rule_id,
        status=ExecutionStatus(row.status),
        started_at=ensure_utc(row.started_at),  # type: ignore[arg-type]
        completed_at=ensure_utc(row.completed_at),
        entities_evaluated=row.entities_evaluated,
        entities_matched=row.entities_matched,
        action_results=tuple(ActionOutcome.from_dict(r) for r in row.action_results or []),
        trigger_context=dict(row.trigger_context or {}),
        error_message=row.error_message,
    )


class RuleExecutionRepository(BaseRepository[RuleExecution]):
    """Append-only rule execution repository."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, RuleExecution)

    async def add(self, record: ExecutionRecord) -> RuleExecution:
        return await self.create(
            RuleExecution(
                id=record.id,
                rule_id=record.rule_id,
                status=record.status.value,
                started_at=record.started_at,
                completed_at=record.completed_at,
                entities_evaluated=record.entities_evaluated,
                entities_matched=record.entities_matched,
                actions_executed=record.actions_executed,
                actions_failed=record.actions_failed,
                action_results=[r.to_dict() for r in record.action_results],
                trigger_context=record.trigger_context,
                error_message=record.error_message,
            )
        )

    async def get_by_rule(
        self, rule_id: str, skip: int = 0, limit: int = 50
    ) -> list[RuleExecution]:
        result = await self.db.execute(
            select(RuleExecution)
            .where(RuleExecution.rule_id == rule_id)
            .order_by(RuleExecution.started_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_firings_since(self, rule_id: str, since: datetime) -> int:
        """Executions since the given instant that matched at least one entity."""
        result = await self.db.execute(
            select(func.count(RuleExecution.id)).where(
                RuleExecution.rule_id == rule_id,
                RuleExecution.started_at >= since,
                RuleExecution.entities_matched > 0,
            )
        )
        return int(result.scalar_one())

    async def mark_rolled_back(self, execution_id: str) -> bool:
        result = await self.db.execute(
            update(RuleExecution)
            .where(
                RuleExecution.id == execution_id,
                RuleExecution.status != ExecutionStatus.ROLLED_BACK.value,
            )
            .values(status=ExecutionStatus.ROLLED_BACK.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
