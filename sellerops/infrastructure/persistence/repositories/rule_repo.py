"""Automation rule repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sellerops.domain.entities import Rule, rule_from_dict, rule_to_dict
from sellerops.infrastructure.persistence.models.rule import AutomationRule
from sellerops.infrastructure.persistence.repositories.base import BaseRepository
from sellerops.shared.utils.datetime import ensure_utc


def row_to_dict(row: AutomationRule) -> dict[str, Any]:
    """Rule row in rule_from_dict format."""
    return {
        "id": row.id,
        "name": row.name,
        "priority": row.priority,
        "active": row.is_active,
        "trigger": row.trigger,
        "scope": row.scope,
        "conditions": row.conditions or [],
        "actions": row.actions or [],
        "controls": row.controls or {},
        "trigger_count": row.trigger_count,
        "last_triggered_at": ensure_utc(row.last_triggered_at),
    }


class RuleRepository(BaseRepository[AutomationRule]):
    """Rule repository."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, AutomationRule)

    async def get_active(self) -> list[AutomationRule]:
        result = await self.db.execute(
            select(AutomationRule)
            .where(AutomationRule.is_active.is_(True))
            .order_by(AutomationRule.priority.desc(), AutomationRule.created_at.asc())
        )
        return list(result.scalars().all())

    async def save_rule(self, rule: Rule) -> AutomationRule:
        """Insert or replace the definition of a rule (bookkeeping is preserved)."""
        data = rule_to_dict(rule)
        existing = await self.get_by_id(rule.id)
        if existing is None:
            return await self.create(
                AutomationRule(
                    id=rule.id,
                    name=rule.name,
                    priority=rule.priority,
                    is_active=rule.active,
                    trigger=data["trigger"],
                    scope=data["scope"],
                    conditions=data["conditions"],
                    actions=data["actions"],
                    controls=data["controls"],
                )
            )
        existing.name = rule.name
        existing.priority = rule.priority
        existing.is_active = rule.active
        existing.trigger = data["trigger"]
        existing.scope = data["scope"]
        existing.conditions = data["conditions"]
        existing.actions = data["actions"]
        existing.controls = data["controls"]
        await self.db.flush()
        return existing

    async def record_trigger(self, rule_id: str, triggered_at: datetime) -> bool:
        """Bump trigger_count and last_triggered_at in one UPDATE."""
        result = await self.db.execute(
            update(AutomationRule)
            .where(AutomationRule.id == rule_id)
            .values(
                trigger_count=AutomationRule.trigger_count + 1,
                last_triggered_at=triggered_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def to_rule(row: AutomationRule, default_cooldown_seconds: int = 3600) -> Rule:
    return rule_from_dict(row_to_dict(row), default_cooldown_seconds)
