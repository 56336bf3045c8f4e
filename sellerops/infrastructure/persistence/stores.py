"""SQL implementations of the execution history store and the rule source."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sellerops.application.dtos import ExecutionRecord
from sellerops.domain.entities import Rule
from sellerops.domain.exceptions import RuleDefinitionException, StoreUnavailableException
from sellerops.infrastructure.persistence.database import session_scope
from sellerops.infrastructure.persistence.repositories.rule_execution_repo import (
    RuleExecutionRepository,
    to_execution_record,
)
from sellerops.infrastructure.persistence.repositories.rule_repo import RuleRepository, to_rule
from sellerops.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

_STORE_NAME = "rule store"


class SqlExecutionStore:
    """Rule execution history and trigger bookkeeping over SQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save_execution(self, record: ExecutionRecord) -> None:
        try:
            async with session_scope(self._session_factory) as db:
                await RuleExecutionRepository(db).add(record)
        except OperationalError as e:
            raise StoreUnavailableException(_STORE_NAME, str(e)) from e

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        async with session_scope(self._session_factory) as db:
            row = await RuleExecutionRepository(db).get_by_id(execution_id)
            return to_execution_record(row) if row is not None else None

    async def list_executions(
        self, rule_id: str, *, limit: int = 50, offset: int = 0
    ) -> list[ExecutionRecord]:
        async with session_scope(self._session_factory) as db:
            rows = await RuleExecutionRepository(db).get_by_rule(rule_id, skip=offset, limit=limit)
            return [to_execution_record(r) for r in rows]

    async def count_firings_since(self, rule_id: str, since: datetime) -> int:
        async with session_scope(self._session_factory) as db:
            return await RuleExecutionRepository(db).count_firings_since(rule_id, since)

    async def mark_rolled_back(self, execution_id: str) -> None:
        async with session_scope(self._session_factory) as db:
            await RuleExecutionRepository(db).mark_rolled_back(execution_id)

    async def record_trigger(self, rule_id: str, triggered_at: datetime) -> None:
        async with session_scope(self._session_factory) as db:
            if not await RuleRepository(db).record_trigger(rule_id, triggered_at):
                logger.debug("No rule row for %s; trigger bookkeeping skipped", rule_id)


class SqlRuleSource:
    """Loads active rules from automation_rules, highest priority first.

    A row that no longer parses is logged and skipped so one bad definition
    does not take every rule down.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_cooldown_seconds: int = 3600,
    ) -> None:
        self._session_factory = session_factory
        self._default_cooldown = default_cooldown_seconds

    async def load_active_rules(self) -> list[Rule]:
        try:
            async with session_scope(self._session_factory) as db:
                rows = await RuleRepository(db).get_active()
        except OperationalError as e:
            raise StoreUnavailableException(_STORE_NAME, str(e)) from e
        rules = []
        for row in rows:
            try:
                rules.append(to_rule(row, self._default_cooldown))
            except RuleDefinitionException as e:
                logger.error("Skipping rule %s: %s", row.id, e.message)
        return rules

    async def save_rule(self, rule: Rule) -> None:
        async with session_scope(self._session_factory) as db:
            await RuleRepository(db).save_rule(rule)
