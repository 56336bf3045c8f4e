"""In-process execution store and rule source for the memory backend and tests."""

from __future__ import annotations

import asyncio
import dataclasses
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from sellerops.application.dtos import ExecutionRecord
from sellerops.domain.entities import Rule
from sellerops.shared.enums import ExecutionStatus


class InMemoryExecutionStore:
    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._triggers: dict[str, list[datetime]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def save_execution(self, record: ExecutionRecord) -> None:
        async with self._lock:
            self._records[record.id] = record

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        return self._records.get(execution_id)

    async def list_executions(
        self, rule_id: str, *, limit: int = 50, offset: int = 0
    ) -> list[ExecutionRecord]:
        rows = sorted(
            (r for r in self._records.values() if r.rule_id == rule_id),
            key=lambda r: r.started_at,
            reverse=True,
        )
        return rows[offset : offset + limit]

    async def count_firings_since(self, rule_id: str, since: datetime) -> int:
        return sum(
            1
            for r in self._records.values()
            if r.rule_id == rule_id and r.started_at >= since and r.entities_matched > 0
        )

    async def mark_rolled_back(self, execution_id: str) -> None:
        async with self._lock:
            record = self._records.get(execution_id)
            if record is not None:
                self._records[execution_id] = dataclasses.replace(
                    record, status=ExecutionStatus.ROLLED_BACK
                )

    async def record_trigger(self, rule_id: str, triggered_at: datetime) -> None:
        self._triggers[rule_id].append(triggered_at)

    def trigger_count(self, rule_id: str) -> int:
        return len(self._triggers[rule_id])


class StaticRuleSource:
    """Rule source over a fixed list; replace() swaps the list for reloads."""

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules = list(rules)

    def replace(self, rules: Iterable[Rule]) -> None:
        self._rules = list(rules)

    async def load_active_rules(self) -> list[Rule]:
        return sorted((r for r in self._rules if r.active), key=lambda r: -r.priority)
