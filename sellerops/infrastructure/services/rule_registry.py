"""Owned registry of active automation rules."""

from __future__ import annotations

import asyncio

from sellerops.application.interfaces.stores import IRuleSource
from sellerops.domain.entities import Rule
from sellerops.infrastructure.services.trigger_dispatcher import TriggerDispatcher
from sellerops.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class RuleRegistry:
    """Holds the active rules and keeps the dispatcher in step with them.

    Lifecycle: load() once at startup, reload() whenever definitions change
    (or periodically via run_periodic_reload), shutdown() on exit.
    """

    def __init__(self, source: IRuleSource, dispatcher: TriggerDispatcher | None = None) -> None:
        self._source = source
        self._dispatcher = dispatcher
        self._rules: dict[str, Rule] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def active_rules(self) -> list[Rule]:
        """Active rules, highest priority first."""
        return sorted(self._rules.values(), key=lambda r: -r.priority)

    def get(self, rule_id: str) -> Rule | None:
        return self._rules.get(rule_id)

    async def load(self) -> list[Rule]:
        rules = [r for r in await self._source.load_active_rules() if r.active]
        self._rules = {r.id: r for r in rules}
        self._loaded = True
        if self._dispatcher is not None:
            await self._dispatcher.sync(self.active_rules)
        logger.info("Loaded %d active rule(s)", len(self._rules))
        return self.active_rules

    async def reload(self) -> list[Rule]:
        return await self.load()

    async def run_periodic_reload(self, interval_seconds: float, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                return
            except TimeoutError:
                pass
            try:
                await self.reload()
            except Exception:
                logger.exception("Rule reload failed; keeping %d rule(s)", len(self._rules))

    async def shutdown(self) -> None:
        if self._dispatcher is not None:
            await self._dispatcher.shutdown()
        self._rules = {}
        self._loaded = False
