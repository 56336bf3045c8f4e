"""Trigger dispatcher: turns bus events and cron schedules into rule firings.

Each active rule gets its own bus subscription (threshold, competitive and
event triggers) or its own scheduler task (time triggers). Subscriptions are
owned here and reconciled by sync(): unchanged rules keep their registration,
changed or removed ones finish the firings already queued before they stop.
A failing firing is logged and never removes the subscription.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from sellerops.application.services.trigger_matchers import (
    competitive_matches,
    event_matches,
    metric_topic,
    threshold_fires,
)
from sellerops.core.constants import ALL_IN_SCOPE, COMPETITOR_TOPIC_PATTERN
from sellerops.domain.entities import (
    CompetitiveTrigger,
    EventTrigger,
    Rule,
    ThresholdTrigger,
    TimeTrigger,
    TriggerContext,
    rule_to_dict,
)
from sellerops.domain.exceptions import RuleDefinitionException
from sellerops.infrastructure.messaging.event_bus import BusEvent, EventBus, Subscription
from sellerops.infrastructure.services.rule_executor import RuleExecutor
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)


class CronSchedule:
    """Cron expression evaluated in a named timezone; fire times returned in UTC."""

    def __init__(self, expression: str, timezone: str = "UTC") -> None:
        if not croniter.is_valid(expression):
            raise RuleDefinitionException(f"Invalid cron expression: {expression!r}")
        try:
            self.tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise RuleDefinitionException(f"Unknown timezone: {timezone!r}") from None
        self.expression = expression

    def next_fire(self, after: datetime) -> datetime:
        local = ensure_utc(after).astimezone(self.tz)  # type: ignore[union-attr]
        return ensure_utc(croniter(self.expression, local).get_next(datetime))  # type: ignore[return-value]


def context_from_event(event: BusEvent) -> TriggerContext | None:
    """Build the firing context from an event; None when it names no entity."""
    entity_id = event.entity_id or event.payload.get("entity_id")
    if not entity_id:
        return None
    trigger_data: dict[str, Any] = {
        **event.payload,
        "topic": event.topic,
        "event_id": event.event_id,
        "occurred_at": event.occurred_at,
    }
    return TriggerContext(
        entity_id=str(entity_id),
        entity_type=event.entity_type or str(event.payload.get("entity_type") or "listing"),
        trigger_data=trigger_data,
    )


class TriggerDispatcher:
    """Registers rule triggers on the bus and the scheduler."""

    def __init__(
        self,
        bus: EventBus,
        executor: RuleExecutor,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._bus = bus
        self._executor = executor
        self._clock = clock
        self._subscriptions: dict[str, Subscription] = {}
        self._schedules: dict[str, tuple[asyncio.Task[None], asyncio.Event]] = {}
        self._definitions: dict[str, dict[str, Any]] = {}

    @property
    def registered_rule_ids(self) -> list[str]:
        return sorted({*self._subscriptions, *self._schedules})

    async def sync(self, rules: Iterable[Rule]) -> None:
        """Reconcile registrations with the given rules (inactive ones are ignored).

        Rules whose definition is unchanged stay registered untouched. A
        changed rule is re-registered and its old subscription drained; a
        removed rule is drained and dropped.
        """
        wanted = {rule.id: rule for rule in rules if rule.active}
        retired = []
        for rule_id in self.registered_rule_ids:
            rule = wanted.get(rule_id)
            if rule is not None and self._definitions.get(rule_id) == rule_to_dict(rule):
                wanted.pop(rule_id)
                continue
            retired.append(self._detach(rule_id))
        for rule in wanted.values():
            self.register(rule)
        for sub, scheduled in retired:
            await self._release(sub, scheduled, drain=True)
        logger.info("Trigger dispatcher registered %d rule(s)", len(self.registered_rule_ids))

    def register(self, rule: Rule) -> None:
        trigger = rule.trigger
        self._definitions[rule.id] = rule_to_dict(rule)
        match trigger:
            case ThresholdTrigger():
                self._subscribe(rule, metric_topic(trigger.metric), self._threshold_handler(rule, trigger))
            case CompetitiveTrigger():
                self._subscribe(rule, COMPETITOR_TOPIC_PATTERN, self._competitive_handler(rule, trigger))
            case EventTrigger():
                self._subscribe(rule, trigger.event_type, self._event_handler(rule, trigger))
            case TimeTrigger():
                try:
                    schedule = CronSchedule(trigger.cron, trigger.timezone)
                except RuleDefinitionException as e:
                    logger.error("Rule %s not scheduled: %s", rule.id, e.message)
                    return
                stop = asyncio.Event()
                task = asyncio.create_task(
                    self._run_schedule(rule, schedule, stop), name=f"cron:{rule.id}"
                )
                self._schedules[rule.id] = (task, stop)

    def _subscribe(self, rule: Rule, pattern: str, handler: Callable[[BusEvent], Any]) -> None:
        self._subscriptions[rule.id] = self._bus.subscribe(pattern, handler, name=f"rule:{rule.id}")

    async def _fire(self, rule: Rule, context: TriggerContext) -> None:
        try:
            await self._executor.handle_trigger(rule, context)
        except Exception:
            logger.exception("Rule %s firing failed", rule.id)

    def _threshold_handler(self, rule: Rule, trigger: ThresholdTrigger):
        async def handle(event: BusEvent) -> None:
            if not threshold_fires(trigger, event.payload):
                return
            context = context_from_event(event)
            if context is None:
                logger.warning("Threshold event %s carries no entity; rule %s ignored", event.topic, rule.id)
                return
            await self._fire(rule, context)

        return handle

    def _competitive_handler(self, rule: Rule, trigger: CompetitiveTrigger):
        async def handle(event: BusEvent) -> None:
            if not competitive_matches(trigger, event.topic, event.payload):
                return
            context = context_from_event(event)
            if context is None:
                logger.warning("Competitor event %s carries no entity; rule %s ignored", event.topic, rule.id)
                return
            await self._fire(rule, context)

        return handle

    def _event_handler(self, rule: Rule, trigger: EventTrigger):
        async def handle(event: BusEvent) -> None:
            if not event_matches(trigger, event.payload):
                return
            context = context_from_event(event) or TriggerContext(
                entity_id=ALL_IN_SCOPE,
                entity_type=rule.scope.entity_type,
                trigger_data={**event.payload, "topic": event.topic, "event_id": event.event_id},
            )
            await self._fire(rule, context)

        return handle

    async def fire_time_rule(self, rule: Rule, fired_at: datetime | None = None) -> None:
        """Fire a time rule over its whole scope."""
        fired_at = fired_at or self._clock()
        await self._fire(
            rule,
            TriggerContext(
                entity_id=ALL_IN_SCOPE,
                entity_type=rule.scope.entity_type,
                trigger_data={"scheduled_at": fired_at.isoformat()},
            ),
        )

    async def _run_schedule(
        self, rule: Rule, schedule: CronSchedule, stop: asyncio.Event
    ) -> None:
        last_fire: datetime | None = None
        while not stop.is_set():
            now = self._clock()
            base = max(now, last_fire) if last_fire else now
            fire_at = schedule.next_fire(base)
            try:
                await asyncio.wait_for(stop.wait(), timeout=max((fire_at - now).total_seconds(), 0))
                return
            except TimeoutError:
                pass
            last_fire = fire_at
            await self.fire_time_rule(rule, fire_at)

    async def unregister(self, rule_id: str, drain: bool = False) -> None:
        """Remove a rule's registration.

        With drain, queued events are handled and a cron firing in progress
        completes; otherwise both are cancelled.
        """
        await self._release(*self._detach(rule_id), drain=drain)

    def _detach(
        self, rule_id: str
    ) -> tuple[Subscription | None, tuple[asyncio.Task[None], asyncio.Event] | None]:
        self._definitions.pop(rule_id, None)
        sub = self._subscriptions.pop(rule_id, None)
        if sub is not None:
            sub.detach()
        scheduled = self._schedules.pop(rule_id, None)
        if scheduled is not None:
            scheduled[1].set()
        return sub, scheduled

    @staticmethod
    async def _release(
        sub: Subscription | None,
        scheduled: tuple[asyncio.Task[None], asyncio.Event] | None,
        drain: bool,
    ) -> None:
        if sub is not None:
            await sub.unsubscribe(drain=drain)
        if scheduled is not None:
            task = scheduled[0]
            if not drain:
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self, drain: bool = False) -> None:
        for rule_id in self.registered_rule_ids:
            await self.unregister(rule_id, drain=drain)