"""Automation rule domain model.

A rule is one trigger, a scope, AND-combined conditions, ordered actions and
execution controls. Rules are authored as plain dicts (camelCase or
snake_case keys) and parsed once at load time with rule_from_dict.
"""

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sellerops.core.constants import ALL_IN_SCOPE, KEY_SEP
from sellerops.domain.exceptions import RuleDefinitionException
from sellerops.shared.enums import (
    ActionKind,
    ChangeDirection,
    ConditionOperator,
    ExecutionMode,
    PriceAction,
    ScopeKind,
    ThresholdOperator,
    TriggerKind,
)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ThresholdTrigger:
    """Fires when a metric event satisfies operator/value.

    For operator CHANGE, value is the minimum absolute change.
    """

    metric: str
    operator: ThresholdOperator
    value: float
    change_direction: ChangeDirection | None = None
    kind: TriggerKind = field(default=TriggerKind.THRESHOLD, init=False)


@dataclass(frozen=True)
class CompetitiveTrigger:
    event: str
    threshold: float | None = None
    filter: dict[str, Any] | None = None
    kind: TriggerKind = field(default=TriggerKind.COMPETITIVE, init=False)


@dataclass(frozen=True)
class TimeTrigger:
    cron: str
    timezone: str = "UTC"
    kind: TriggerKind = field(default=TriggerKind.TIME, init=False)


@dataclass(frozen=True)
class EventTrigger:
    event_type: str
    filter: dict[str, Any] | None = None
    kind: TriggerKind = field(default=TriggerKind.EVENT, init=False)


Trigger = ThresholdTrigger | CompetitiveTrigger | TimeTrigger | EventTrigger


@dataclass(frozen=True)
class Scope:
    """Which entities a rule applies to. value is the category, tag or entity id."""

    kind: ScopeKind = ScopeKind.ALL
    value: str | None = None
    entity_type: str = "listing"


@dataclass(frozen=True)
class Condition:
    field: str
    operator: ConditionOperator
    value: Any = None
    negate: bool = False


@dataclass(frozen=True)
class Action:
    """One step of a rule. stop_on_error ends the entity's remaining actions when this one fails."""

    kind: ActionKind
    params: dict[str, Any] = field(default_factory=dict)
    stop_on_error: bool = False


@dataclass(frozen=True)
class ExecutionControls:
    cooldown_seconds: int = 3600
    max_daily_triggers: int | None = None
    mode: ExecutionMode = ExecutionMode.AUTO
    rollback_enabled: bool = False


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    trigger: Trigger
    scope: Scope = field(default_factory=Scope)
    conditions: tuple[Condition, ...] = ()
    actions: tuple[Action, ...] = ()
    controls: ExecutionControls = field(default_factory=ExecutionControls)
    priority: int = 0
    active: bool = True
    trigger_count: int = 0
    last_triggered_at: datetime | None = None

    @property
    def trigger_kind(self) -> TriggerKind:
        return self.trigger.kind


@dataclass(frozen=True)
class TriggerContext:
    """Evidence for one firing: which entity, and the event data behind it."""

    entity_id: str
    entity_type: str = "listing"
    trigger_data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_all_in_scope(self) -> bool:
        return self.entity_id == ALL_IN_SCOPE

    def lookup_view(self) -> dict[str, Any]:
        """Mapping behind ``context.*`` lookups and template placeholders."""
        return {
            **self.trigger_data,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "trigger_data": self.trigger_data,
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _snake_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_snake(k): v for k, v in data.items()}


def _enum[E](enum_cls: type[E], token: Any, what: str, rule_id: str | None) -> E:
    try:
        return enum_cls(_snake(str(token)))  # type: ignore[call-arg]
    except ValueError:
        raise RuleDefinitionException(
            f"Unknown {what}: {token!r}", rule_id=rule_id
        ) from None


def _require(data: Mapping[str, Any], key: str, what: str, rule_id: str | None) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise RuleDefinitionException(f"{what} requires '{key}'", rule_id=rule_id)
    return value


def _finite(value: Any, what: str, rule_id: str | None) -> float:
    if isinstance(value, bool):
        raise RuleDefinitionException(f"{what} must be a number, got {value!r}", rule_id=rule_id)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RuleDefinitionException(
            f"{what} must be a number, got {value!r}", rule_id=rule_id
        ) from None
    if not math.isfinite(number):
        raise RuleDefinitionException(f"{what} must be finite, got {value!r}", rule_id=rule_id)
    return number


def _parse_trigger(raw: Mapping[str, Any], rule_id: str | None) -> Trigger:
    data = _snake_keys(raw)
    kind = _enum(TriggerKind, _require(data, "type", "trigger", rule_id), "trigger type", rule_id)
    if kind is TriggerKind.THRESHOLD:
        operator = _enum(
            ThresholdOperator, _require(data, "operator", "threshold trigger", rule_id),
            "threshold operator", rule_id,
        )
        value = data.get("value", data.get("change_threshold"))
        if value is None:
            raise RuleDefinitionException("threshold trigger requires 'value'", rule_id=rule_id)
        direction = data.get("change_direction")
        return ThresholdTrigger(
            metric=str(_require(data, "metric", "threshold trigger", rule_id)),
            operator=operator,
            value=_finite(value, "threshold trigger value", rule_id),
            change_direction=(
                _enum(ChangeDirection, direction, "change direction", rule_id)
                if direction else None
            ),
        )
    if kind is TriggerKind.COMPETITIVE:
        threshold = data.get("threshold")
        return CompetitiveTrigger(
            event=_snake(str(_require(data, "event", "competitive trigger", rule_id))),
            threshold=(
                _finite(threshold, "competitive trigger threshold", rule_id)
                if threshold is not None else None
            ),
            filter=dict(data["filter"]) if data.get("filter") else None,
        )
    if kind is TriggerKind.TIME:
        return TimeTrigger(
            cron=str(_require(data, "cron", "time trigger", rule_id)),
            timezone=str(data.get("timezone") or "UTC"),
        )
    return EventTrigger(
        event_type=str(_require(data, "event_type", "event trigger", rule_id)),
        filter=dict(data["filter"]) if data.get("filter") else None,
    )


def _parse_scope(raw: Any, rule_id: str | None) -> Scope:
    if raw is None:
        return Scope()
    if isinstance(raw, str):
        return Scope(kind=_enum(ScopeKind, raw, "scope", rule_id))
    data = _snake_keys(raw)
    kind = _enum(ScopeKind, data.get("type", data.get("kind", "all")), "scope", rule_id)
    value = data.get("value", data.get("entity_id"))
    if kind is not ScopeKind.ALL and not value:
        raise RuleDefinitionException(f"scope '{kind.value}' requires 'value'", rule_id=rule_id)
    return Scope(
        kind=kind,
        value=str(value) if value is not None else None,
        entity_type=str(data.get("entity_type") or "listing"),
    )


def _parse_condition(raw: Mapping[str, Any], rule_id: str | None) -> Condition:
    data = _snake_keys(raw)
    return Condition(
        field=str(_require(data, "field", "condition", rule_id)),
        operator=_enum(
            ConditionOperator, _require(data, "operator", "condition", rule_id),
            "condition operator", rule_id,
        ),
        value=data.get("value"),
        negate=bool(data.get("negate", False)),
    )


def _parse_action(raw: Mapping[str, Any], rule_id: str | None) -> Action:
    data = _snake_keys(raw)
    kind = _enum(ActionKind, _require(data, "type", "action", rule_id), "action type", rule_id)
    params = data.get("params", data.get("config"))
    if params is None:
        params = {k: v for k, v in data.items() if k not in ("type", "stop_on_error")}
    params = _snake_keys(params)
    if kind is ActionKind.UPDATE_PRICE:
        price_action = _require(params, "price_action", "update_price action", rule_id)
        params["price_action"] = _enum(PriceAction, price_action, "price action", rule_id).value
    return Action(kind=kind, params=params, stop_on_error=bool(data.get("stop_on_error", False)))


def _parse_controls(raw: Mapping[str, Any] | None, default_cooldown: int) -> ExecutionControls:
    data = _snake_keys(raw or {})
    cooldown = data.get("cooldown_seconds")
    if cooldown is None and data.get("cooldown_minutes") is not None:
        cooldown = int(data["cooldown_minutes"]) * 60
    max_daily = data.get("max_daily_triggers")
    return ExecutionControls(
        cooldown_seconds=int(cooldown if cooldown is not None else default_cooldown),
        max_daily_triggers=int(max_daily) if max_daily else None,
        mode=ExecutionMode(_snake(str(data.get("mode") or ExecutionMode.AUTO.value))),
        rollback_enabled=bool(data.get("rollback_enabled", False)),
    )


def rule_from_dict(raw: Mapping[str, Any], default_cooldown_seconds: int = 3600) -> Rule:
    """Parse a rule definition.

    Raises:
        RuleDefinitionException: on a missing trigger, unknown enum token,
            a scope without a value, an id containing the key separator, or
            a value of the wrong type (e.g. a non-numeric threshold).
    """
    data = _snake_keys(raw)
    rule_id = str(data["id"]) if data.get("id") is not None else None
    if rule_id is None:
        raise RuleDefinitionException("rule requires 'id'")
    if KEY_SEP in rule_id:
        raise RuleDefinitionException(
            f"rule id must not contain {KEY_SEP!r}", rule_id=rule_id
        )
    trigger = data.get("trigger")
    if not isinstance(trigger, Mapping):
        raise RuleDefinitionException("rule requires a 'trigger' object", rule_id=rule_id)
    controls_raw = data.get("controls") or data.get("execution_controls") or data.get("execution")
    try:
        controls = _parse_controls(controls_raw, default_cooldown_seconds)
    except (TypeError, ValueError) as e:
        raise RuleDefinitionException(f"invalid execution controls: {e}", rule_id=rule_id) from e
    try:
        return Rule(
            id=rule_id,
            name=str(data.get("name") or rule_id),
            trigger=_parse_trigger(trigger, rule_id),
            scope=_parse_scope(data.get("scope"), rule_id),
            conditions=tuple(_parse_condition(c, rule_id) for c in data.get("conditions") or ()),
            actions=tuple(_parse_action(a, rule_id) for a in data.get("actions") or ()),
            controls=controls,
            priority=int(data.get("priority") or 0),
            active=bool(data.get("active", data.get("enabled", True))),
            trigger_count=int(data.get("trigger_count") or 0),
            last_triggered_at=data.get("last_triggered_at"),
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise RuleDefinitionException(f"invalid rule definition: {e}", rule_id=rule_id) from e


def trigger_to_dict(trigger: Trigger) -> dict[str, Any]:
    match trigger:
        case ThresholdTrigger():
            out: dict[str, Any] = {
                "type": trigger.kind.value,
                "metric": trigger.metric,
                "operator": trigger.operator.value,
                "value": trigger.value,
            }
            if trigger.change_direction:
                out["change_direction"] = trigger.change_direction.value
            return out
        case CompetitiveTrigger():
            return {
                "type": trigger.kind.value,
                "event": trigger.event,
                "threshold": trigger.threshold,
                "filter": trigger.filter,
            }
        case TimeTrigger():
            return {"type": trigger.kind.value, "cron": trigger.cron, "timezone": trigger.timezone}
        case EventTrigger():
            return {"type": trigger.kind.value, "event_type": trigger.event_type, "filter": trigger.filter}


def rule_to_dict(rule: Rule) -> dict[str, Any]:
    """Inverse of rule_from_dict (snake_case keys)."""
    return {
        "id": rule.id,
        "name": rule.name,
        "priority": rule.priority,
        "active": rule.active,
        "trigger": trigger_to_dict(rule.trigger),
        "scope": {
            "type": rule.scope.kind.value,
            "value": rule.scope.value,
            "entity_type": rule.scope.entity_type,
        },
        "conditions": [
            {"field": c.field, "operator": c.operator.value, "value": c.value, "negate": c.negate}
            for c in rule.conditions
        ],
        "actions": [
            {"type": a.kind.value, "params": dict(a.params), "stop_on_error": a.stop_on_error}
            for a in rule.actions
        ],
        "controls": {
            "cooldown_seconds": rule.controls.cooldown_seconds,
            "max_daily_triggers": rule.controls.max_daily_triggers,
            "mode": rule.controls.mode.value,
            "rollback_enabled": rule.controls.rollback_enabled,
        },
    }
