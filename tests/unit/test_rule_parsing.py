"""rule_from_dict / rule_to_dict parsing tests."""

import pytest

from sellerops.domain.entities import (
    CompetitiveTrigger,
    EventTrigger,
    ThresholdTrigger,
    TimeTrigger,
    rule_from_dict,
    rule_to_dict,
)
from sellerops.domain.exceptions import RuleDefinitionException
from sellerops.shared.enums import (
    ActionKind,
    ChangeDirection,
    ConditionOperator,
    ExecutionMode,
    ScopeKind,
    ThresholdOperator,
)


def _camel_rule() -> dict:
    return {
        "id": "r1",
        "name": "Low score",
        "priority": 5,
        "trigger": {"type": "threshold", "metric": "score", "operator": "lt", "value": 60},
        "scope": {"type": "category", "value": "kitchen"},
        "conditions": [{"field": "stock", "operator": "gt", "value": 0}],
        "actions": [
            {
                "type": "updatePrice",
                "params": {"priceAction": "decreasePercent", "value": 5, "respectMarginFloor": True},
            }
        ],
        "executionControls": {"cooldownMinutes": 30, "maxDailyTriggers": 4, "mode": "dryRun"},
    }


def test_camel_case_rule_parses_to_snake_case_model() -> None:
    """camelCase keys and enum tokens normalise to the snake_case model."""
    rule = rule_from_dict(_camel_rule())
    assert isinstance(rule.trigger, ThresholdTrigger)
    assert rule.trigger.operator is ThresholdOperator.LT
    assert rule.trigger.value == 60.0
    assert rule.scope.kind is ScopeKind.CATEGORY
    assert rule.scope.value == "kitchen"
    assert rule.conditions[0].operator is ConditionOperator.GT
    action = rule.actions[0]
    assert action.kind is ActionKind.UPDATE_PRICE
    assert action.params["price_action"] == "decrease_percent"
    assert action.params["respect_margin_floor"] is True
    assert rule.controls.cooldown_seconds == 1800
    assert rule.controls.max_daily_triggers == 4
    assert rule.controls.mode is ExecutionMode.DRY_RUN
    assert rule.priority == 5


def test_defaults_applied_when_controls_missing() -> None:
    rule = rule_from_dict(
        {"id": "r2", "trigger": {"type": "event", "eventType": "listing.updated"}},
        default_cooldown_seconds=120,
    )
    assert isinstance(rule.trigger, EventTrigger)
    assert rule.scope.kind is ScopeKind.ALL
    assert rule.conditions == ()
    assert rule.controls.cooldown_seconds == 120
    assert rule.controls.mode is ExecutionMode.AUTO
    assert rule.active is True


def test_change_trigger_with_direction() -> None:
    rule = rule_from_dict(
        {
            "id": "r3",
            "trigger": {
                "type": "threshold",
                "metric": "bsr",
                "operator": "change",
                "changeThreshold": 100,
                "changeDirection": "up",
            },
        }
    )
    assert rule.trigger.operator is ThresholdOperator.CHANGE
    assert rule.trigger.value == 100.0
    assert rule.trigger.change_direction is ChangeDirection.UP


def test_competitive_and_time_triggers() -> None:
    competitive = rule_from_dict(
        {"id": "c", "trigger": {"type": "competitive", "event": "priceDrop", "threshold": 0.7}}
    )
    assert isinstance(competitive.trigger, CompetitiveTrigger)
    assert competitive.trigger.event == "price_drop"
    timed = rule_from_dict({"id": "t", "trigger": {"type": "time", "cron": "0 9 * * *"}})
    assert isinstance(timed.trigger, TimeTrigger)
    assert timed.trigger.timezone == "UTC"


@pytest.mark.parametrize(
    "raw",
    [
        {"trigger": {"type": "event", "event_type": "x"}},
        {"id": "r", "trigger": "threshold"},
        {"id": "r", "trigger": {"type": "bogus"}},
        {"id": "r", "trigger": {"type": "threshold", "metric": "score", "operator": "lt"}},
        {"id": "r", "trigger": {"type": "event", "event_type": "x"}, "scope": {"type": "tag"}},
        {
            "id": "r",
            "trigger": {"type": "event", "event_type": "x"},
            "actions": [{"type": "update_price", "params": {"value": 3}}],
        },
        {
            "id": "r",
            "trigger": {"type": "event", "event_type": "x"},
            "controls": {"mode": "sometimes"},
        },
        {"id": "r", "trigger": {"type": "threshold", "metric": "score", "operator": "lt", "value": "abc"}},
        {"id": "r", "trigger": {"type": "threshold", "metric": "score", "operator": "lt", "value": "nan"}},
        {"id": "r", "trigger": {"type": "competitive", "event": "price_drop", "threshold": [0.5]}},
        {"id": "r", "priority": "high", "trigger": {"type": "event", "event_type": "x"}},
        {"id": "r", "trigger_count": "many", "trigger": {"type": "event", "event_type": "x"}},
        {"id": "r", "trigger": {"type": "event", "event_type": "x"}, "conditions": ["stock > 0"]},
        {"id": "team:r", "trigger": {"type": "event", "event_type": "x"}},
    ],
)
def test_invalid_definitions_raise(raw: dict) -> None:
    with pytest.raises(RuleDefinitionException):
        rule_from_dict(raw)


def test_rule_to_dict_round_trips_through_parser() -> None:
    rule = rule_from_dict(_camel_rule())
    assert rule_from_dict(rule_to_dict(rule)) == rule


def test_bad_value_error_carries_rule_id() -> None:
    with pytest.raises(RuleDefinitionException) as exc_info:
        rule_from_dict({"id": "r7", "priority": "high", "trigger": {"type": "event", "event_type": "x"}})
    assert exc_info.value.details["rule_id"] == "r7"


def test_stop_on_error_parses_and_round_trips() -> None:
    rule = rule_from_dict(
        {
            "id": "r",
            "trigger": {"type": "event", "event_type": "x"},
            "actions": [
                {"type": "webhook", "stopOnError": True, "url": "https://hooks.example/x"},
                {"type": "tag_entity", "config": {"tag": "seen"}},
            ],
        }
    )
    first, second = rule.actions
    assert first.stop_on_error is True
    assert first.params == {"url": "https://hooks.example/x"}
    assert second.stop_on_error is False
    assert second.params == {"tag": "seen"}
    assert rule_from_dict(rule_to_dict(rule)) == rule
