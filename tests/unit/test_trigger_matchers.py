"""Threshold, competitive and event trigger predicate tests."""

import pytest

from sellerops.application.services.trigger_matchers import (
    competitive_matches,
    competitor_subtype,
    event_matches,
    metric_topic,
    shallow_match,
    threshold_fires,
)
from sellerops.domain.entities import CompetitiveTrigger, EventTrigger, ThresholdTrigger
from sellerops.shared.enums import ChangeDirection, ThresholdOperator


def test_threshold_lt_fires_below_value_only() -> None:
    """score lt 60 fires for 55 and not for 65 (camelCase payload keys)."""
    trigger = ThresholdTrigger(metric="score", operator=ThresholdOperator.LT, value=60)
    assert threshold_fires(trigger, {"currentValue": 55}) is True
    assert threshold_fires(trigger, {"currentValue": 65}) is False
    assert threshold_fires(trigger, {"current_value": 59.99}) is True


def test_threshold_without_current_value_never_fires() -> None:
    trigger = ThresholdTrigger(metric="score", operator=ThresholdOperator.GT, value=0)
    assert threshold_fires(trigger, {}) is False
    assert threshold_fires(trigger, {"current_value": "n/a"}) is False


@pytest.mark.parametrize("current", [float("nan"), "NaN", "sNaN", float("inf"), "-Infinity"])
def test_non_finite_current_value_never_fires(current) -> None:
    for operator in (ThresholdOperator.LT, ThresholdOperator.GT, ThresholdOperator.CHANGE):
        trigger = ThresholdTrigger(metric="score", operator=operator, value=60)
        assert threshold_fires(trigger, {"current_value": current, "previous_value": 10}) is False


@pytest.mark.parametrize(
    ("direction", "previous", "current", "fires"),
    [
        (None, 100, 250, True),
        (None, 250, 100, True),
        (ChangeDirection.UP, 250, 100, False),
        (ChangeDirection.DOWN, 250, 100, True),
        (ChangeDirection.ANY, 100, 150, False),
        (None, None, 150, False),
    ],
)
def test_change_operator(direction, previous, current, fires: bool) -> None:
    trigger = ThresholdTrigger(
        metric="bsr", operator=ThresholdOperator.CHANGE, value=100, change_direction=direction
    )
    payload = {"current_value": current, "previous_value": previous}
    assert threshold_fires(trigger, payload) is fires


def test_competitive_subtype_threshold_and_filter() -> None:
    trigger = CompetitiveTrigger(event="price_drop", threshold=0.5, filter={"seller": "acme"})
    topic = "competitor.price_drop"
    assert competitor_subtype(topic, {}) == "price_drop"
    assert competitive_matches(
        trigger, topic, {"threatScore": 0.8, "competitor": {"seller": "acme"}}
    )
    assert not competitive_matches(trigger, topic, {"threat_score": 0.2, "seller": "acme"})
    assert not competitive_matches(trigger, topic, {"threat_score": 0.9, "seller": "other"})
    assert not competitive_matches(trigger, "competitor.new_offer", {"threat_score": 0.9})


def test_event_filter_is_shallow_equality() -> None:
    trigger = EventTrigger(event_type="listing.updated", filter={"marketplace": "UK"})
    assert event_matches(trigger, {"marketplace": "UK", "extra": 1})
    assert not event_matches(trigger, {"marketplace": "DE"})
    assert not event_matches(trigger, {})
    assert shallow_match(None, {}) is True


def test_metric_topic_naming() -> None:
    assert metric_topic("score") == "metric.score"
