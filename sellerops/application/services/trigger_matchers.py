"""Predicates deciding whether an event fires a rule's trigger.

Metric events carry ``current_value`` and ``previous_value`` (camelCase keys
are accepted too); competitor events carry their subtype in ``event`` (or the
topic suffix) and an optional ``threat_score``.
"""

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from sellerops.core.constants import (
    COMPETITOR_TOPIC_PREFIX,
    METRIC_TOPIC_PREFIX,
    TOPIC_SEP,
)
from sellerops.domain.entities import CompetitiveTrigger, EventTrigger, ThresholdTrigger
from sellerops.shared.enums import ChangeDirection, ThresholdOperator


def metric_topic(metric: str) -> str:
    return f"{METRIC_TOPIC_PREFIX}{TOPIC_SEP}{metric}"


def competitor_topic(subtype: str) -> str:
    return f"{COMPETITOR_TOPIC_PREFIX}{TOPIC_SEP}{subtype}"


def _number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    # NaN compares false against everything, infinity matches any bound
    return number if number.is_finite() else None


def shallow_match(filter_: Mapping[str, Any] | None, payload: Mapping[str, Any]) -> bool:
    """True when every filter key equals the payload's value for it."""
    if not filter_:
        return True
    return all(key in payload and payload[key] == value for key, value in filter_.items())


def threshold_fires(trigger: ThresholdTrigger, payload: Mapping[str, Any]) -> bool:
    current = _number(payload.get("current_value", payload.get("currentValue")))
    if current is None:
        return False
    target = Decimal(str(trigger.value))
    match trigger.operator:
        case ThresholdOperator.LT:
            return current < target
        case ThresholdOperator.LTE:
            return current <= target
        case ThresholdOperator.GT:
            return current > target
        case ThresholdOperator.GTE:
            return current >= target
        case ThresholdOperator.EQ:
            return current == target
    previous = _number(payload.get("previous_value", payload.get("previousValue")))
    if previous is None:
        return False
    delta = current - previous
    if abs(delta) < target or delta == 0:
        return False
    direction = trigger.change_direction or ChangeDirection.ANY
    if direction is ChangeDirection.UP:
        return delta > 0
    if direction is ChangeDirection.DOWN:
        return delta < 0
    return True


def competitor_subtype(topic: str, payload: Mapping[str, Any]) -> str | None:
    subtype = payload.get("event")
    if subtype:
        return str(subtype)
    prefix = f"{COMPETITOR_TOPIC_PREFIX}{TOPIC_SEP}"
    return topic[len(prefix):] if topic.startswith(prefix) else None


def competitive_matches(
    trigger: CompetitiveTrigger, topic: str, payload: Mapping[str, Any]
) -> bool:
    if competitor_subtype(topic, payload) != trigger.event:
        return False
    if trigger.threshold is not None:
        score = _number(payload.get("threat_score", payload.get("threatScore")))
        if score is None or score < Decimal(str(trigger.threshold)):
            return False
    competitor = payload.get("competitor")
    attributes = competitor if isinstance(competitor, Mapping) else payload
    return shallow_match(trigger.filter, attributes)


def event_matches(trigger: EventTrigger, payload: Mapping[str, Any]) -> bool:
    return shallow_match(trigger.filter, payload)
