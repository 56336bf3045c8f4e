"""Condition evaluation: AND-combined predicates over an entity and its trigger context.

All conditions must hold; there is no OR or grouping. An empty condition
list matches every entity. Evaluation never raises: a missing field makes
``exists`` false, ``is_empty`` true, and every other operator false.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

from sellerops.application.dtos import EntityEvaluation
from sellerops.domain.entities import Condition, Entity, Rule, TriggerContext, accessor_for
from sellerops.shared.enums import ConditionOperator as Op
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.utils.paths import MISSING, resolve_path

logger = get_logger(__name__)

CONTEXT_PREFIX = "context."

_EMPTY_CONTEXT = TriggerContext(entity_id="")


def lookup_field(entity: Entity, path: str, context: TriggerContext | None) -> Any:
    """Resolve path against the entity, or the context for ``context.`` paths."""
    if path.startswith(CONTEXT_PREFIX):
        return resolve_path((context or _EMPTY_CONTEXT).lookup_view(), path[len(CONTEXT_PREFIX):])
    return accessor_for(entity.entity_type).get(entity, path)


def _as_number(value: Any) -> Decimal | None:
    number = _coerce_number(value)
    return number if number is not None and number.is_finite() else None


def _coerce_number(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _equals(actual: Any, expected: Any) -> bool:
    left, right = _as_number(actual), _as_number(expected)
    if left is not None and right is not None and not (
        isinstance(actual, str) and isinstance(expected, str)
    ):
        return left == right
    return actual == expected


def _compare(actual: Any, expected: Any, op: Op) -> bool:
    left, right = _as_number(actual), _as_number(expected)
    if left is None or right is None:
        if isinstance(actual, str) and isinstance(expected, str):
            left, right = actual, expected  # type: ignore[assignment]
        else:
            return False
    match op:
        case Op.GT:
            return left > right
        case Op.GTE:
            return left >= right
        case Op.LT:
            return left < right
        case _:
            return left <= right


def _is_collection(value: Any) -> bool:
    return isinstance(value, (Sequence, set, frozenset)) and not isinstance(value, (str, bytes))


def _is_empty(value: Any) -> bool:
    if value is MISSING or value is None:
        return True
    if isinstance(value, (str, bytes, Mapping)) or _is_collection(value):
        return len(value) == 0
    return False


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error:
        logger.warning("Invalid regex in condition: %r", pattern)
        return None


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected in actual
    if isinstance(actual, Mapping):
        return expected in actual
    if _is_collection(actual):
        return any(_equals(item, expected) for item in actual)
    return False


def _apply(op: Op, actual: Any, expected: Any) -> bool:
    if op is Op.EXISTS:
        return actual is not MISSING and actual is not None
    if op is Op.IS_EMPTY:
        return _is_empty(actual)
    if actual is MISSING:
        return False
    match op:
        case Op.EQ:
            return _equals(actual, expected)
        case Op.NEQ:
            return not _equals(actual, expected)
        case Op.GT | Op.GTE | Op.LT | Op.LTE:
            return _compare(actual, expected, op)
        case Op.IN:
            return _is_collection(expected) and any(_equals(actual, v) for v in expected)
        case Op.NOT_IN:
            return _is_collection(expected) and not any(_equals(actual, v) for v in expected)
        case Op.CONTAINS:
            return _contains(actual, expected)
        case Op.STARTS_WITH:
            return isinstance(actual, str) and isinstance(expected, str) and actual.startswith(expected)
        case Op.ENDS_WITH:
            return isinstance(actual, str) and isinstance(expected, str) and actual.endswith(expected)
        case Op.MATCHES:
            pattern = _compile(str(expected)) if expected is not None else None
            return pattern is not None and actual is not None and pattern.search(str(actual)) is not None
    return False


def evaluate_condition(
    entity: Entity, condition: Condition, context: TriggerContext | None = None
) -> bool:
    """Evaluate one condition, applying negate after the operator."""
    actual = lookup_field(entity, condition.field, context)
    try:
        result = _apply(condition.operator, actual, condition.value)
    except (TypeError, ValueError, ArithmeticError) as e:
        logger.debug("Condition %s on %s not comparable: %s", condition.field, entity.id, e)
        result = False
    return not result if condition.negate else result


def evaluate(
    entity: Entity, conditions: Iterable[Condition], context: TriggerContext | None = None
) -> bool:
    """Return True when every condition holds (vacuously True for none)."""
    return all(evaluate_condition(entity, c, context) for c in conditions)


def failed_conditions(
    entity: Entity, conditions: Iterable[Condition], context: TriggerContext | None = None
) -> list[Condition]:
    return [c for c in conditions if not evaluate_condition(entity, c, context)]


def evaluate_only(
    rule: Rule, entities: Iterable[Entity], context: TriggerContext | None = None
) -> list[EntityEvaluation]:
    """Evaluate a rule against entities without any side effects.

    Used by dry-run tooling. Cooldowns, daily limits and modes are ignored;
    the result lists which actions would run for each matching entity.
    """
    results = []
    for entity in entities:
        ctx = context or TriggerContext(entity_id=entity.id, entity_type=entity.entity_type)
        failed = failed_conditions(entity, rule.conditions, ctx)
        matched = not failed
        results.append(
            EntityEvaluation(
                entity_id=entity.id,
                matched=matched,
                failed_conditions=tuple(
                    f"{c.field} {'not ' if c.negate else ''}{c.operator.value} {c.value!r}"
                    for c in failed
                ),
                would_execute=tuple(
                    {"type": a.kind.value, "params": dict(a.params)} for a in rule.actions
                ) if matched else (),
            )
        )
    return results
