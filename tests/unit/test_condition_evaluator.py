"""Condition evaluator tests: operators, AND semantics, missing fields, context paths."""

import pytest

from sellerops.application.services.condition_evaluator import (
    evaluate,
    evaluate_condition,
    evaluate_only,
)
from sellerops.domain.entities import Condition, Entity, TriggerContext, rule_from_dict
from sellerops.shared.enums import ConditionOperator as Op


def _listing(**data) -> Entity:
    return Entity.from_dict({"id": "L1", "entity_type": "listing", **data})


@pytest.mark.parametrize(
    ("op", "actual", "expected", "result"),
    [
        (Op.EQ, 10, "10", True),
        (Op.EQ, "abc", "abc", True),
        (Op.NEQ, "abc", "abd", True),
        (Op.GT, 10, 5, True),
        (Op.GTE, 5, 5, True),
        (Op.LT, "4.5", 5, True),
        (Op.LTE, 6, 5, False),
        (Op.IN, "FBA", ["FBA", "FBM"], True),
        (Op.NOT_IN, "FBA", ["FBM"], True),
        (Op.CONTAINS, "Stainless steel pan", "steel", True),
        (Op.CONTAINS, ["a", "b"], "b", True),
        (Op.STARTS_WITH, "SKU-123", "SKU", True),
        (Op.ENDS_WITH, "SKU-123", "23", True),
        (Op.MATCHES, "B0ABC12345", r"^B0[A-Z0-9]{8}$", True),
        (Op.MATCHES, "B0ABC12345", "(unclosed", False),
        (Op.IS_EMPTY, "", None, True),
        (Op.IS_EMPTY, [], None, True),
        (Op.EXISTS, 0, None, True),
    ],
)
def test_operators(op: Op, actual, expected, result: bool) -> None:
    entity = _listing(price=actual)
    assert evaluate_condition(entity, Condition("price", op, expected)) is result


def test_missing_field_semantics() -> None:
    """A missing field: exists false, is_empty true, everything else false."""
    entity = _listing()
    assert evaluate_condition(entity, Condition("score", Op.EXISTS)) is False
    assert evaluate_condition(entity, Condition("score", Op.IS_EMPTY)) is True
    assert evaluate_condition(entity, Condition("score", Op.GT, 1)) is False
    assert evaluate_condition(entity, Condition("score", Op.NEQ, 1)) is False


def test_field_outside_entity_schema_reads_as_missing() -> None:
    entity = _listing(secret_field=5)
    assert evaluate_condition(entity, Condition("secret_field", Op.EXISTS)) is False


def test_negate_inverts_result() -> None:
    entity = _listing(stock=0)
    assert evaluate_condition(entity, Condition("stock", Op.GT, 0, negate=True)) is True


def test_incomparable_values_do_not_raise() -> None:
    entity = _listing(price={"amount": 5})
    assert evaluate_condition(entity, Condition("price", Op.GT, 3)) is False


@pytest.mark.parametrize("op", [Op.GT, Op.GTE, Op.LT, Op.LTE, Op.EQ])
@pytest.mark.parametrize("actual", [float("nan"), "NaN", float("inf")])
def test_non_finite_numbers_do_not_match(op: Op, actual) -> None:
    entity = _listing(price=actual)
    assert evaluate_condition(entity, Condition("price", op, 5)) is False


def test_nested_paths_and_context_lookup() -> None:
    entity = _listing(metrics={"sessions": [{"count": 12}]})
    context = TriggerContext(entity_id="L1", trigger_data={"current_value": 55})
    assert evaluate_condition(entity, Condition("metrics.sessions.0.count", Op.GTE, 12))
    assert evaluate_condition(entity, Condition("context.current_value", Op.LT, 60), context)
    assert not evaluate_condition(entity, Condition("context.current_value", Op.LT, 60))


def test_all_conditions_must_hold() -> None:
    entity = _listing(price=20, stock=3)
    conditions = [Condition("price", Op.GT, 10), Condition("stock", Op.GT, 5)]
    assert evaluate(entity, conditions) is False
    assert evaluate(entity, conditions[:1]) is True
    assert evaluate(entity, []) is True


def test_evaluate_only_reports_failures_and_would_execute() -> None:
    rule = rule_from_dict(
        {
            "id": "r",
            "trigger": {"type": "event", "event_type": "listing.updated"},
            "conditions": [{"field": "stock", "operator": "gt", "value": 0}],
            "actions": [{"type": "send_alert", "params": {"message": "hi"}}],
        }
    )
    in_stock = Entity.from_dict({"id": "A", "stock": 4})
    empty = Entity.from_dict({"id": "B", "stock": 0})
    results = {r.entity_id: r for r in evaluate_only(rule, [in_stock, empty])}
    assert results["A"].matched
    assert results["A"].would_execute == ({"type": "send_alert", "params": {"message": "hi"}},)
    assert not results["B"].matched
    assert results["B"].failed_conditions == ("stock gt 0",)
    assert results["B"].would_execute == ()
