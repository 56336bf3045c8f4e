"""Domain entities: rules, triggers, scopes and business entity snapshots."""

from sellerops.domain.entities.entity import Entity, FieldAccessor, accessor_for
from sellerops.domain.entities.rule import (
    Action,
    CompetitiveTrigger,
    Condition,
    EventTrigger,
    ExecutionControls,
    Rule,
    Scope,
    ThresholdTrigger,
    TimeTrigger,
    Trigger,
    TriggerContext,
    rule_from_dict,
    rule_to_dict,
)

__all__ = [
    "Action",
    "CompetitiveTrigger",
    "Condition",
    "Entity",
    "EventTrigger",
    "ExecutionControls",
    "FieldAccessor",
    "Rule",
    "Scope",
    "ThresholdTrigger",
    "TimeTrigger",
    "Trigger",
    "TriggerContext",
    "accessor_for",
    "rule_from_dict",
    "rule_to_dict",
]
