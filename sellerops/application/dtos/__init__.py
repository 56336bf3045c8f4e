"""DTOs shared between the job core, the rule engine and the API."""

from sellerops.application.dtos.job import DeadLetterResult, JobResult, payload_entity_id
from sellerops.application.dtos.rule_execution import (
    ActionOutcome,
    ActionResult,
    EntityEvaluation,
    ExecutionRecord,
)

__all__ = [
    "ActionOutcome",
    "ActionResult",
    "DeadLetterResult",
    "EntityEvaluation",
    "ExecutionRecord",
    "JobResult",
    "payload_entity_id",
]
