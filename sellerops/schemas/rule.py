"""Rule dry-run and execution history API schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sellerops.shared.enums import ExecutionStatus


class RuleEvaluateRequest(BaseModel):
    """Rule definition plus entity snapshots to test it against."""

    rule: dict[str, Any] = Field(..., description="Rule definition (camelCase or snake_case keys)")
    entities: list[dict[str, Any]] = Field(..., min_length=1, max_length=1000)
    context: dict[str, Any] | None = Field(
        default=None, description="Trigger data available to context.* lookups"
    )


class EntityEvaluationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_id: str
    matched: bool
    failed_conditions: list[str]
    would_execute: list[dict[str, Any]]


class RuleEvaluateResponse(BaseModel):
    rule_id: str
    evaluated: int
    matched: int
    results: list[EntityEvaluationResponse]


class ActionOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_id: str
    action: str
    success: bool
    result_data: dict[str, Any]
    error: str | None = None


class RuleExecutionResponse(BaseModel):
    """Rule execution response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    rule_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None
    entities_evaluated: int
    entities_matched: int
    actions_executed: int
    actions_failed: int
    action_results: list[ActionOutcomeResponse]
    trigger_context: dict[str, Any]
    error_message: str | None = None
