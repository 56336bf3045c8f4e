"""Rule API: side-effect-free dry runs and execution history."""

from fastapi import APIRouter, Query

from sellerops.api.v1.dependencies import ExecutionStoreDep
from sellerops.application.services.condition_evaluator import evaluate_only
from sellerops.domain.entities import Entity, TriggerContext, rule_from_dict
from sellerops.domain.exceptions import ValidationException
from sellerops.schemas.rule import (
    EntityEvaluationResponse,
    RuleEvaluateRequest,
    RuleEvaluateResponse,
    RuleExecutionResponse,
)

router = APIRouter()


@router.post("/evaluate", response_model=RuleEvaluateResponse)
async def evaluate_rule(body: RuleEvaluateRequest):
    """Test a rule against posted entities. No cooldowns, no actions, no history."""
    rule = rule_from_dict(body.rule)
    entities = []
    for index, raw in enumerate(body.entities):
        if raw.get("id") in (None, ""):
            raise ValidationException(f"entities[{index}] requires 'id'", field="entities")
        entities.append(Entity.from_dict(raw))
    context = None
    if body.context is not None:
        context = TriggerContext(
            entity_id=str(body.context.get("entity_id") or entities[0].id),
            entity_type=str(body.context.get("entity_type") or entities[0].entity_type),
            trigger_data=dict(body.context),
        )
    results = evaluate_only(rule, entities, context)
    return RuleEvaluateResponse(
        rule_id=rule.id,
        evaluated=len(results),
        matched=sum(1 for r in results if r.matched),
        results=[EntityEvaluationResponse.model_validate(r) for r in results],
    )


@router.get("/{rule_id}/executions", response_model=list[RuleExecutionResponse])
async def get_rule_executions(
    rule_id: str,
    store: ExecutionStoreDep,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """Execution history for a rule, newest first."""
    records = await store.list_executions(rule_id, limit=limit, offset=skip)
    return [RuleExecutionResponse.model_validate(r) for r in records]
