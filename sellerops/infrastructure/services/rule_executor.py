"""Rule executor: runs one rule firing end to end.

Order per firing: cooldown gate, daily-limit gate, scope resolution,
condition evaluation, then per matching entity a cooldown claim followed by
its actions. A firing with no entity that both matched and won its cooldown
claim is a skip and leaves no execution record.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from sellerops.application.dtos import ActionOutcome, ExecutionRecord
from sellerops.application.interfaces.services import IEntityLookup, ITaskService
from sellerops.application.interfaces.stores import ICooldownStore, IExecutionStore
from sellerops.application.services.condition_evaluator import evaluate
from sellerops.core.constants import APPROVAL_TASK_STAGE, AUTOMATION_TASK_SOURCE
from sellerops.domain.entities import Entity, Rule, TriggerContext
from sellerops.domain.exceptions import ResourceNotFoundException, ValidationException
from sellerops.infrastructure.cache.keys import cooldown_key
from sellerops.infrastructure.services.action_executors import ActionExecutor
from sellerops.shared.enums import ActionKind, ExecutionMode, ExecutionStatus, ScopeKind
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.telemetry.tracing import TracedOperation, add_span_attributes
from sellerops.shared.utils.datetime import start_of_utc_day, utc_now
from sellerops.shared.utils.generators import generate_id

logger = get_logger(__name__)

APPROVAL_ACTION = "approval_request"
DRY_RUN_ACTION = "dry_run"


def _error_text(e: Exception) -> str:
    return f"{type(e).__name__}: {e}"


class RuleExecutor:
    """Orchestrates cooldowns, conditions, actions and execution history."""

    def __init__(
        self,
        *,
        cooldown_store: ICooldownStore,
        execution_store: IExecutionStore,
        entity_lookup: IEntityLookup,
        executors: Mapping[ActionKind, ActionExecutor],
        task_service: ITaskService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._cooldowns = cooldown_store
        self._executions = execution_store
        self._lookup = entity_lookup
        self._executors = dict(executors)
        self._tasks = task_service
        self._clock = clock

    async def handle_trigger(
        self, rule: Rule, context: TriggerContext
    ) -> ExecutionRecord | None:
        """Handle one firing. Never raises; returns the record, or None when skipped."""
        async with TracedOperation(
            "rule.fire",
            {"rule.id": rule.id, "rule.trigger": rule.trigger_kind.value, "entity.id": context.entity_id},
        ):
            try:
                return await self._fire(rule, context)
            except Exception:
                logger.exception("Rule %s firing for %s failed", rule.id, context.entity_id)
                return None

    async def _fire(self, rule: Rule, context: TriggerContext) -> ExecutionRecord | None:
        controls = rule.controls
        if controls.cooldown_seconds > 0 and await self._cooldowns.is_held(
            cooldown_key(rule.id, context.entity_id)
        ):
            logger.debug("Rule %s skipped for %s: cooldown", rule.id, context.entity_id)
            return None

        started_at = self._clock()
        if controls.max_daily_triggers is not None:
            fired_today = await self._executions.count_firings_since(
                rule.id, start_of_utc_day(started_at)
            )
            if fired_today >= controls.max_daily_triggers:
                logger.debug(
                    "Rule %s skipped: daily limit %d reached", rule.id, controls.max_daily_triggers
                )
                return None

        entities = await self._resolve_scope(rule, context)
        outcomes: list[ActionOutcome] = []
        errors: list[str] = []
        matched = 0
        for entity in entities:
            entity_ctx = self._context_for(entity, context)
            try:
                if not evaluate(entity, rule.conditions, entity_ctx):
                    continue
                if controls.cooldown_seconds > 0 and not await self._cooldowns.try_acquire(
                    cooldown_key(rule.id, entity.id), controls.cooldown_seconds
                ):
                    logger.debug("Rule %s lost cooldown claim for %s", rule.id, entity.id)
                    continue
                matched += 1
                outcomes.extend(await self._run_actions(rule, entity, entity_ctx))
            except Exception as e:
                logger.exception("Rule %s failed on entity %s", rule.id, entity.id)
                errors.append(f"{entity.id}: {_error_text(e)}")

        if matched == 0 and not errors:
            logger.debug(
                "Rule %s: no entity matched (%d evaluated)", rule.id, len(entities)
            )
            return None

        if matched:
            try:
                await self._executions.record_trigger(rule.id, started_at)
            except Exception:
                logger.exception("Failed to update trigger bookkeeping for rule %s", rule.id)

        failed = bool(errors) or any(not o.success for o in outcomes)
        record = ExecutionRecord(
            id=generate_id("exec"),
            rule_id=rule.id,
            status=ExecutionStatus.FAILED if failed else ExecutionStatus.COMPLETED,
            started_at=started_at,
            completed_at=self._clock(),
            entities_evaluated=len(entities),
            entities_matched=matched,
            action_results=tuple(outcomes),
            trigger_context={
                "entity_id": context.entity_id,
                "entity_type": context.entity_type,
                "trigger_data": context.trigger_data,
                "mode": controls.mode.value,
            },
            error_message="; ".join(errors) or None,
        )
        await self._executions.save_execution(record)
        add_span_attributes(
            **{"rule.entities_matched": matched, "rule.actions_failed": record.actions_failed}
        )
        logger.info(
            "Rule %s fired: %d/%d entities matched, %d actions ok, %d failed",
            rule.id,
            matched,
            len(entities),
            record.actions_executed,
            record.actions_failed,
        )
        return record

    @staticmethod
    def _context_for(entity: Entity, context: TriggerContext) -> TriggerContext:
        if context.entity_id == entity.id:
            return context
        return TriggerContext(
            entity_id=entity.id, entity_type=entity.entity_type, trigger_data=context.trigger_data
        )

    async def _resolve_scope(self, rule: Rule, context: TriggerContext) -> list[Entity]:
        """Expand the rule scope; a concrete context entity is checked for membership."""
        scope = rule.scope
        if context.is_all_in_scope:
            return await self._lookup.resolve(scope)
        if scope.kind is ScopeKind.SINGLE and scope.value != context.entity_id:
            return []
        entity = await self._lookup.get(context.entity_type or scope.entity_type, context.entity_id)
        if entity is None:
            logger.debug("Entity %s not found for rule %s", context.entity_id, rule.id)
            return []
        if scope.kind is ScopeKind.CATEGORY and not entity.in_category(scope.value):
            return []
        if scope.kind is ScopeKind.TAG and not entity.has_tag(scope.value):
            return []
        return [entity]

    async def _run_actions(
        self, rule: Rule, entity: Entity, context: TriggerContext
    ) -> list[ActionOutcome]:
        proposed = [{"type": a.kind.value, "params": dict(a.params)} for a in rule.actions]
        match rule.controls.mode:
            case ExecutionMode.DRY_RUN:
                logger.info("[dry-run] Rule %s would run %s on %s", rule.id, proposed, entity.id)
                return [
                    ActionOutcome(
                        entity_id=entity.id,
                        action=DRY_RUN_ACTION,
                        success=True,
                        result_data={"would_execute": proposed},
                    )
                ]
            case ExecutionMode.APPROVAL_REQUIRED:
                return [await self._request_approval(rule, entity, context, proposed)]

        outcomes = []
        for action in rule.actions:
            executor = self._executors[action.kind]
            try:
                result = await executor.execute(action, entity, context)
            except Exception as e:
                logger.warning(
                    "Action %s of rule %s failed on %s: %s", action.kind.value, rule.id, entity.id, e
                )
                outcome = ActionOutcome(
                    entity_id=entity.id, action=action.kind.value, success=False, error=_error_text(e)
                )
            else:
                if not result.success:
                    logger.info(
                        "Action %s of rule %s not applied on %s: %s",
                        action.kind.value, rule.id, entity.id, result.error,
                    )
                outcome = ActionOutcome(
                    entity_id=entity.id,
                    action=action.kind.value,
                    success=result.success,
                    result_data=result.result_data,
                    rollback_data=result.rollback_data,
                    error=result.error,
                )
            outcomes.append(outcome)
            if not outcome.success and action.stop_on_error:
                logger.info(
                    "Rule %s stopped on %s after %s failed", rule.id, entity.id, action.kind.value
                )
                break
        return outcomes

    async def _request_approval(
        self,
        rule: Rule,
        entity: Entity,
        context: TriggerContext,
        proposed: list[dict[str, Any]],
    ) -> ActionOutcome:
        if self._tasks is None:
            return ActionOutcome(
                entity_id=entity.id,
                action=APPROVAL_ACTION,
                success=False,
                error="approval_required mode needs a task service",
            )
        task = await self._tasks.create(
            title=f"Approve automation: {rule.name} on {entity.id}",
            description=f"Rule {rule.id} proposes {len(proposed)} action(s).",
            entity_id=entity.id,
            priority="medium",
            stage=APPROVAL_TASK_STAGE,
            source=AUTOMATION_TASK_SOURCE,
            metadata={"rule_id": rule.id, "proposed_actions": proposed, "trigger": context.trigger_data},
        )
        return ActionOutcome(
            entity_id=entity.id,
            action=APPROVAL_ACTION,
            success=True,
            result_data={"task_id": task["id"], "proposed_actions": proposed},
        )

    async def rollback_execution(
        self, execution_id: str, *, rule: Rule | None = None
    ) -> dict[str, int]:
        """Undo every successful action of an execution that left rollback data.

        Actions are undone in reverse order. Returns counts of undone and
        failed rollbacks; the record is marked rolled_back either way.

        Raises:
            ResourceNotFoundException: unknown execution id.
            ValidationException: rule has rollback disabled, or already rolled back.
        """
        record = await self._executions.get_execution(execution_id)
        if record is None:
            raise ResourceNotFoundException("rule_execution", execution_id)
        if rule is not None and not rule.controls.rollback_enabled:
            raise ValidationException(f"Rollback is disabled for rule {rule.id}", field="rollback_enabled")
        if record.status == ExecutionStatus.ROLLED_BACK:
            raise ValidationException(f"Execution {execution_id} is already rolled back")

        undone = failed = 0
        for outcome in reversed(record.action_results):
            if not outcome.success or not outcome.rollback_data:
                continue
            try:
                executor = self._executors[ActionKind(outcome.action)]
                if await executor.rollback(outcome.rollback_data):
                    undone += 1
            except Exception:
                failed += 1
                logger.exception(
                    "Rollback of %s on %s failed (execution %s)",
                    outcome.action, outcome.entity_id, execution_id,
                )
        await self._executions.mark_rolled_back(execution_id)
        logger.info("Execution %s rolled back: %d undone, %d failed", execution_id, undone, failed)
        return {"rolled_back": undone, "failed": failed}
