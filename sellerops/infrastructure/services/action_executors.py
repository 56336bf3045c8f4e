"""Action executors: one strategy per ActionKind.

Executors run side effects for a matched entity and return an ActionResult;
they never raise for business failures and never call each other. Actions
whose side effect is long-running or must be retried (price publishes,
listing templates) enqueue a job instead of acting inline.

build_action_executors wires the full set and refuses to start if any
ActionKind is left without an executor.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from sellerops.application.dtos import ActionResult
from sellerops.application.interfaces.services import (
    IAlertService,
    IPricingService,
    ITagService,
    ITaskService,
)
from sellerops.application.interfaces.stores import IJobQueue
from sellerops.core.constants import (
    AUTOMATION_TASK_SOURCE,
    JOB_APPLY_LISTING_TEMPLATE,
    JOB_PUBLISH_PRICE_CHANGE,
)
from sellerops.domain.entities import Action, Entity, TriggerContext
from sellerops.infrastructure.services.alert_template_renderer import AlertTemplateRenderer
from sellerops.shared.enums import ActionKind, PriceAction, WebhookAuthType
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.utils.paths import interpolate, interpolate_structure

logger = get_logger(__name__)

_CENT = Decimal("0.01")
_DEFAULT_UNDERCUT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def _render(template: str | None, entity: Entity, context: TriggerContext) -> str | None:
    """Interpolate against the entity first, then the trigger context."""
    if template is None:
        return None
    return interpolate(template, entity.view, context.lookup_view())


class ActionExecutor(Protocol):
    kind: ActionKind

    async def execute(
        self, action: Action, entity: Entity, context: TriggerContext
    ) -> ActionResult: ...

    async def rollback(self, rollback_data: Mapping[str, Any]) -> bool:
        """Undo a previous execute from its rollback_data. False if not undoable."""
        ...


class CreateTaskExecutor:
    kind = ActionKind.CREATE_TASK

    def __init__(self, task_service: ITaskService) -> None:
        self._tasks = task_service

    async def execute(
        self, action: Action, entity: Entity, context: TriggerContext
    ) -> ActionResult:
        params = action.params
        title = _render(params.get("title_template") or params.get("title"), entity, context)
        if not title:
            return ActionResult.failed("create_task requires title_template")
        task = await self._tasks.create(
            title=title,
            description=_render(
                params.get("description_template") or params.get("description"), entity, context
            ),
            entity_id=entity.id,
            priority=str(params.get("priority") or "medium"),
            stage=params.get("stage"),
            source=AUTOMATION_TASK_SOURCE,
            metadata={"trigger": context.trigger_data},
        )
        return ActionResult(
            success=True,
            result_data={"task_id": task["id"]},
            rollback_data={"task_id": task["id"]},
        )

    async def rollback(self, rollback_data: Mapping[str, Any]) -> bool:
        task_id = rollback_data.get("task_id")
        if not task_id:
            return False
        await self._tasks.delete(str(task_id))
        return True


class UpdatePriceExecutor:
    """Computes a new price and enqueues PUBLISH_PRICE_CHANGE.

    With respect_margin_floor the floor price is computed first; a new price
    below the floor is refused with the floor as suggested_price and nothing
    is enqueued. Prices in result_data are numbers; the job payload and
    rollback_data carry them as exact decimal strings.
    """

    kind = ActionKind.UPDATE_PRICE

    def __init__(
        self,
        pricing_service: IPricingService,
        job_queue: IJobQueue,
        *,
        default_min_margin_percent: float = 15.0,
    ) -> None:
        self._pricing = pricing_service
        self._queue = job_queue
        self._default_min_margin = default_min_margin_percent

    async def _target_price(
        self, price_action: PriceAction, value: Decimal | None, current: Decimal | None, entity_id: str
    ) -> Decimal | None:
        match price_action:
            case PriceAction.SET:
                return value
            case PriceAction.INCREASE_PERCENT:
                if current is None or value is None:
                    return None
                return current * (1 + value / 100)
            case PriceAction.DECREASE_PERCENT:
                if current is None or value is None:
                    return None
                return current * (1 - value / 100)
            case PriceAction.MATCH_BUYBOX:
                return _decimal(await self._pricing.get_buy_box_price(entity_id))
            case PriceAction.UNDERCUT_BUYBOX:
                buy_box = _decimal(await self._pricing.get_buy_box_price(entity_id))
                if buy_box is None:
                    return None
                return buy_box - (value if value is not None else _DEFAULT_UNDERCUT)
        return None

    async def execute(
        self, action: Action, entity: Entity, context: TriggerContext
    ) -> ActionResult:
        params = action.params
        try:
            price_action = PriceAction(params.get("price_action"))
        except ValueError:
            return ActionResult.failed(f"Unknown price_action: {params.get('price_action')!r}")

        current = _decimal(await self._pricing.get_current_price(entity.id))
        target = await self._target_price(
            price_action, _decimal(params.get("value")), current, entity.id
        )
        if target is None:
            return ActionResult.failed(
                f"Cannot compute {price_action.value} price for {entity.id}",
                current_price=float(current) if current is not None else None,
            )
        new_price = _money(target)
        if new_price <= 0:
            return ActionResult.failed("Computed price is not positive", computed_price=float(new_price))

        if params.get("respect_margin_floor"):
            min_margin = params.get("min_margin_percent")
            raw_floor = _decimal(
                await self._pricing.calculate_min_price_for_margin(
                    entity.id,
                    float(min_margin) if min_margin is not None else self._default_min_margin,
                )
            )
            if raw_floor is None:
                return ActionResult.failed(
                    f"No usable margin floor for {entity.id}", computed_price=float(new_price)
                )
            floor = _money(raw_floor)
            if new_price < floor:
                logger.info(
                    "Price %s for %s is below margin floor %s; not applied",
                    new_price,
                    entity.id,
                    floor,
                )
                return ActionResult.failed(
                    f"Price {new_price} is below margin floor {floor}",
                    suggested_price=float(floor),
                    floor_price=float(floor),
                    computed_price=float(new_price),
                )

        job = await self._queue.enqueue(
            JOB_PUBLISH_PRICE_CHANGE,
            {
                "entity_id": entity.id,
                "new_price": str(new_price),
                "previous_price": str(current) if current is not None else None,
                "reason": params.get("reason") or f"automation:{price_action.value}",
            },
            correlation_id=context.trigger_data.get("correlation_id"),
        )
        return ActionResult(
            success=True,
            result_data={
                "job_id": job.id,
                "new_price": float(new_price),
                "previous_price": float(current) if current is not None else None,
            },
            rollback_data=(
                {"entity_id": entity.id, "previous_price": str(current)}
                if current is not None
                else None
            ),
        )

    async def rollback(self, rollback_data: Mapping[str, Any]) -> bool:
        previous = _decimal(rollback_data.get("previous_price"))
        entity_id = rollback_data.get("entity_id")
        if previous is None or not entity_id:
            return False
        await self._queue.enqueue(
            JOB_PUBLISH_PRICE_CHANGE,
            {"entity_id": entity_id, "new_price": str(previous), "reason": "automation:rollback"},
        )
        return True


class SendAlertExecutor:
    kind = ActionKind.SEND_ALERT

    def __init__(
        self,
        alert_service: IAlertService,
        template_renderer: AlertTemplateRenderer | None = None,
    ) -> None:
        self._alerts = alert_service
        self._renderer = template_renderer or AlertTemplateRenderer()

    async def execute(
        self, action: Action, entity: Entity, context: TriggerContext
    ) -> ActionResult:
        params = action.params
        template_key = params.get("template")
        if template_key:
            try:
                title, message = self._renderer.render(
                    template_key, entity.view, context.lookup_view(), params
                )
            except KeyError as e:
                return ActionResult.failed(str(e))
        else:
            message = _render(params.get("message_template") or params.get("message"), entity, context)
            if not message:
                return ActionResult.failed("send_alert requires message_template or template")
            title = _render(params.get("title_template") or params.get("title"), entity, context)
            title = title or f"Automation alert: {entity.id}"
        alert = await self._alerts.send(
            severity=str(params.get("severity") or "info"),
            title=title,
            message=message,
            entity_id=entity.id,
            metadata={"trigger": context.trigger_data},
        )
        return ActionResult(success=True, result_data={"alert_id": alert.get("id")})

    async def rollback(self, rollback_data: Mapping[str, Any]) -> bool:
        return False


class TagEntityExecutor:
    kind = ActionKind.TAG_ENTITY

    def __init__(self, tag_service: ITagService) -> None:
        self._tags = tag_service

    async def execute(
        self, action: Action, entity: Entity, context: TriggerContext
    ) -> ActionResult:
        tag = _render(action.params.get("tag"), entity, context)
        if not tag:
            return ActionResult.failed("tag_entity requires tag")
        operation = str(action.params.get("operation") or "add").lower()
        if operation == "remove":
            changed = await self._tags.remove_tag(entity.entity_type, entity.id, tag)
        elif operation == "add":
            changed = await self._tags.add_tag(entity.entity_type, entity.id, tag)
        else:
            return ActionResult.failed(f"Unknown tag operation: {operation}")
        return ActionResult(
            success=True,
            result_data={"tag": tag, "operation": operation, "changed": changed},
            rollback_data=(
                {
                    "entity_type": entity.entity_type,
                    "entity_id": entity.id,
                    "tag": tag,
                    "operation": operation,
                }
                if changed
                else None
            ),
        )

    async def rollback(self, rollback_data: Mapping[str, Any]) -> bool:
        args = (rollback_data["entity_type"], rollback_data["entity_id"], rollback_data["tag"])
        if rollback_data.get("operation") == "remove":
            return await self._tags.add_tag(*args)
        return await self._tags.remove_tag(*args)


class WebhookExecutor:
    """Calls an external URL with the entity/context payload.

    payload_template defaults to ``{{data}}``, the whole payload as JSON;
    any other template is interpolated and sent as the request body.
    """

    kind = ActionKind.WEBHOOK

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._client = client

    @staticmethod
    def _auth_headers(params: Mapping[str, Any]) -> dict[str, str]:
        try:
            auth_type = WebhookAuthType(params.get("auth_type") or WebhookAuthType.NONE)
        except ValueError:
            auth_type = WebhookAuthType.NONE
        auth_value = params.get("auth_value")
        if not auth_value or auth_type == WebhookAuthType.NONE:
            return {}
        match auth_type:
            case WebhookAuthType.BEARER:
                return {"Authorization": f"Bearer {auth_value}"}
            case WebhookAuthType.BASIC:
                encoded = base64.b64encode(str(auth_value).encode()).decode()
                return {"Authorization": f"Basic {encoded}"}
            case WebhookAuthType.API_KEY:
                return {"X-API-Key": str(auth_value)}
        return {}

    async def _send(self, method: str, url: str, headers: dict[str, str], body: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, content=body, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, content=body)

    async def execute(
        self, action: Action, entity: Entity, context: TriggerContext
    ) -> ActionResult:
        params = action.params
        url = _render(params.get("url"), entity, context)
        if not url:
            return ActionResult.failed("webhook requires url")
        method = str(params.get("method") or "POST").upper()
        data = {
            "entity": entity.view,
            "context": context.lookup_view(),
            "action": self.kind.value,
        }
        template = params.get("payload_template") or "{{data}}"
        if template.strip() == "{{data}}":
            body = json.dumps(data, default=str)
        else:
            body = interpolate(
                template, {"data": json.dumps(data, default=str)}, entity.view, context.lookup_view()
            )
        headers = {
            "Content-Type": "application/json",
            **{str(k): str(v) for k, v in interpolate_structure(params.get("headers") or {}, entity.view).items()},
            **self._auth_headers(params),
        }
        try:
            response = await self._send(method, url, headers, body)
        except httpx.HTTPError as e:
            logger.warning("Webhook %s %s failed: %s", method, url, e)
            return ActionResult.failed(f"{type(e).__name__}: {e}", url=url)
        if not response.is_success:
            return ActionResult.failed(
                f"Webhook returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        return ActionResult(success=True, result_data={"url": url, "status_code": response.status_code})

    async def rollback(self, rollback_data: Mapping[str, Any]) -> bool:
        return False


class ApplyTemplateExecutor:
    kind = ActionKind.APPLY_TEMPLATE

    def __init__(self, job_queue: IJobQueue) -> None:
        self._queue = job_queue

    async def execute(
        self, action: Action, entity: Entity, context: TriggerContext
    ) -> ActionResult:
        template_id = action.params.get("template_id")
        if not template_id:
            return ActionResult.failed("apply_template requires template_id")
        job = await self._queue.enqueue(
            JOB_APPLY_LISTING_TEMPLATE,
            {"entity_id": entity.id, "template_id": str(template_id)},
            correlation_id=context.trigger_data.get("correlation_id"),
        )
        return ActionResult(success=True, result_data={"job_id": job.id, "template_id": str(template_id)})

    async def rollback(self, rollback_data: Mapping[str, Any]) -> bool:
        return False


def build_action_executors(
    *,
    job_queue: IJobQueue,
    task_service: ITaskService,
    pricing_service: IPricingService,
    alert_service: IAlertService,
    tag_service: ITagService,
    template_renderer: AlertTemplateRenderer | None = None,
    http_client: httpx.AsyncClient | None = None,
    webhook_timeout_seconds: float = 10.0,
    default_min_margin_percent: float = 15.0,
) -> dict[ActionKind, ActionExecutor]:
    """Build one executor per ActionKind. Raises if any kind is unhandled."""
    executors: list[ActionExecutor] = [
        CreateTaskExecutor(task_service),
        UpdatePriceExecutor(
            pricing_service, job_queue, default_min_margin_percent=default_min_margin_percent
        ),
        SendAlertExecutor(alert_service, template_renderer),
        TagEntityExecutor(tag_service),
        WebhookExecutor(timeout_seconds=webhook_timeout_seconds, client=http_client),
        ApplyTemplateExecutor(job_queue),
    ]
    by_kind = {e.kind: e for e in executors}
    missing = set(ActionKind) - set(by_kind)
    if missing:
        raise RuntimeError(
            "No executor registered for action kinds: "
            + ", ".join(sorted(k.value for k in missing))
        )
    return by_kind
