"""Built-in job handlers for the automation actions that enqueue work."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from sellerops.application.dtos import JobResult
from sellerops.application.interfaces.services import (
    IFeatureService,
    IPricingService,
    ITemplateService,
)
from sellerops.core.constants import (
    JOB_APPLY_LISTING_TEMPLATE,
    JOB_COMPUTE_FEATURES,
    JOB_PUBLISH_PRICE_CHANGE,
    LOCK_FEATURE_RECOMPUTE,
)
from sellerops.domain.exceptions import PermanentJobError
from sellerops.infrastructure.cache.advisory_lock import EntityLockGuard
from sellerops.infrastructure.jobs.registry import JobContext, JobHandlerRegistry
from sellerops.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


def _require(job: JobResult, key: str) -> Any:
    value = job.payload.get(key)
    if value is None or value == "":
        raise PermanentJobError(
            f"{job.job_type} payload requires '{key}'", {"job_id": job.id, "field": key}
        )
    return value


class BuiltinJobHandlers:
    """PUBLISH_PRICE_CHANGE, APPLY_LISTING_TEMPLATE and COMPUTE_FEATURES."""

    def __init__(
        self,
        *,
        pricing_service: IPricingService,
        template_service: ITemplateService,
        feature_service: IFeatureService,
        lock_guard: EntityLockGuard,
    ) -> None:
        self._pricing = pricing_service
        self._templates = template_service
        self._features = feature_service
        self._locks = lock_guard

    def register(self, registry: JobHandlerRegistry) -> JobHandlerRegistry:
        registry.register(JOB_PUBLISH_PRICE_CHANGE, self.publish_price_change)
        registry.register(JOB_APPLY_LISTING_TEMPLATE, self.apply_listing_template)
        registry.register(JOB_COMPUTE_FEATURES, self.compute_features)
        return registry

    async def publish_price_change(self, job: JobResult, ctx: JobContext) -> dict[str, Any]:
        """Publish a price, then queue a deduplicated feature recompute."""
        entity_id = str(_require(job, "entity_id"))
        try:
            new_price = Decimal(str(_require(job, "new_price")))
        except InvalidOperation:
            raise PermanentJobError(
                f"Invalid new_price: {job.payload.get('new_price')!r}", {"job_id": job.id}
            ) from None
        if not new_price.is_finite():
            raise PermanentJobError(f"new_price must be a finite number, got {new_price}", {"job_id": job.id})
        if new_price <= 0:
            raise PermanentJobError(f"new_price must be positive, got {new_price}", {"job_id": job.id})

        await ctx.raise_if_cancelled()
        response = await self._pricing.update_price(
            entity_id, new_price, reason=job.payload.get("reason")
        )
        follow_up = await ctx.enqueue(
            JOB_COMPUTE_FEATURES, {"entity_id": entity_id}, dedup_key=entity_id
        )
        logger.info("Published price %s for %s (features job %s)", new_price, entity_id, follow_up.id)
        return {
            "entity_id": entity_id,
            "new_price": str(new_price),
            "marketplace_response": response,
            "features_job_id": follow_up.id,
        }

    async def apply_listing_template(self, job: JobResult, ctx: JobContext) -> dict[str, Any]:
        entity_id = str(_require(job, "entity_id"))
        template_id = str(_require(job, "template_id"))
        await ctx.raise_if_cancelled()
        result = await self._templates.apply(entity_id, template_id)
        return {"entity_id": entity_id, "template_id": template_id, "result": result}

    async def compute_features(self, job: JobResult, ctx: JobContext) -> dict[str, Any]:
        """Recompute features under the entity lock; a busy lock yields last-known-good."""
        entity_id = str(_require(job, "entity_id"))

        async def compute() -> dict[str, Any]:
            await ctx.raise_if_cancelled()
            return await self._features.compute(entity_id)

        outcome = await self._locks.run_exclusive(LOCK_FEATURE_RECOMPUTE, entity_id, compute)
        return {"entity_id": entity_id, "computed": outcome.computed, "features": outcome.value}
