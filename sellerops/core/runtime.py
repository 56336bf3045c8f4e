"""Automation runtime: the composition root for the job core and rule engine.

Builds every store, the event bus, action executors, rule executor,
trigger dispatcher, rule registry and worker pool from Settings plus the
business services supplied by the host application. Nothing in the core is
a module-level singleton; the runtime owns each component's lifecycle.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sellerops.application.interfaces.services import (
    IAlertService,
    IEntityLookup,
    IFeatureService,
    IPricingService,
    ITagService,
    ITaskService,
    ITemplateService,
)
from sellerops.application.interfaces.stores import (
    ICooldownStore,
    IExecutionStore,
    IJobQueue,
    IRuleSource,
)
from sellerops.application.services.retry_policy import RetryPolicy
from sellerops.core.config import Settings, get_settings
from sellerops.core.constants import JOB_COMPUTE_FEATURES
from sellerops.infrastructure.cache import EntityLockGuard, InMemoryCooldownStore, RedisCooldownStore
from sellerops.infrastructure.jobs import (
    InMemoryJobQueue,
    JobHandlerRegistry,
    JobWorkerPool,
    SqlJobQueue,
    StaleClaimSweeper,
)
from sellerops.infrastructure.jobs.handlers import BuiltinJobHandlers
from sellerops.infrastructure.messaging import EventBus
from sellerops.infrastructure.messaging.redis_relay import run_redis_event_relay
from sellerops.infrastructure.persistence.database import get_session_factory
from sellerops.infrastructure.persistence.stores import SqlExecutionStore, SqlRuleSource
from sellerops.infrastructure.services.action_executors import build_action_executors
from sellerops.infrastructure.services.alert_template_renderer import AlertTemplateRenderer
from sellerops.infrastructure.services.memory_stores import InMemoryExecutionStore, StaticRuleSource
from sellerops.infrastructure.services.rule_executor import RuleExecutor
from sellerops.infrastructure.services.rule_registry import RuleRegistry
from sellerops.infrastructure.services.trigger_dispatcher import TriggerDispatcher
from sellerops.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BusinessServices:
    """External collaborators the core calls through narrow interfaces."""

    entity_lookup: IEntityLookup
    task_service: ITaskService
    pricing_service: IPricingService
    alert_service: IAlertService
    tag_service: ITagService
    template_service: ITemplateService
    feature_service: IFeatureService


class AutomationRuntime:
    """Owns and wires the automation core.

    Usage:
        runtime = AutomationRuntime(services)
        await runtime.start()
        await runtime.bus.publish("metric.score", {...}, entity_id="L1")
        ...
        await runtime.stop()
    """

    def __init__(
        self,
        services: BusinessServices,
        settings: Settings | None = None,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        job_queue: IJobQueue | None = None,
        cooldown_store: ICooldownStore | None = None,
        execution_store: IExecutionStore | None = None,
        rule_source: IRuleSource | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.services = services
        s = self.settings
        use_sql = s.job_store_backend == "sql"
        if use_sql and session_factory is None and None in (job_queue, execution_store, rule_source):
            session_factory = get_session_factory()

        self.retry_policy = RetryPolicy.from_settings(s)
        if job_queue is None:
            job_queue = (
                SqlJobQueue(session_factory, self.retry_policy, s.job_default_max_attempts)
                if use_sql
                else InMemoryJobQueue(self.retry_policy, s.job_default_max_attempts)
            )
        self.job_queue = job_queue
        self.cooldown_store = cooldown_store or (
            RedisCooldownStore(settings=s) if s.redis_enabled else InMemoryCooldownStore()
        )
        self.execution_store = execution_store or (
            SqlExecutionStore(session_factory) if use_sql else InMemoryExecutionStore()
        )
        self.rule_source = rule_source or (
            SqlRuleSource(session_factory, s.default_cooldown_seconds) if use_sql else StaticRuleSource()
        )

        self.bus = EventBus(queue_size=s.event_bus_queue_size)
        self.action_executors = build_action_executors(
            job_queue=self.job_queue,
            task_service=services.task_service,
            pricing_service=services.pricing_service,
            alert_service=services.alert_service,
            tag_service=services.tag_service,
            template_renderer=AlertTemplateRenderer(),
            http_client=http_client,
            webhook_timeout_seconds=s.webhook_timeout_seconds,
            default_min_margin_percent=s.default_min_margin_percent,
        )
        self.rule_executor = RuleExecutor(
            cooldown_store=self.cooldown_store,
            execution_store=self.execution_store,
            entity_lookup=services.entity_lookup,
            executors=self.action_executors,
            task_service=services.task_service,
        )
        self.dispatcher = TriggerDispatcher(self.bus, self.rule_executor)
        self.rules = RuleRegistry(self.rule_source, self.dispatcher)

        self.lock_guard = EntityLockGuard(
            self.cooldown_store, lock_ttl_seconds=s.timeout_for(JOB_COMPUTE_FEATURES) + s.stale_claim_grace_seconds
        )
        self.job_registry = BuiltinJobHandlers(
            pricing_service=services.pricing_service,
            template_service=services.template_service,
            feature_service=services.feature_service,
            lock_guard=self.lock_guard,
        ).register(JobHandlerRegistry(s.job_default_timeout_seconds, s.job_type_timeouts))
        self.worker_pool = JobWorkerPool(
            self.job_queue,
            self.job_registry,
            concurrency=s.worker_concurrency,
            poll_interval_seconds=s.worker_poll_interval_seconds,
            shutdown_grace_seconds=s.worker_shutdown_grace_seconds,
            sweeper=StaleClaimSweeper(
                self.job_queue,
                self.job_registry,
                grace_seconds=s.stale_claim_grace_seconds,
                interval_seconds=s.stale_sweep_interval_seconds,
            ),
        )
        self._background: list[asyncio.Task[None]] = []
        self._stop_event = asyncio.Event()
        self._started = False

    async def start(self, *, workers: bool = True, rules: bool = True) -> None:
        """Connect stores, load rules and start workers."""
        if self._started:
            return
        self._started = True
        self._stop_event.clear()
        if isinstance(self.cooldown_store, RedisCooldownStore):
            await self.cooldown_store.connect()
        if rules:
            await self.rules.load()
            if self.settings.rule_reload_interval_seconds > 0:
                self._background.append(
                    asyncio.create_task(
                        self.rules.run_periodic_reload(
                            self.settings.rule_reload_interval_seconds, self._stop_event
                        ),
                        name="rule-reload",
                    )
                )
        if self.settings.redis_enabled and self.settings.redis_event_relay_enabled:
            self._background.append(
                asyncio.create_task(
                    run_redis_event_relay(self.bus, settings=self.settings), name="redis-event-relay"
                )
            )
        if workers:
            await self.worker_pool.start()
        logger.info(
            "Automation runtime started (job store=%s, cooldown store=%s)",
            type(self.job_queue).__name__,
            type(self.cooldown_store).__name__,
        )

    async def stop(self) -> None:
        """Stop workers gracefully, then triggers, the bus and stores."""
        if not self._started:
            return
        self._started = False
        await self.worker_pool.stop()
        self._stop_event.set()
        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        await self.rules.shutdown()
        await self.bus.close(drain=False)
        if isinstance(self.cooldown_store, RedisCooldownStore):
            await self.cooldown_store.disconnect()
        logger.info("Automation runtime stopped")

    async def run_until_shutdown(self) -> None:
        """Run until SIGTERM/SIGINT, then shut down gracefully."""
        await self.start(workers=False)
        self.worker_pool.install_signal_handlers()
        try:
            await self.worker_pool.run_until_shutdown()
        finally:
            await self.stop()
