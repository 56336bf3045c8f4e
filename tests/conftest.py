"""Pytest configuration and fixtures for sellerops.

Unit tests use in-memory stores and AsyncMock business services. SQL tests
run against a throwaway SQLite file (aiosqlite); HTTP tests drive the
FastAPI app over ASGI with stores placed on app.state directly.
"""

import os
from collections.abc import AsyncIterator
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sellerops.application.services.retry_policy import RetryPolicy
from sellerops.core.config import get_settings
from sellerops.domain.entities import Entity, Scope
from sellerops.infrastructure.cache import InMemoryCooldownStore
from sellerops.infrastructure.jobs import InMemoryJobQueue
from sellerops.infrastructure.persistence.database import create_all, create_session_factory
from sellerops.infrastructure.services.action_executors import build_action_executors
from sellerops.infrastructure.services.memory_stores import InMemoryExecutionStore
from sellerops.infrastructure.services.rule_executor import RuleExecutor
from sellerops.shared.enums import ScopeKind

os.environ.setdefault("JOB_STORE_BACKEND", "memory")
os.environ.setdefault("REDIS_ENABLED", "false")
get_settings.cache_clear()


class FakeEntityLookup:
    """Entity lookup over a dict; resolve() honours the scope kinds."""

    def __init__(self, entities: list[Entity] | None = None) -> None:
        self.entities: dict[str, Entity] = {e.id: e for e in entities or []}

    def add(self, *entities: Entity) -> None:
        for entity in entities:
            self.entities[entity.id] = entity

    async def get(self, entity_type: str, entity_id: str) -> Entity | None:
        entity = self.entities.get(entity_id)
        if entity is None or entity.entity_type != entity_type:
            return None
        return entity

    async def resolve(self, scope: Scope) -> list[Entity]:
        candidates = [e for e in self.entities.values() if e.entity_type == scope.entity_type]
        match scope.kind:
            case ScopeKind.CATEGORY:
                return [e for e in candidates if e.in_category(scope.value)]
            case ScopeKind.TAG:
                return [e for e in candidates if e.has_tag(scope.value)]
            case ScopeKind.SINGLE:
                return [e for e in candidates if e.id == scope.value]
        return candidates


@pytest.fixture
def entity_lookup() -> FakeEntityLookup:
    return FakeEntityLookup()


@pytest.fixture
def task_service() -> AsyncMock:
    svc = AsyncMock()
    counter = iter(range(1, 10_000))
    svc.create = AsyncMock(side_effect=lambda **kwargs: {"id": f"task-{next(counter)}", **kwargs})
    svc.delete = AsyncMock(return_value=None)
    return svc


@pytest.fixture
def pricing_service() -> AsyncMock:
    svc = AsyncMock()
    svc.get_current_price = AsyncMock(return_value=Decimal("20.00"))
    svc.get_buy_box_price = AsyncMock(return_value=Decimal("18.00"))
    svc.calculate_min_price_for_margin = AsyncMock(return_value=Decimal("15.00"))
    svc.update_price = AsyncMock(return_value={"status": "accepted"})
    return svc


@pytest.fixture
def alert_service() -> AsyncMock:
    svc = AsyncMock()
    svc.send = AsyncMock(return_value={"id": "alert-1"})
    return svc


@pytest.fixture
def tag_service() -> AsyncMock:
    svc = AsyncMock()
    svc.add_tag = AsyncMock(return_value=True)
    svc.remove_tag = AsyncMock(return_value=True)
    return svc


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue(RetryPolicy(base_seconds=30.0, max_seconds=3600.0, jitter=0.0))


@pytest.fixture
def cooldown_store() -> InMemoryCooldownStore:
    return InMemoryCooldownStore()


@pytest.fixture
def execution_store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def action_executors(job_queue, task_service, pricing_service, alert_service, tag_service):
    return build_action_executors(
        job_queue=job_queue,
        task_service=task_service,
        pricing_service=pricing_service,
        alert_service=alert_service,
        tag_service=tag_service,
    )


@pytest.fixture
def rule_executor(
    cooldown_store, execution_store, entity_lookup, action_executors, task_service
) -> RuleExecutor:
    return RuleExecutor(
        cooldown_store=cooldown_store,
        execution_store=execution_store,
        entity_lookup=entity_lookup,
        executors=action_executors,
        task_service=task_service,
    )


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory over a fresh SQLite file with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sellerops.db'}")
    await create_all(engine)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
async def client(job_queue, execution_store) -> AsyncIterator[AsyncClient]:
    """Async HTTP client against the FastAPI app (ASGI) with in-memory stores."""
    from sellerops.main import create_app

    app = create_app()
    app.state.job_queue = job_queue
    app.state.execution_store = execution_store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
