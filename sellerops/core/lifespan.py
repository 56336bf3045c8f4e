"""Application lifespan: startup and shutdown.

Wiring only. When the app was created with an AutomationRuntime, the
runtime is started and its stores are exposed on app.state; otherwise the
operator API gets its own job queue and execution store.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from sellerops.core.config import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def create_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run startup then yield; on exit run shutdown.

    Startup order: telemetry (if enabled), stores or runtime.
    Shutdown order: runtime stop, telemetry shutdown, SQL engine dispose.
    """
    settings = get_settings()

    # ---- Startup ----
    if settings.telemetry_enabled:
        from sellerops.shared.telemetry.telemetry import configure_telemetry

        telemetry = configure_telemetry(settings, role="api")
        if telemetry is not None:
            telemetry.instrument_app(app)

    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.start(workers=False)
        app.state.job_queue = runtime.job_queue
        app.state.execution_store = runtime.execution_store
    else:
        from sellerops.application.services.retry_policy import RetryPolicy

        if settings.job_store_backend == "sql":
            from sellerops.infrastructure.jobs import SqlJobQueue
            from sellerops.infrastructure.persistence.database import get_session_factory
            from sellerops.infrastructure.persistence.stores import SqlExecutionStore

            session_factory = get_session_factory()
            app.state.job_queue = SqlJobQueue(
                session_factory, RetryPolicy.from_settings(settings), settings.job_default_max_attempts
            )
            app.state.execution_store = SqlExecutionStore(session_factory)
        else:
            from sellerops.infrastructure.jobs import InMemoryJobQueue
            from sellerops.infrastructure.services.memory_stores import InMemoryExecutionStore

            app.state.job_queue = InMemoryJobQueue(
                RetryPolicy.from_settings(settings), settings.job_default_max_attempts
            )
            app.state.execution_store = InMemoryExecutionStore()

    yield

    # ---- Shutdown ----
    if runtime is not None:
        await runtime.stop()
        logger.info("Automation runtime stopped")

    from sellerops.shared.telemetry.telemetry import shutdown_telemetry

    shutdown_telemetry()

    from sellerops.infrastructure.persistence.database import dispose_engine

    await dispose_engine()
    logger.info("Database engine disposed")
