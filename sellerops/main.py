"""FastAPI application entry point.

Wiring only: lifespan, exception handlers, routers. Settings are loaded
inside create_app() so tests can set env before calling it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI

from sellerops.api.v1 import api_router
from sellerops.api.v1.endpoints import metrics
from sellerops.core.config import get_settings
from sellerops.core.exception_handlers import register_exception_handlers
from sellerops.core.lifespan import create_lifespan
from sellerops.shared.telemetry.logging import setup_logging

if TYPE_CHECKING:
    from sellerops.core.runtime import AutomationRuntime


def create_app(runtime: AutomationRuntime | None = None) -> FastAPI:
    """Build the operator API.

    Args:
        runtime: Optional automation runtime to start with the app; its job
            queue and execution store back the API.
    """
    settings = get_settings()
    setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=create_lifespan,
    )
    app.state.runtime = runtime
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    app.include_router(metrics.router, tags=["metrics"])
    return app


app = create_app()
