"""Tracing setup for the API and worker processes.

Each process calls configure_telemetry(settings, role) once at startup and
shutdown_telemetry() on exit. The role ("api" or "worker") is appended to
the service name so spans from the two processes can be told apart.
The SQL engine is instrumented when it is created (see
persistence.database); Redis is instrumented here when it is enabled.
"""

import logging
import threading

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from sqlalchemy.ext.asyncio import AsyncEngine

from sellerops.core.config import Settings

logger = logging.getLogger(__name__)

# Health checks and scrapes would otherwise dominate the API's traces
_UNTRACED_URLS = "health,metrics"


def build_span_exporter(kind: str, otlp_endpoint: str | None = None) -> SpanExporter | None:
    """Exporter for a telemetry_exporter setting; None for "none"."""
    match kind:
        case "none":
            return None
        case "console":
            return ConsoleSpanExporter()
        case "otlp":
            if not otlp_endpoint:
                raise ValueError("telemetry_otlp_endpoint is required for the otlp exporter")
            return OTLPSpanExporter(
                endpoint=otlp_endpoint, insecure=otlp_endpoint.startswith("http://")
            )
    raise ValueError(f"Unknown telemetry exporter: {kind!r}")


class ProcessTelemetry:
    """The tracer provider of one process and what it has instrumented."""

    def __init__(self, provider: TracerProvider, role: str) -> None:
        self.provider = provider
        self.role = role
        self.sqlalchemy_instrumented = False
        self.redis_instrumented = False

    def instrument_app(self, app: FastAPI) -> None:
        FastAPIInstrumentor.instrument_app(
            app, tracer_provider=self.provider, excluded_urls=_UNTRACED_URLS
        )
        logger.info("FastAPI instrumented for %s", self.role)

    def instrument_engine(self, engine: AsyncEngine) -> None:
        """Trace queries on the process engine. Later engines are ignored."""
        if self.sqlalchemy_instrumented:
            return
        SQLAlchemyInstrumentor().instrument(
            engine=engine.sync_engine, tracer_provider=self.provider
        )
        self.sqlalchemy_instrumented = True
        logger.info("SQLAlchemy instrumented (%s)", engine.url.get_backend_name())

    def instrument_redis(self) -> None:
        if self.redis_instrumented:
            return
        RedisInstrumentor().instrument(tracer_provider=self.provider)
        self.redis_instrumented = True

    def shutdown(self) -> None:
        """Remove instrumentation, then flush and close the span pipeline."""
        if self.sqlalchemy_instrumented:
            SQLAlchemyInstrumentor().uninstrument()
            self.sqlalchemy_instrumented = False
        if self.redis_instrumented:
            RedisInstrumentor().uninstrument()
            self.redis_instrumented = False
        self.provider.shutdown()


_current: ProcessTelemetry | None = None
_current_lock = threading.RLock()


def get_telemetry() -> ProcessTelemetry | None:
    with _current_lock:
        return _current


def configure_telemetry(settings: Settings, role: str) -> ProcessTelemetry | None:
    """Install the global tracer provider for this process.

    Returns None (and installs nothing) when telemetry is disabled. Calling
    it again returns the already configured instance.

    Raises:
        ValueError: unknown exporter, or otlp without an endpoint.
    """
    global _current
    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled")
        return None
    with _current_lock:
        if _current is not None:
            return _current
        exporter = build_span_exporter(
            settings.telemetry_exporter, settings.telemetry_otlp_endpoint
        )
        provider = TracerProvider(
            resource=Resource(
                attributes={
                    SERVICE_NAME: f"{settings.app_name}-{role}",
                    SERVICE_VERSION: settings.app_version,
                    "service.namespace": settings.app_name,
                    "deployment.environment": settings.environment,
                }
            ),
            sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_rate)),
        )
        if exporter is not None:
            provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        _current = ProcessTelemetry(provider, role)
        if settings.redis_enabled:
            _current.instrument_redis()
        logger.info(
            "Telemetry initialized: service=%s-%s exporter=%s sample_rate=%s",
            settings.app_name, role, settings.telemetry_exporter, settings.telemetry_sample_rate,
        )
        return _current


def shutdown_telemetry() -> None:
    global _current
    with _current_lock:
        telemetry, _current = _current, None
    if telemetry is not None:
        telemetry.shutdown()
        logger.info("Telemetry shutdown complete (%s)", telemetry.role)
