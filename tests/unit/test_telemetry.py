"""Process telemetry setup: exporters, resource naming, engine instrumentation."""

import pytest
from opentelemetry.sdk.trace.export import ConsoleSpanExporter
from sqlalchemy.ext.asyncio import create_async_engine

from sellerops.core.config import Settings
from sellerops.shared.telemetry import telemetry


@pytest.fixture(autouse=True)
def _reset_telemetry():
    yield
    telemetry.shutdown_telemetry()


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_build_span_exporter() -> None:
    assert telemetry.build_span_exporter("none") is None
    assert isinstance(telemetry.build_span_exporter("console"), ConsoleSpanExporter)
    with pytest.raises(ValueError):
        telemetry.build_span_exporter("otlp")
    with pytest.raises(ValueError):
        telemetry.build_span_exporter("zipkin")


def test_disabled_telemetry_installs_nothing() -> None:
    assert telemetry.configure_telemetry(_settings(), role="worker") is None
    assert telemetry.get_telemetry() is None


def test_worker_role_names_the_service_and_is_configured_once() -> None:
    settings = _settings(telemetry_enabled=True, telemetry_exporter="none")
    configured = telemetry.configure_telemetry(settings, role="worker")
    assert configured.role == "worker"
    assert configured.provider.resource.attributes["service.name"] == "sellerops-worker"
    assert telemetry.configure_telemetry(settings, role="worker") is configured

    telemetry.shutdown_telemetry()
    assert telemetry.get_telemetry() is None


async def test_engine_is_instrumented_once_and_released_on_shutdown(tmp_path) -> None:
    configured = telemetry.configure_telemetry(
        _settings(telemetry_enabled=True, telemetry_exporter="none"), role="api"
    )
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 't.db'}")
    try:
        configured.instrument_engine(engine)
        configured.instrument_engine(engine)
        assert configured.sqlalchemy_instrumented
        telemetry.shutdown_telemetry()
        assert not configured.sqlalchemy_instrumented
    finally:
        await engine.dispose()
