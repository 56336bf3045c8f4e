"""Settings validation tests."""

import pytest
from pydantic import ValidationError

from sellerops.core.config import Settings
from sellerops.core.constants import JOB_COMPUTE_FEATURES


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults_are_valid() -> None:
    settings = _settings()
    assert settings.job_store_backend == "sql"
    assert settings.backoff_base_seconds == 30.0
    assert settings.backoff_max_seconds == 3600.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"job_store_backend": "mongo"},
        {"worker_concurrency": 0},
        {"job_default_max_attempts": 0},
        {"backoff_base_seconds": 0},
        {"backoff_base_seconds": 60, "backoff_max_seconds": 30},
        {"backoff_jitter": 1.5},
        {"telemetry_exporter": "jaeger"},
        {"telemetry_enabled": True, "telemetry_exporter": "otlp"},
        {"telemetry_sample_rate": 2.0},
    ],
)
def test_invalid_combinations_fail_fast(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _settings(**overrides)


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_CONCURRENCY", "8")
    monkeypatch.setenv("JOB_TYPE_TIMEOUTS", '{"SYNC_CATALOG": 900}')
    settings = _settings()
    assert settings.worker_concurrency == 8
    assert settings.timeout_for("SYNC_CATALOG") == 900.0


def test_timeout_for_falls_back_to_default() -> None:
    settings = _settings(job_default_timeout_seconds=42)
    assert settings.timeout_for(JOB_COMPUTE_FEATURES) == 30.0
    assert settings.timeout_for("UNKNOWN") == 42.0
