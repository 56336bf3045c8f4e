"""Application configuration (settings and environment).

Single source of truth for all configuration. Uses pydantic-settings
with .env support. Backoff and worker parameters are validated at load
time so a bad deployment fails fast instead of mis-scheduling retries.
"""

from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sellerops.core.constants import DEFAULT_JOB_TYPE_TIMEOUTS

_JOB_STORE_BACKENDS = ("sql", "memory")
_TELEMETRY_EXPORTERS = ("console", "otlp", "none")


class Settings(BaseSettings):
    """Application settings loaded from environment and .env.

    Every field has a default; validate_worker_and_backoff rejects
    combinations that would break the retry policy or the worker pool.
    """

    # App
    app_name: str = "sellerops"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api/v1"

    # Database
    database_url: str = "sqlite+aiosqlite:///./sellerops.db"
    database_echo: bool = False
    db_pool_size: int | None = None
    db_max_overflow: int | None = None

    # Job store: "sql" (durable, shared) or "memory" (single process, dev only)
    job_store_backend: str = "sql"

    # Redis (cooldowns and advisory locks); in-process store when disabled
    redis_enabled: bool = False
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: SecretStr | None = None
    redis_max_connections: int = 10
    redis_event_relay_enabled: bool = False

    # Worker pool
    worker_concurrency: int = 4
    worker_poll_interval_seconds: float = 5.0
    worker_shutdown_grace_seconds: float = 30.0
    job_default_timeout_seconds: float = 300.0
    job_default_max_attempts: int = 3
    job_type_timeouts: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_JOB_TYPE_TIMEOUTS)
    )
    stale_sweep_interval_seconds: float = 60.0
    stale_claim_grace_seconds: float = 60.0

    # Retry backoff: min(max, base * 2^(n-1)) jittered by [1-jitter, 1+jitter]
    backoff_base_seconds: float = 30.0
    backoff_max_seconds: float = 3600.0
    backoff_jitter: float = 0.5

    # Rules
    default_cooldown_seconds: int = 3600
    rule_reload_interval_seconds: float = 0.0
    event_bus_queue_size: int = 1000
    webhook_timeout_seconds: float = 10.0
    default_min_margin_percent: float = 15.0

    # OpenTelemetry
    telemetry_enabled: bool = False
    telemetry_exporter: str = "console"
    telemetry_otlp_endpoint: str | None = None
    telemetry_sample_rate: float = 1.0
    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_worker_and_backoff(self) -> "Settings":
        """Validate job store backend, pool size and backoff parameters."""
        if self.job_store_backend not in _JOB_STORE_BACKENDS:
            raise ValueError(
                f"job_store_backend must be one of {_JOB_STORE_BACKENDS}, "
                f"got: {self.job_store_backend!r}"
            )
        if self.job_store_backend == "sql" and not self.database_url:
            raise ValueError(
                "DATABASE_URL is required when job_store_backend is 'sql'. "
                "Set in environment or .env file."
            )
        if self.telemetry_exporter not in _TELEMETRY_EXPORTERS:
            raise ValueError(
                f"telemetry_exporter must be one of {_TELEMETRY_EXPORTERS}, "
                f"got: {self.telemetry_exporter!r}"
            )
        if self.telemetry_enabled and self.telemetry_exporter == "otlp" and not self.telemetry_otlp_endpoint:
            raise ValueError("TELEMETRY_OTLP_ENDPOINT is required for the otlp exporter")
        if not 0.0 <= self.telemetry_sample_rate <= 1.0:
            raise ValueError("telemetry_sample_rate must be within [0, 1]")
        if self.worker_concurrency < 1:
            raise ValueError("worker_concurrency must be at least 1")
        if self.job_default_max_attempts < 1:
            raise ValueError("job_default_max_attempts must be at least 1")
        if self.backoff_base_seconds <= 0:
            raise ValueError("backoff_base_seconds must be positive")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        if not 0.0 <= self.backoff_jitter <= 1.0:
            raise ValueError("backoff_jitter must be within [0, 1]")
        return self

    def timeout_for(self, job_type: str) -> float:
        """Return the handler timeout in seconds for a job type."""
        return self.job_type_timeouts.get(job_type, self.job_default_timeout_seconds)


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings (one instance per process)."""
    return Settings()
