"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.

Runtime retry knobs (backoff base, base delay, global max retries) are not
process settings; they live in the config table (see ConfigRepository).
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUEUECTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/queuectl.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_busy_timeout_seconds: float = 30.0

    # API Configuration
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Worker Configuration
    worker_id: str | None = None
    worker_poll_interval_seconds: float = 1.0
    worker_stop_poll_interval_seconds: float = 0.5
    worker_execution_timeout_seconds: float = 0.0  # 0 disables the timeout
    worker_metrics_port: int | None = None

    # Reaper Configuration
    reaper_interval_seconds: int = 30
    reaper_stale_after_seconds: int = 600

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "queuectl"
    log_level: str = "INFO"
    log_format: str = "console"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
