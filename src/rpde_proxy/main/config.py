import logging
import os
from typing import Optional

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CC_BY_LICENSE = "https://creativecommons.org/licenses/by/4.0/"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    # Infrastructure dependencies
    postgres_user: str
    postgres_host: str
    postgres_password: str
    postgres_port: int
    postgres_db: str
    redis_host: str
    redis_port: int
    redis_db: Optional[int] = None

    # Redis connection resilience
    redis_conn_timeout: int = 5
    redis_conn_retries: int = 5
    redis_conn_retry_delay: int = 1
    redis_retry_on_timeout: bool = True
    redis_socket_keepalive: bool = True
    redis_health_check_interval: int = 30
    redis_max_connections: Optional[int] = None

    # Public base URL the proxied feeds are served from (e.g. https://proxy.example/)
    feed_base_url: str = "http://localhost:8000/"

    # Origin feeds
    rpde_license: str = CC_BY_LICENSE
    recommended_poll_interval_header: str = "X-Recommended-Poll-Interval"
    origin_timeout_seconds: float = 30.0
    origin_user_agent: str = "rpde-proxy"

    # Poll cadence
    min_poll_interval_seconds: int = 5
    max_poll_interval_seconds: int = 3600
    default_poll_interval_seconds: int = 8  # last page without any caching signal

    # Retry policy
    max_consecutive_retries: int = 15  # ~18 hours of exponential backoff
    store_retry_after_seconds: int = 10

    # Purge
    purge_batch_size: int = 1000
    purge_continuation_delay_seconds: int = 1
    purge_max_retry_delay_seconds: int = 3600

    # Registration
    registration_max_attempts: int = 3
    registration_retry_delay_seconds: int = 30
    deleted_item_retention_days: int = 7  # RPDE recommendation

    # Delay queue transport
    queue_lock_duration_seconds: int = 60
    queue_max_delivery_count: int = 10
    consumer_concurrency: int = 16
    consumer_idle_sleep_seconds: float = 1.0

    # Resync reconciler
    resync_sample_count: int = 8
    resync_sample_interval_seconds: float = 2.0

    # Worker
    worker_max_jobs: int = 20
    worker_job_timeout_seconds: int = 300

    # Dev
    testing: bool = False
    dev: bool = False

    @model_validator(mode="after")
    def validate_poll_bounds(self) -> "Settings":
        if self.min_poll_interval_seconds > self.max_poll_interval_seconds:
            raise ValueError(
                "min_poll_interval_seconds must not exceed max_poll_interval_seconds"
            )
        if self.purge_batch_size <= 0:
            raise ValueError("purge_batch_size must be positive")
        return self

    @computed_field
    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    def feed_url(self, name: str) -> str:
        return f"{self.feed_base_url.rstrip('/')}/api/feeds/{name}"


class OperatorControls(BaseSettings):
    """Operator switches, read from the environment on every invocation.

    Never cache an instance: workers run in many processes, and an operator
    flipping ``CLEAR_PROXY_CACHE`` must be seen by the next message handled
    anywhere.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clear_proxy_cache: bool = False


def get_operator_controls() -> OperatorControls:
    return OperatorControls()


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
