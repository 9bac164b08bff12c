import logging
import os
import sys
from typing import Optional

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    app_version: str = "0.1.0"

    # Infrastructure dependencies
    postgres_user: str = "postgres"
    postgres_host: str = "localhost"
    postgres_password: str = "postgres"
    postgres_port: int = 5432
    postgres_db: str = "locallift"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: Optional[int] = None
    redis_conn_timeout: int = 5
    redis_conn_retries: int = 5
    redis_conn_retry_delay: int = 1
    redis_retry_on_timeout: bool = True
    redis_max_connections: Optional[int] = None

    # Misc
    api_prefix: str = "/api/v1"
    testing: bool = False
    dev: bool = False

    # Rank check API
    rank_check_api_url: Optional[str] = None
    rank_check_api_key: Optional[str] = None
    rank_check_timeout_seconds: float = 45.0
    rank_check_min_delay_seconds: float = 15.0
    rank_check_delay_jitter_seconds: float = 2.0
    rank_check_error_cooldown_seconds: float = 10.0
    rank_check_retry_attempts: int = 4
    rank_check_initial_backoff_seconds: float = 10.0
    rank_check_backoff_multiplier: float = 2.5
    rank_check_max_backoff_seconds: float = 120.0
    rank_check_backoff_jitter_seconds: float = 1.0
    rank_check_rate_limit_cooldown_seconds: float = 30.0
    rank_check_item_max_attempts: int = 3
    rank_check_estimated_seconds_per_item: float = 12.0
    rank_check_cron_hour: int = 2

    # Business Profile publishing
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_token_url: str = "https://oauth2.googleapis.com/token"
    gbp_api_base_url: str = "https://mybusiness.googleapis.com/v4"
    post_publish_timeout_seconds: float = 30.0
    post_publish_min_delay_seconds: float = 0.1
    post_publish_delay_jitter_seconds: float = 0.0
    post_publish_error_cooldown_seconds: float = 1.0
    post_publish_retry_attempts: int = 4
    post_publish_initial_backoff_seconds: float = 1.0
    post_publish_backoff_multiplier: float = 2.0
    post_publish_max_backoff_seconds: float = 30.0
    post_publish_backoff_jitter_seconds: float = 0.5
    post_publish_rate_limit_cooldown_seconds: float = 10.0
    post_publish_estimated_seconds_per_item: float = 2.0
    post_publish_cron_enabled: bool = True

    # Batch orchestration
    batch_stale_threshold_minutes: int = 30
    batch_progress_retain_finished: int = 50
    rate_limiter_tenant_warn_threshold: int = 10_000

    # Worker
    worker_max_jobs: int = 4
    worker_job_timeout_seconds: int = 6 * 60 * 60

    @model_validator(mode="after")
    def validate_batch_settings(self):
        """Ensure orchestration-related configuration values are sane."""
        for name in ("rank_check_retry_attempts", "post_publish_retry_attempts"):
            if getattr(self, name) <= 0:
                logging.error(
                    "%s must be greater than zero. Current value: %s",
                    name.upper(),
                    getattr(self, name),
                )
                sys.exit(1)

        if self.rank_check_item_max_attempts <= 0:
            logging.error(
                "RANK_CHECK_ITEM_MAX_ATTEMPTS must be greater than zero. Current value: %s",
                self.rank_check_item_max_attempts,
            )
            sys.exit(1)

        for name in ("rank_check_backoff_multiplier", "post_publish_backoff_multiplier"):
            if getattr(self, name) < 1:
                logging.error(
                    "%s cannot be lower than 1. Current value: %s",
                    name.upper(),
                    getattr(self, name),
                )
                sys.exit(1)

        for name in (
            "rank_check_min_delay_seconds",
            "rank_check_delay_jitter_seconds",
            "rank_check_error_cooldown_seconds",
            "post_publish_min_delay_seconds",
            "post_publish_delay_jitter_seconds",
            "post_publish_error_cooldown_seconds",
        ):
            if getattr(self, name) < 0:
                logging.error(
                    "%s cannot be negative. Current value: %s",
                    name.upper(),
                    getattr(self, name),
                )
                sys.exit(1)

        if not 0 <= self.rank_check_cron_hour <= 23:
            logging.error(
                "RANK_CHECK_CRON_HOUR must be between 0 and 23. Current value: %s",
                self.rank_check_cron_hour,
            )
            sys.exit(1)

        if self.batch_stale_threshold_minutes <= 0:
            logging.error(
                "BATCH_STALE_THRESHOLD_MINUTES must be greater than zero. Current value: %s",
                self.batch_stale_threshold_minutes,
            )
            sys.exit(1)

        if self.worker_max_jobs <= 0:
            logging.error(
                "WORKER_MAX_JOBS must be greater than zero. Current value: %s",
                self.worker_max_jobs,
            )
            sys.exit(1)

        return self

    @computed_field
    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def rank_check_configured(self) -> bool:
        return bool(self.rank_check_api_url and self.rank_check_api_key)


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
