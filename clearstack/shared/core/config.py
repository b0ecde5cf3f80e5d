from functools import lru_cache
from threading import Lock
from typing import Optional

import structlog
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the ClearStack compliance core.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "ClearStack"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False
    APP_BASE_URL: str = "http://localhost:5173"

    # Database
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Europe/Paris"

    # Retention windows (days)
    AUDIT_RETENTION_DAYS: int = 730
    DELETION_QUEUE_RETENTION_DAYS: int = 365
    NOTIFICATION_RETENTION_DAYS: int = 90

    # Right-to-erasure
    ERASURE_GRACE_PERIOD_DAYS: int = 30
    ERASURE_EMAIL_DOMAIN: str = "erased.invalid"
    ERASURE_HASH_LENGTH: int = 16

    # Alerts
    DEFAULT_CONTRACT_NOTICE_DAYS: int = 95
    ALERT_DEDUP_ENABLED: bool = True
    DIGEST_SEND_DELAY_SECONDS: float = 0.1

    # SMTP
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: str = "notifications@clearstack.local"
    SMTP_TIMEOUT_SECONDS: float = 10.0

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation, grouped by concern."""
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )
        if self.TESTING:
            return self

        self._validate_database_config()
        self._validate_retention_config()
        return self

    def _validate_database_config(self) -> None:
        if self.is_production and not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is required in production.")

    def _validate_retention_config(self) -> None:
        windows = {
            "AUDIT_RETENTION_DAYS": self.AUDIT_RETENTION_DAYS,
            "DELETION_QUEUE_RETENTION_DAYS": self.DELETION_QUEUE_RETENTION_DAYS,
            "NOTIFICATION_RETENTION_DAYS": self.NOTIFICATION_RETENTION_DAYS,
            "ERASURE_GRACE_PERIOD_DAYS": self.ERASURE_GRACE_PERIOD_DAYS,
        }
        for name, value in windows.items():
            if value < 1:
                raise ValueError(f"{name} must be >= 1 day.")
        if not 8 <= self.ERASURE_HASH_LENGTH <= 64:
            raise ValueError("ERASURE_HASH_LENGTH must be between 8 and 64.")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == ENV_PRODUCTION

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )
