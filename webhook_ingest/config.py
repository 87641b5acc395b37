"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()

ONE_MIB = 1024 * 1024


class Settings(BaseSettings):
    """Environment configuration for the webhook ingestion service."""

    app_env: str = Field(default=ENV, validation_alias=AliasChoices("APP_ENV", "app_env"))
    database_url: str = "sqlite:///webhook_ingest.db"
    LOG_LEVEL: str = "INFO"

    # --- Provider secrets ------------------------------------------------
    cakto_webhook_secret: str | None = None
    mp_webhook_secret: str | None = None
    WEBHOOK_SKIP_SIGNATURE_VALIDATION: bool = False

    # --- Receiver --------------------------------------------------------
    WEBHOOK_MAX_BODY_BYTES: int = ONE_MIB
    WEBHOOK_RATE_LIMIT_ENABLED: bool = True
    WEBHOOK_RATE_LIMIT_PER_MINUTE: int = 100

    # --- Batch processor -------------------------------------------------
    WEBHOOK_BATCH_SIZE: int = 10
    WEBHOOK_STUCK_TIMEOUT_MINUTES: int = 5
    WEBHOOK_MAX_ATTEMPTS: int = 5
    WEBHOOK_PROCESSOR_INTERVAL_SECONDS: int = 30

    # --- Scheduler -------------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_LOCK_TTL_SECONDS: int = 300
    ALLOW_DB_CREATE_ALL: bool = False

    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("cakto_webhook_secret", "mp_webhook_secret")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty webhook secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator(
        "WEBHOOK_BATCH_SIZE",
        "WEBHOOK_MAX_ATTEMPTS",
        "WEBHOOK_MAX_BODY_BYTES",
        "WEBHOOK_STUCK_TIMEOUT_MINUTES",
        "WEBHOOK_PROCESSOR_INTERVAL_SECONDS",
        "WEBHOOK_RATE_LIMIT_PER_MINUTE",
        "SCHEDULER_LOCK_TTL_SECONDS",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value


class AppInfo(BaseModel):
    name: str = "webhook-ingest"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "ONE_MIB",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
