from datetime import time
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised application settings, sourced from environment variables or .env."""

    app_name: str = Field(default="SplitBot")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    database_url: str = Field(alias="DATABASE_URL")
    direct_database_url: Optional[str] = Field(
        default=None,
        alias="DIRECT_DATABASE_URL",
        description="Optional direct Postgres connection string used for running migrations.",
    )
    auto_run_migrations: bool = Field(default=False, alias="AUTO_RUN_MIGRATIONS")
    redis_url: Optional[str] = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis instance holding conversation sessions; an in-process store is used when unset.",
    )
    telegram_bot_token: Optional[str] = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_webhook_secret: Optional[str] = Field(
        default=None, alias="TELEGRAM_WEBHOOK_SECRET"
    )
    telegram_register_webhook_on_start: bool = Field(
        default=False, alias="TELEGRAM_REGISTER_WEBHOOK_ON_START"
    )
    backend_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        alias="BACKEND_BASE_URL",
        description="The public URL where FastAPI is reachable (used by Telegram webhooks).",
    )
    blob_storage_path: Path = Field(
        default=Path("data/blobs"),
        alias="BLOB_STORAGE_PATH",
        description="Directory where bill photos and transfer slips are written.",
    )
    expense_session_ttl_seconds: int = Field(
        default=600,
        alias="EXPENSE_SESSION_TTL_SECONDS",
        description="Lifetime of an idle expense-creation conversation (in seconds).",
        ge=60,
    )
    payment_session_ttl_seconds: int = Field(
        default=300,
        alias="PAYMENT_SESSION_TTL_SECONDS",
        description="Lifetime of an idle payment confirmation (in seconds).",
        ge=60,
    )
    reminders_enabled: bool = Field(
        default=True,
        alias="REMINDERS_ENABLED",
        description="Schedule the daily DM reminder for members with unpaid splits.",
    )
    reminder_time: time = Field(
        default=time(hour=10, minute=0),
        alias="REMINDER_TIME",
        description="Time of day (UTC) at which the daily reminder runs.",
    )
    webapp_init_data_max_age_seconds: int = Field(
        default=60 * 60 * 24,
        alias="WEBAPP_INIT_DATA_MAX_AGE_SECONDS",
        description="Maximum age of the mini-app init data payload (in seconds).",
        ge=60,
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached accessor so imports share a single settings instance."""
    return Settings()  # type: ignore[call-arg]
