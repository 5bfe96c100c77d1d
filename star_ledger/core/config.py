from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STARS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = "development"
    ledger_backend: Literal["sql", "memory"] = "sql"
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "STARS_DATABASE_URL"),
    )
    database_isolation_level: str = "SERIALIZABLE"
    database_auto_create: bool = False
    ledger_fallback_to_memory: bool = False
    ledger_retry_attempts: int = Field(default=5, ge=1)
    ledger_retry_backoff_seconds: float = Field(default=0.02, ge=0)
    recent_transactions_limit: int = Field(default=50, ge=1)
    redis_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "STARS_REDIS_URL"),
    )
    change_feed_channel: str = "stars:ledger"
    cors_allowed_origins: str = "http://localhost:3000"


settings = Settings()
