import os
from datetime import timedelta
from functools import lru_cache
from typing import Any

from loguru import logger
from pydantic_settings import BaseSettings
from pydantic import field_validator, Field


class Settings(BaseSettings):
    """Application settings."""
    # General settings
    debug: bool = Field(default=False, alias="DEBUG")
    app_name: str = "Glimpse Like Engine"

    # Web server
    WEBAPP_HOST: str = Field(default="0.0.0.0", alias="WEBAPP_HOST")
    WEBAPP_PORT: int = Field(default=int(os.environ.get("PORT", 8080)), alias="WEBAPP_PORT")  # Railway sets PORT

    # Database settings
    db_url: str = Field(default="sqlite+aiosqlite:///./glimpse.db", alias="DATABASE_URL")

    # Like policy
    LIKE_COOLDOWN_DAYS: int = Field(default=14, alias="LIKE_COOLDOWN_DAYS")
    LIKE_CANCEL_WINDOW_HOURS: int = Field(default=24, alias="LIKE_CANCEL_WINDOW_HOURS")
    SUPER_LIKE_BYPASSES_COOLDOWN: bool = Field(default=False, alias="SUPER_LIKE_BYPASSES_COOLDOWN")

    # Secrets
    MATCH_KEY_SECRET: str = Field(default="dev-match-key-secret", alias="MATCH_KEY_SECRET")
    ENCRYPTION_KEY: str = Field(default="dev-encryption-key-32-chars-long", alias="ENCRYPTION_KEY")
    PAYMENT_WEBHOOK_SECRET: str = Field(default="dev-payment-webhook-secret", alias="PAYMENT_WEBHOOK_SECRET")

    # Interest registrations
    INTEREST_TTL_DAYS: int = Field(default=90, alias="INTEREST_TTL_DAYS")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", alias="LOG_LEVEL")
    LOG_FILE: str = Field(default="logs/glimpse_{time}.log", alias="LOG_FILE")

    @field_validator("ENCRYPTION_KEY")
    @classmethod
    def _check_encryption_key(cls, v: Any) -> str:
        """AES-256 needs exactly 32 bytes of key material."""
        if not isinstance(v, str) or len(v.encode("utf-8")) != 32:
            logger.error("ENCRYPTION_KEY must be exactly 32 bytes")
            raise ValueError("Invalid encryption key: must be exactly 32 characters")
        return v

    @field_validator("LIKE_COOLDOWN_DAYS", "LIKE_CANCEL_WINDOW_HOURS", "INTEREST_TTL_DAYS")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Durations must not be negative")
        return v

    @property
    def like_cooldown(self) -> timedelta:
        return timedelta(days=self.LIKE_COOLDOWN_DAYS)

    @property
    def like_cancel_window(self) -> timedelta:
        return timedelta(hours=self.LIKE_CANCEL_WINDOW_HOURS)

    @property
    def interest_ttl(self) -> timedelta:
        return timedelta(days=self.INTEREST_TTL_DAYS)

    class Config:
        env_file = ".env"
        extra = "ignore" # Ignore any extra fields not defined above
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    # Clear cache if needed for testing: get_settings.cache_clear()
    return Settings()
