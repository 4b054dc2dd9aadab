"""Configuration management for the matching core."""

from typing import Any

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    DATABASE_URL: str
    DB_MAX_RETRIES: int = 3

    # Redis Configuration (rate limiting is disabled when unset)
    REDIS_URL: str | None = None

    # Sentry Configuration
    SENTRY_DSN: str | None = None

    # Application Configuration
    APP_NAME: str = "MatchCore"
    SITE_NAME: str = "OpenCupid"
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    DEBUG: bool = Field(default=False)
    FRONTEND_URL: str = "http://localhost:5173"
    DEFAULT_LOCALE: str = "en"

    # API Configuration
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Messaging
    WELCOME_MESSAGE_SENDER_PROFILE_ID: str | None = None
    MESSAGE_PAGE_SIZE: int = 10

    # Calls
    CALL_RING_TIMEOUT_SECONDS: int = 30

    # Discovery
    DATING_AGE_PADDING_YEARS: int = 1
    DISCOVERY_PAGE_SIZE: int = 20

    @field_validator("DEBUG", mode="before")
    @classmethod
    def set_debug(cls, v: Any, info: ValidationInfo) -> bool:
        """Enable debug mode if ENVIRONMENT is development."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str) and v:
            return v.lower() in ("1", "true", "yes")
        return bool(info.data.get("ENVIRONMENT", "").lower() == "development")

    @field_validator("DATING_AGE_PADDING_YEARS")
    @classmethod
    def padding_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("DATING_AGE_PADDING_YEARS cannot be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore")


# Create a global settings instance
settings = Settings()  # type: ignore


def get_settings() -> Settings:
    """Return the settings instance."""
    return settings
