"""Typed settings loader for the weather activity service."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AnyUrl, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_env: Literal["dev", "staging", "prod"] = Field(default="dev", alias="APP_ENV")
    open_meteo_geocoding_url: AnyUrl = Field(
        default="https://geocoding-api.open-meteo.com/v1",
        alias="OPEN_METEO_GEOCODING_URL",
    )
    open_meteo_forecast_url: AnyUrl = Field(
        default="https://api.open-meteo.com/v1",
        alias="OPEN_METEO_FORECAST_URL",
    )
    open_meteo_api_key: str | None = Field(
        default=None, alias="OPEN_METEO_API_KEY", repr=False
    )
    provider_timeout_seconds: float = Field(default=10.0, alias="PROVIDER_TIMEOUT_SECONDS")
    provider_user_agent: str = Field(
        default="weather-activity-service/0.1",
        alias="PROVIDER_USER_AGENT",
    )

    cache_max_entries: int = Field(default=1000, alias="CACHE_MAX_ENTRIES")
    cache_ttl_seconds: float = Field(default=3600.0, alias="CACHE_TTL_SECONDS")

    rate_limit_max_attempts: int = Field(default=3, alias="RATE_LIMIT_MAX_ATTEMPTS")
    rate_limit_retry_delay_seconds: float = Field(
        default=1.0,
        alias="RATE_LIMIT_RETRY_DELAY_SECONDS",
    )
    retry_deadline_seconds: float = Field(default=30.0, alias="RETRY_DEADLINE_SECONDS")

    query_max_complexity: int = Field(default=1000, alias="QUERY_MAX_COMPLEXITY")
    default_city_limit: int = Field(default=10, alias="DEFAULT_CITY_LIMIT")
    default_forecast_days: int = Field(default=7, alias="DEFAULT_FORECAST_DAYS")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    @field_validator("open_meteo_api_key", mode="before")
    @classmethod
    def empty_string_to_none(cls, value: Any) -> Any:
        """Treat an empty env-string API key as unset."""
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def validate_limits(self) -> Settings:
        """Validate numeric bounds for timeouts, cache, retry and query policy."""
        if self.provider_timeout_seconds <= 0:
            raise ValueError("PROVIDER_TIMEOUT_SECONDS must be > 0.")
        if not self.provider_user_agent.strip():
            raise ValueError("PROVIDER_USER_AGENT must not be empty.")
        if self.cache_max_entries <= 0:
            raise ValueError("CACHE_MAX_ENTRIES must be > 0.")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("CACHE_TTL_SECONDS must be > 0.")
        if self.rate_limit_max_attempts <= 0:
            raise ValueError("RATE_LIMIT_MAX_ATTEMPTS must be > 0.")
        if self.rate_limit_retry_delay_seconds < 0:
            raise ValueError("RATE_LIMIT_RETRY_DELAY_SECONDS must be >= 0.")
        if self.retry_deadline_seconds <= 0:
            raise ValueError("RETRY_DEADLINE_SECONDS must be > 0.")
        if self.query_max_complexity <= 0:
            raise ValueError("QUERY_MAX_COMPLEXITY must be > 0.")
        if self.default_city_limit < 0:
            raise ValueError("DEFAULT_CITY_LIMIT must be >= 0.")
        if self.default_forecast_days < 0:
            raise ValueError("DEFAULT_FORECAST_DAYS must be >= 0.")
        return self

    def safe_summary(self) -> dict[str, Any]:
        """Return config summary safe for logging (no credentials)."""
        return {
            "app_env": self.app_env,
            "geocoding_url": str(self.open_meteo_geocoding_url),
            "forecast_url": str(self.open_meteo_forecast_url),
            "api_key_configured": self.open_meteo_api_key is not None,
            "provider_timeout_seconds": self.provider_timeout_seconds,
            "cache_max_entries": self.cache_max_entries,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "rate_limit_max_attempts": self.rate_limit_max_attempts,
            "rate_limit_retry_delay_seconds": self.rate_limit_retry_delay_seconds,
            "retry_deadline_seconds": self.retry_deadline_seconds,
            "query_max_complexity": self.query_max_complexity,
        }


def load_settings() -> Settings:
    """Load and validate settings, raising ConfigError on failure."""
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed reading environment/.env: {exc}") from exc
