"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. This ensures:
1. Type validation at startup
2. Centralized configuration
3. Documentation of available settings
4. Proper defaults
"""

from datetime import time
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from order_sync.schemas.order import BusinessDayConfig


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Local durable store - embedded SQLite by default, "memory" for throwaway runs
    database_url: str = "sqlite:///./data/order_sync.db"
    storage_backend: Literal["sql", "memory"] = "sql"

    # ==========================================================================
    # Remote system of record
    # ==========================================================================
    remote_base_url: str = "http://localhost:8000/api/v1"
    remote_api_key: Optional[str] = None
    remote_timeout_seconds: float = 10.0

    # Connectivity polling (event notifications are the primary signal)
    connectivity_poll_interval_seconds: float = 1.0

    # ==========================================================================
    # Business day - may cross midnight (end <= start)
    # ==========================================================================
    business_day_start: str = "10:00"
    business_day_end: str = "03:00"

    # Timezone
    timezone: Optional[str] = None

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    @field_validator("business_day_start", "business_day_end")
    @classmethod
    def validate_time_of_day(cls, v: str) -> str:
        try:
            time.fromisoformat(v)
        except ValueError:
            raise ValueError(f"Expected a HH:MM time of day, got {v!r}")
        return v

    @field_validator("remote_timeout_seconds", "connectivity_poll_interval_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @property
    def business_day_config(self) -> BusinessDayConfig:
        """Business day window as a typed config."""
        return BusinessDayConfig(
            start_time=self.business_day_start,
            end_time=self.business_day_end,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
