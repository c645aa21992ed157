"""
Opportunity Board - Configuration
=================================

All engine settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Opportunity Board"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ==========================================================================
    # Remote API
    # ==========================================================================
    API_BASE_URL: str = "http://localhost:8000/api/v1"
    REMOTE_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Cache engine
    # ==========================================================================
    TEMP_ID_PREFIX: str = "tmp-"
    SERIALIZE_PARTITION_MUTATIONS: bool = False  # last write wins when off
    REFETCH_ON_INVALIDATE: bool = True
    AUTO_COMPLETE_OPPORTUNITIES: bool = False

    # Partitions count as stale once their last fresh read is older than this
    STALE_AFTER_SECONDS: float = 300.0
    COMPLETED_STALE_AFTER_SECONDS: float = 600.0

    # ==========================================================================
    # Filters
    # ==========================================================================
    FILTER_DEBOUNCE_SECONDS: float = 0.3
    CLIENT_FILTER_MAX_LENGTH: int = 100

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @computed_field  # type: ignore[misc]
    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
