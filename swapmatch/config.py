# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Application configuration using Pydantic settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./data/swapmatch.db",
        description="Database URL (sqlite URLs are switched to aiosqlite)",
    )
    validate_schema_on_startup: bool = Field(
        default=True,
        description="Check live tables against the ORM metadata at startup",
    )

    # Targeting graph
    cycle_check_max_depth: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum hops followed when looking for targeting cycles",
    )

    # Auctions
    auction_default_max_proposals: int = Field(
        default=10,
        ge=1,
        description="Concurrent proposals allowed when an auction sets no limit",
    )
    auction_min_lead_days: int = Field(
        default=7,
        ge=0,
        description="Days an auction must end before the reservation check-in",
    )

    # Compatibility cache
    compatibility_cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Lifetime of cached compatibility scores",
    )

    # Background sweeps
    sweep_interval_seconds: int = Field(
        default=60,
        ge=10,
        le=3600,
        description="Interval between listing expiry and auction sweeps",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Application settings instance.
    """
    return Settings()
