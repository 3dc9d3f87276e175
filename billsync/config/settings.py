"""
Configuration Management for Bill Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunables of the synchronization engine live here.
Retry counts, timeouts and the cache lifetime are constants of the
deployment, not of the code, so they can be changed without a release.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Cache, retry and timeout configuration for the sync engine."""

    model_config = SettingsConfigDict(
        env_prefix="BILLSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Cache
    # Older notes mention a 5 minute lifetime; 15 is the value in force.
    cache_ttl_minutes: float = Field(
        default=15.0,
        gt=0,
        description="Minutes after which a cached month is flagged stale"
    )

    # Retry / timeout
    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries after the first failed attempt"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff base; attempt n waits base * 2**n"
    )
    operation_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Absolute bound for a single store call attempt"
    )

    # Performance monitoring
    slow_query_threshold_ms: float = Field(
        default=500.0,
        gt=0.0,
        description="Store calls slower than this are logged as slow"
    )
    query_log_size: int = Field(
        default=100,
        ge=1,
        description="Number of recent store call timings to keep"
    )

    # Defaults for a never-populated month
    default_multiplier: float = Field(
        default=9.0,
        gt=0,
        description="Rate per unit for electricity and motor readings"
    )
    default_number_of_people: int = Field(
        default=2,
        ge=1,
        description="Head count the motor charge is split across"
    )

    @property
    def cache_ttl_seconds(self) -> float:
        """Get the cache lifetime in seconds."""
        return self.cache_ttl_minutes * 60


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
