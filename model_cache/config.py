"""
Model Cache Configuration

Settings loaded from environment variables (prefix ``MODEL_CACHE_``) using
Pydantic Settings, with validation of TTLs and strategy names.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TTL_SECONDS = 600


class CacheSettings(BaseSettings):
    """Caching layer settings."""

    model_config = SettingsConfigDict(
        env_prefix="MODEL_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # POLICY
    # ═══════════════════════════════════════════════════════════════
    enabled: bool = Field(default=True, description="Global caching switch")
    default_ttl_seconds: int = Field(
        default=DEFAULT_TTL_SECONDS, gt=0, description="TTL used when an entity has no override"
    )
    key_prefix: str = Field(default="model_cache:", description="Prefix for every cache key")
    invalidation_strategy: Literal["scoped", "blanket"] = Field(
        default="scoped", description="How mutation events map to flushed tags"
    )
    fail_open: bool = Field(
        default=False,
        description="Execute queries directly when the cache store is unavailable",
    )
    max_cached_result_bytes: int = Field(
        default=1048576, ge=1, description="Largest encoded value a remote store accepts"
    )

    # ═══════════════════════════════════════════════════════════════
    # REDIS (Optional)
    # ═══════════════════════════════════════════════════════════════
    redis_url: str | None = Field(default=None, description="Redis URL")
    redis_password: str | None = Field(default=None, description="Redis password")
    redis_socket_timeout: float = Field(default=2.0, gt=0, description="Socket timeout in seconds")

    # ═══════════════════════════════════════════════════════════════
    # LOGGING
    # ═══════════════════════════════════════════════════════════════
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        if any(ch.isspace() for ch in v):
            raise ValueError("key_prefix cannot contain whitespace")
        return v


@lru_cache
def get_settings() -> CacheSettings:
    """Get cached settings instance."""
    return CacheSettings()


def clear_settings_cache() -> None:
    """Forget the cached settings (tests, reconfiguration)."""
    get_settings.cache_clear()


__all__ = [
    "DEFAULT_TTL_SECONDS",
    "CacheSettings",
    "get_settings",
    "clear_settings_cache",
]
