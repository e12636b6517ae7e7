"""Configuration module using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Cache settings loaded from LEASECACHE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEASECACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    redis_url: str | None = None  # e.g. redis://localhost:6379/0
    cache_backend: str = "redis"  # "redis" or "memory"
    redis_connect_timeout: float = 1.0  # Fail fast so callers fall back to computing
    redis_socket_timeout: float = 5.0
    redis_max_connections: int = 10
    reconnect_delay: float = 10.0

    # Lease protocol
    default_ttl: int = 60  # Seconds, for set() without an explicit TTL
    async_timeout: int | None = None  # Seconds to wait on a lease (None = default_ttl)
    key_separator: str = ":"

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for quick access
settings = get_settings()
