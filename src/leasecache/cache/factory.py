"""Cache provider and factory for creating it from configuration."""

import logging
import random
from typing import Any

from leasecache.cache.base import StoreBackend
from leasecache.cache.events import LogCallback
from leasecache.cache.handle import CacheHandle
from leasecache.cache.memory import InMemoryStore
from leasecache.cache.redis import RedisStore
from leasecache.config import settings

logger = logging.getLogger(__name__)

# Global provider instance
_provider_instance: "CacheProvider | None" = None


class CacheProvider:
    """
    Owns one store connection and hands out namespaced cache handles.

    All handles created by a provider share its store.
    """

    hash_encoding = "base64"

    def __init__(
        self,
        store: StoreBackend | str | dict[str, Any],
        default_ttl: int | None = None,
        async_timeout: float | None = None,
        separator: str | None = None,
        log: LogCallback | None = None,
    ) -> None:
        """
        Initialize a provider.

        Args:
            store: A store backend, a Redis URL, or redis.asyncio.Redis options
            default_ttl: TTL in seconds for set() without one (None = config)
            async_timeout: Lease-wait budget in seconds (None = default_ttl)
            separator: Namespace delimiter (None = config)
            log: Event callback passed to every handle
        """
        if isinstance(store, StoreBackend):
            self._store = store
        else:
            self._store = _redis_store(store, log)
        self._default_ttl = settings.default_ttl if default_ttl is None else default_ttl
        if async_timeout is None:
            async_timeout = settings.async_timeout
        self._async_timeout = self._default_ttl if async_timeout is None else async_timeout
        self._separator = settings.key_separator if separator is None else separator
        self._log = log

    @property
    def name(self) -> str:
        return self._store.name

    @property
    def store(self) -> StoreBackend:
        return self._store

    def create_cache(
        self,
        namespace: str | None = None,
        async_timeout: float | None = None,
        log: LogCallback | None = None,
        rng: random.Random | None = None,
    ) -> CacheHandle:
        """
        Create a handle for a namespace.

        Args:
            namespace: Key prefix (None = unprefixed)
            async_timeout: Override for the provider's wait budget
            log: Override for the provider's event callback
            rng: Random source for backoff jitter

        Returns:
            CacheHandle bound to this provider's store
        """
        return CacheHandle(
            self._store,
            namespace=namespace,
            default_ttl=self._default_ttl,
            async_timeout=self._async_timeout if async_timeout is None else async_timeout,
            separator=self._separator,
            log=log or self._log,
            rng=rng,
        )

    async def connect(self) -> bool:
        """Connect the underlying store."""
        return await self._store.connect()

    async def close(self) -> None:
        """Close the underlying store."""
        await self._store.close()


def _redis_store(config: str | dict[str, Any], log: LogCallback | None) -> RedisStore:
    options: dict[str, Any] = {
        "max_connections": settings.redis_max_connections,
        "socket_timeout": settings.redis_socket_timeout,
        "socket_connect_timeout": settings.redis_connect_timeout,
        "reconnect_delay": settings.reconnect_delay,
        "log": log,
    }
    if isinstance(config, str):
        return RedisStore(url=config, **options)
    return RedisStore(options=config, **options)


def create_provider(
    backend: str | None = None,
    **kwargs: Any,
) -> CacheProvider:
    """
    Create a cache provider.

    Args:
        backend: Store type ("memory" or "redis"), defaults to config
        **kwargs: url/options for Redis, plus CacheProvider arguments

    Returns:
        CacheProvider instance

    Raises:
        ValueError: If backend type is unknown
    """
    backend_type = backend or settings.cache_backend
    url = kwargs.pop("url", None)
    options = kwargs.pop("options", None)

    if backend_type == "memory":
        return CacheProvider(InMemoryStore(), **kwargs)

    elif backend_type == "redis":
        config = url or options or settings.redis_url
        if not config:
            logger.warning(
                "Redis URL not configured, falling back to in-memory store. "
                "Leases will only exclude callers in this process. "
                "Set LEASECACHE_REDIS_URL to share the cache across processes."
            )
            return CacheProvider(InMemoryStore(), **kwargs)

        return CacheProvider(config, **kwargs)

    else:
        raise ValueError(f"Unknown cache backend: {backend_type}")


def get_provider() -> CacheProvider:
    """
    Get the global provider instance.

    Creates the provider on first access using configuration settings.

    Returns:
        CacheProvider instance
    """
    global _provider_instance

    if _provider_instance is None:
        _provider_instance = create_provider()
        logger.info(f"Initialized cache provider for {_provider_instance.name}")

    return _provider_instance


async def initialize_provider() -> CacheProvider:
    """
    Initialize the global provider and establish its connection.

    A failed connection is logged; the store reconnects lazily and every
    cache call degrades to a miss until it does.

    Returns:
        Initialized CacheProvider instance
    """
    provider = get_provider()
    if not await provider.connect():
        logger.warning(f"Cache store {provider.name} unavailable, gets will miss until it recovers")
    return provider


async def shutdown_provider() -> None:
    """Close the global provider's store connection."""
    global _provider_instance

    if _provider_instance is not None:
        await _provider_instance.close()
        _provider_instance = None
        logger.info("Cache shutdown complete")


def reset_provider() -> None:
    """
    Reset the global provider instance.

    Useful for testing or when configuration changes.
    """
    global _provider_instance
    _provider_instance = None
