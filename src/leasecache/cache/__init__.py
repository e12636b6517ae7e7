"""
Lease-based read-through cache.

Provides a namespaced cache handle over a shared store (Redis, or
in-memory for a single process) that lets at most one caller compute a
key's value while others wait for it.
"""

from leasecache.cache.base import PeekResult, StoreBackend
from leasecache.cache.codec import MISSING
from leasecache.cache.errors import (
    CacheDecodeError,
    CacheError,
    CacheProtocolError,
    StoreConnectionError,
)
from leasecache.cache.events import CacheEvent
from leasecache.cache.factory import (
    CacheProvider,
    create_provider,
    get_provider,
    initialize_provider,
    reset_provider,
    shutdown_provider,
)
from leasecache.cache.handle import CacheHandle, GetState
from leasecache.cache.memory import InMemoryStore
from leasecache.cache.redis import RedisStore

__all__ = [
    "MISSING",
    "CacheDecodeError",
    "CacheError",
    "CacheEvent",
    "CacheHandle",
    "CacheProtocolError",
    "CacheProvider",
    "GetState",
    "InMemoryStore",
    "PeekResult",
    "RedisStore",
    "StoreBackend",
    "StoreConnectionError",
    "create_provider",
    "get_provider",
    "initialize_provider",
    "reset_provider",
    "shutdown_provider",
]
