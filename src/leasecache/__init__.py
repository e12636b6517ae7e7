"""Distributed lease-based memo cache on Redis."""

from leasecache.cache import (
    MISSING,
    CacheHandle,
    CacheProvider,
    PeekResult,
    create_provider,
)

__version__ = "0.1.0"

__all__ = [
    "MISSING",
    "CacheHandle",
    "CacheProvider",
    "PeekResult",
    "create_provider",
]
