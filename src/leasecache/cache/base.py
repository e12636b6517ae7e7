"""Abstract base class for store backends and shared cache types."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class PeekResult:
    """
    Metadata for a slot that holds a marker rather than a value.

    Attributes:
        expires: Epoch milliseconds at which the slot expires
        value: The cached value (only meaningful when has_value is True)
        has_value: False while the computation is still in progress
    """

    expires: float
    value: Any = None
    has_value: bool = False

    @property
    def ttl_remaining(self) -> float:
        """Get remaining TTL in seconds."""
        return max(0.0, (self.expires - time.time() * 1000) / 1000)

    @property
    def in_progress(self) -> bool:
        """True while another caller holds the lease."""
        return not self.has_value


class StoreBackend(ABC):
    """
    Abstract base class for the key-value store behind the cache.

    Implementations must run ``admit`` and ``probe_extend`` atomically
    with respect to every other client of the same key. All methods raise
    ``StoreConnectionError`` when the store cannot serve the request.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Identifier for this store.

        Returns:
            Connection URL or backend name
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """
        Check if the store is connected and healthy.

        Returns:
            True if connected, False otherwise
        """
        ...

    @abstractmethod
    async def connect(self) -> bool:
        """
        Establish the connection.

        Returns:
            True if connected successfully
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> str | bytes | None:
        """Get the raw slot for a key, or None if absent."""
        ...

    @abstractmethod
    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        """Store a raw slot with a TTL in seconds."""
        ...

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """
        Delete keys.

        Returns:
            Number of keys removed
        """
        ...

    @abstractmethod
    async def type(self, key: str) -> str:
        """Get the store type of a key ("none" when absent)."""
        ...

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """List keys matching a glob-style pattern."""
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Get remaining TTL in seconds (-2 absent, -1 no expiry)."""
        ...

    @abstractmethod
    async def admit(self, key: str, lease_seconds: int) -> str | bytes | None:
        """
        Atomically read a key, creating a lease marker if absent.

        Args:
            key: Store key
            lease_seconds: TTL for a newly created lease marker

        Returns:
            The new-lease discriminator, or the existing raw slot
        """
        ...

    @abstractmethod
    async def probe_extend(self, key: str, lease_seconds: int) -> int:
        """
        Atomically check a lease's TTL and re-arm it if it has run out.

        Args:
            key: Store key
            lease_seconds: TTL to re-arm with

        Returns:
            0 if the TTL was re-armed, otherwise the remaining TTL
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the store connection."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """
        Perform a health check on the store.

        Returns:
            Dict with health status info
        """
        return {
            "backend": self.name,
            "connected": self.is_connected,
        }
