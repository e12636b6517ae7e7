"""Redis store backend implementation."""

import json
import logging
import time
from typing import Any

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from leasecache.cache.base import StoreBackend
from leasecache.cache.codec import IN_PROGRESS_MARKER, NEW_REPLY
from leasecache.cache.errors import StoreConnectionError
from leasecache.cache.events import CacheEvent, LogCallback, emit

logger = logging.getLogger(__name__)

ADMIT_SCRIPT = f"""
local v = redis.call('GET', KEYS[1])
if not v then
    redis.call('SET', KEYS[1], '{IN_PROGRESS_MARKER}', 'EX', ARGV[1])
    return '{NEW_REPLY}'
end
return v
"""

PROBE_EXTEND_SCRIPT = """
local v = redis.call('TTL', KEYS[1])
if v <= 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
    return 0
end
return v
"""


def _text(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisStore(StoreBackend):
    """
    Redis store shared by every cache namespace in a process.

    The client is created lazily and multiplexes concurrent commands over
    its connection pool. After a connection failure, reconnection is
    attempted on the next call once ``reconnect_delay`` has passed; calls
    made before then fail immediately.
    """

    def __init__(
        self,
        url: str | None = None,
        options: dict[str, Any] | None = None,
        max_connections: int = 10,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 1.0,
        reconnect_delay: float = 10.0,
        log: LogCallback | None = None,
    ) -> None:
        """
        Initialize Redis store.

        Args:
            url: Redis connection URL
            options: Keyword options for redis.asyncio.Redis (used when no URL)
            max_connections: Maximum connections in pool
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds
            reconnect_delay: Seconds to wait after a failure before reconnecting
            log: Callback for store-retry events
        """
        if url is None and options is None:
            raise ValueError("Redis configuration missing: pass a URL or options")
        self._url = url
        self._options = dict(options or {})
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._reconnect_delay = reconnect_delay
        self._log = log
        self._client: Any = None
        self._admit_script: Any = None
        self._probe_script: Any = None
        self._connected = False
        self._retry_at = 0.0

    @property
    def name(self) -> str:
        if self._url is not None:
            return self._url
        return json.dumps(self._options, sort_keys=True, default=str)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _create_client(self) -> Any:
        if self._url is not None:
            return redis.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                decode_responses=False,  # Codec handles bytes itself
            )
        options = {
            "max_connections": self._max_connections,
            "socket_timeout": self._socket_timeout,
            "socket_connect_timeout": self._socket_connect_timeout,
            **self._options,
            "decode_responses": False,
        }
        return redis.Redis(**options)

    async def connect(self) -> bool:
        """
        Connect to Redis and register the lease scripts.

        Returns:
            True if connected successfully
        """
        if self._connected and self._client:
            return True

        try:
            self._client = self._create_client()
            await self._client.ping()
            self._admit_script = self._client.register_script(ADMIT_SCRIPT)
            self._probe_script = self._client.register_script(PROBE_EXTEND_SCRIPT)
            self._connected = True
            logger.info(f"Connected to Redis at {self.name}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self._mark_disconnected(e)
            return False

    def _mark_disconnected(self, error: Exception) -> None:
        self._connected = False
        self._retry_at = time.monotonic() + self._reconnect_delay
        emit(self._log, CacheEvent.STORE_RETRY, "", detail=str(error))

    async def _ensure_connected(self) -> None:
        """Ensure we're connected to Redis, or raise StoreConnectionError."""
        if self._connected:
            return
        if time.monotonic() < self._retry_at:
            raise StoreConnectionError(f"Redis at {self.name} is unavailable")
        if not await self.connect():
            raise StoreConnectionError(f"Could not connect to Redis at {self.name}")

    def _failed(self, op: str, key: str, error: RedisError) -> StoreConnectionError:
        logger.error(f"Redis {op} error for {key}: {error}")
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            self._mark_disconnected(error)
        return StoreConnectionError(f"Redis {op} failed: {error}")

    async def get(self, key: str) -> bytes | None:
        await self._ensure_connected()
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise self._failed("GET", key, e) from e

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._ensure_connected()
        try:
            await self._client.setex(key, ttl_seconds, value)
        except RedisError as e:
            raise self._failed("SETEX", key, e) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        await self._ensure_connected()
        try:
            return await self._client.delete(*keys)
        except RedisError as e:
            raise self._failed("DEL", ",".join(keys), e) from e

    async def type(self, key: str) -> str:
        await self._ensure_connected()
        try:
            return _text(await self._client.type(key))
        except RedisError as e:
            raise self._failed("TYPE", key, e) from e

    async def keys(self, pattern: str) -> list[str]:
        await self._ensure_connected()
        try:
            return [_text(k) for k in await self._client.keys(pattern)]
        except RedisError as e:
            raise self._failed("KEYS", pattern, e) from e

    async def ttl(self, key: str) -> int:
        await self._ensure_connected()
        try:
            return int(await self._client.ttl(key))
        except RedisError as e:
            raise self._failed("TTL", key, e) from e

    async def admit(self, key: str, lease_seconds: int) -> bytes | None:
        await self._ensure_connected()
        try:
            return await self._admit_script(keys=[key], args=[lease_seconds])
        except RedisError as e:
            raise self._failed("EVAL admit", key, e) from e

    async def probe_extend(self, key: str, lease_seconds: int) -> int:
        await self._ensure_connected()
        try:
            return int(await self._probe_script(keys=[key], args=[lease_seconds]))
        except RedisError as e:
            raise self._failed("EVAL probe", key, e) from e

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                self._client = None
                self._admit_script = None
                self._probe_script = None
                self._connected = False

    async def health_check(self) -> dict[str, Any]:
        """Return health status with Redis info."""
        try:
            await self._ensure_connected()
        except StoreConnectionError:
            return {
                "backend": "redis",
                "connected": False,
                "error": "Not connected to Redis",
            }

        try:
            info = await self._client.info("server")
            keys_count = await self._client.dbsize()

            return {
                "backend": "redis",
                "connected": True,
                "redis_version": info.get("redis_version"),
                "total_keys": keys_count,
                "uptime_seconds": info.get("uptime_in_seconds"),
            }
        except Exception as e:
            return {
                "backend": "redis",
                "connected": self._connected,
                "error": str(e),
            }
