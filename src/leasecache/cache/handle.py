"""
Namespaced cache handle implementing the lease protocol.

``get`` on an absent key atomically plants an in-progress marker and
reports a miss, making the caller the single producer for that key.
Concurrent callers that find the marker back off and poll until the
producer's ``set`` lands, or until their wait budget runs out.
"""

import inspect
import logging
import random
import re
import time
from enum import Enum
from typing import Any

from leasecache.cache.backoff import WaitState
from leasecache.cache.base import PeekResult, StoreBackend
from leasecache.cache.codec import MISSING, MarkerKind, decode, encode, is_marker
from leasecache.cache.errors import CacheDecodeError, CacheProtocolError, StoreConnectionError
from leasecache.cache.events import CacheEvent, LogCallback, emit
from leasecache.cache.lease import LeaseScriptRunner

logger = logging.getLogger(__name__)

_PATTERN_SPECIALS = re.compile(r"([.?*\[\]])")


def redis_safe_pattern(text: str) -> str:
    """Escape KEYS pattern metacharacters in a literal prefix."""
    return _PATTERN_SPECIALS.sub(r"\\\1", text)


class GetState(str, Enum):
    """States of a single ``get`` call."""

    ADMITTING = "admitting"
    WAITING = "waiting"
    PROBING = "probing"
    RETURN_MISS = "return_miss"
    RETURN_NULL = "return_null"
    RETURN_VALUE = "return_value"


_TERMINAL = frozenset({GetState.RETURN_MISS, GetState.RETURN_NULL, GetState.RETURN_VALUE})


class CacheHandle:
    """
    Cache for one namespace, backed by a shared store.

    ``get`` returns ``MISSING`` for a miss (the caller should compute and
    ``set``), ``None`` for a cached null, or the cached value.
    """

    def __init__(
        self,
        store: StoreBackend,
        namespace: str | None = None,
        default_ttl: int = 60,
        async_timeout: float | None = None,
        separator: str = ":",
        log: LogCallback | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize a cache handle.

        Args:
            store: Store shared by all handles of a provider
            namespace: Key prefix (None or "" = no prefix)
            default_ttl: TTL in seconds for set() calls without one
            async_timeout: Seconds get() waits on another caller's lease
                (None = default_ttl, 0 = never wait)
            separator: Delimiter between namespace and key
            log: Event callback (None = module logger at DEBUG)
            rng: Random source for backoff jitter
        """
        self._store = store
        self._namespace = namespace or ""
        self._prefix = f"{namespace}{separator}" if namespace else ""
        self._default_ttl = default_ttl
        self._async_timeout = default_ttl if async_timeout is None else async_timeout
        self._log = log
        self._rng = rng
        self._runner = LeaseScriptRunner(store)

    @property
    def name(self) -> str:
        return self._store.name

    @property
    def namespace(self) -> str:
        return self._namespace

    def _key(self, key: str) -> str:
        """Get prefixed key."""
        return f"{self._prefix}{key}"

    def _lease_seconds(self, wait: WaitState) -> int:
        if wait.budget:
            return max(1, int(wait.budget))
        return self._default_ttl

    async def get(
        self,
        key: str,
        *,
        async_timeout: float | None = None,
        log: LogCallback | None = None,
    ) -> Any:
        """
        Get a value, taking the lease if nobody holds it.

        Args:
            key: Cache key
            async_timeout: Override for the wait budget in seconds
            log: Override for the event callback

        Returns:
            MISSING on a miss, None for a cached null, or the cached value
        """
        value, _ = await self._get(key, async_timeout, log)
        return value

    async def _get(
        self,
        key: str,
        async_timeout: float | None,
        log: LogCallback | None,
    ) -> tuple[Any, bool]:
        """Run the get protocol; the flag is True when this call now holds the lease."""
        started = time.monotonic()
        log = log or self._log
        budget = self._async_timeout if async_timeout is None else async_timeout
        wait = WaitState(budget=budget, rng=self._rng)
        store_key = self._key(key)
        state = GetState.ADMITTING
        value: Any = MISSING
        leased = False

        while state not in _TERMINAL:
            try:
                if state is GetState.ADMITTING:
                    state, value, leased = await self._admit(store_key, key, wait, log, started)
                elif state is GetState.WAITING:
                    await wait.sleep()
                    state = GetState.ADMITTING
                elif state is GetState.PROBING:
                    state, leased = await self._probe(store_key, key, wait, log, started)
            except StoreConnectionError as e:
                emit(log, CacheEvent.STORE_ERROR, key, started, str(e))
                state = GetState.RETURN_MISS
            except (CacheDecodeError, CacheProtocolError) as e:
                emit(log, CacheEvent.DECODE_EXCEPTION, key, started, str(e))
                state = GetState.RETURN_MISS

        if state is GetState.RETURN_VALUE:
            return value, False
        if state is GetState.RETURN_NULL:
            return None, False
        return MISSING, leased

    async def _admit(
        self,
        store_key: str,
        key: str,
        wait: WaitState,
        log: LogCallback | None,
        started: float,
    ) -> tuple[GetState, Any, bool]:
        marker = await self._runner.admit(store_key, self._lease_seconds(wait))

        if marker.kind is MarkerKind.NEW:
            emit(log, CacheEvent.ADMISSION_NEW, key, started)
            return GetState.RETURN_MISS, MISSING, True
        if marker.kind is MarkerKind.NULL:
            emit(log, CacheEvent.ADMISSION_HIT_NULL, key, started)
            return GetState.RETURN_NULL, None, False
        if marker.kind is MarkerKind.VALUE:
            emit(log, CacheEvent.ADMISSION_HIT_VALUE, key, started, marker.value)
            return GetState.RETURN_VALUE, marker.value, False
        if marker.kind is MarkerKind.ABSENT:
            logger.warning(f"Admission returned no reply for {store_key}")
            return GetState.RETURN_MISS, MISSING, False

        # In progress elsewhere
        if not wait.budget:
            emit(log, CacheEvent.WAIT_TIMEOUT, key, started, wait.total)
            return GetState.RETURN_MISS, MISSING, False
        if wait.total == 0:
            emit(log, CacheEvent.WAIT_BEGIN, key, started)
        wait.advance()
        if wait.exhausted:
            emit(log, CacheEvent.WAIT_TIMEOUT, key, started, wait.total)
            return GetState.PROBING, MISSING, False
        return GetState.WAITING, MISSING, False

    async def _probe(
        self,
        store_key: str,
        key: str,
        wait: WaitState,
        log: LogCallback | None,
        started: float,
    ) -> tuple[GetState, bool]:
        remaining = await self._runner.probe_extend(store_key, self._lease_seconds(wait))
        if remaining == 0:
            emit(log, CacheEvent.LEASE_EXPIRED_TAKEOVER, key, started, wait.total)
            return GetState.RETURN_MISS, True
        wait.rebudget(remaining)
        emit(log, CacheEvent.LEASE_EXTENDED, key, started, remaining)
        return GetState.WAITING, False

    async def set(self, key: str, data: Any, ttl_ms: float | None = None) -> "CacheHandle":
        """
        Store a value, a cached null, or an in-progress marker.

        Args:
            key: Cache key
            data: JSON-serializable value, None, or an awaitable (which
                registers a lease instead of a value)
            ttl_ms: TTL in milliseconds (None/0 = default_ttl seconds)

        Returns:
            This handle, for chaining
        """
        serialized = encode(data)
        ttl = int(ttl_ms / 1000) if ttl_ms else self._default_ttl
        emit(self._log, CacheEvent.SET, key, detail=serialized)
        try:
            await self._store.setex(self._key(key), max(1, ttl), serialized)
        except StoreConnectionError as e:
            emit(self._log, CacheEvent.STORE_ERROR, key, detail=str(e))
        return self

    async def has(self, key: str) -> bool:
        """
        Check whether anything (value, null or lease) is stored for a key.

        Raises:
            StoreConnectionError: If the store cannot be reached
        """
        return await self._store.type(self._key(key)) != "none"

    async def peek(self, key: str) -> Any:
        """
        Inspect a key without taking part in the lease protocol.

        Returns:
            MISSING if absent or expiring, the value for a JSON slot, or a
            PeekResult for a cached null or an in-progress lease

        Raises:
            StoreConnectionError: If the store cannot be reached
            CacheDecodeError: If the slot holds malformed JSON
            CacheProtocolError: If the slot holds an unknown marker
        """
        store_key = self._key(key)
        raw = await self._store.get(store_key)
        if raw is None:
            return MISSING
        if not is_marker(raw):
            return decode(raw).value

        ttl = await self._store.ttl(store_key)
        if ttl <= 0:
            return MISSING

        marker = decode(raw)
        expires = time.time() * 1000 + ttl * 1000
        if marker.kind is MarkerKind.NULL:
            return PeekResult(expires=expires, value=None, has_value=True)
        if marker.kind is MarkerKind.IN_PROGRESS:
            return PeekResult(expires=expires)
        raise CacheProtocolError(f"Invalid cache marker for {store_key}")

    async def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True on success (whether or not the key existed), False on a
            store error
        """
        emit(self._log, CacheEvent.DELETE, key)
        try:
            await self._store.delete(self._key(key))
            return True
        except StoreConnectionError as e:
            emit(self._log, CacheEvent.STORE_ERROR, key, detail=str(e))
            return False

    async def clear(self) -> None:
        """
        Delete every key in this namespace.

        The prefix pattern also matches nested namespaces, so clearing "a"
        removes the keys of "a:b" as well.
        """
        try:
            found = await self._store.keys(redis_safe_pattern(self._prefix) + "*")
            await self._store.delete(*found)
        except StoreConnectionError as e:
            emit(self._log, CacheEvent.STORE_ERROR, self._prefix, detail=str(e))

    async def keys(self) -> list[str]:
        """List the store keys in this namespace, or [] on a store error."""
        try:
            return await self._store.keys(redis_safe_pattern(self._prefix) + "*")
        except StoreConnectionError as e:
            emit(self._log, CacheEvent.STORE_ERROR, self._prefix, detail=str(e))
            return []

    async def expire_keys(self, now: float | None = None) -> None:
        """No-op: expiry is left to the store's native TTL."""
        return None

    async def get_or_set(
        self,
        key: str,
        factory: Any,
        ttl_ms: float | None = None,
    ) -> Any:
        """
        Get a value, or compute and cache it if this caller holds the lease.

        Args:
            key: Cache key
            factory: Callable, coroutine function or plain value
            ttl_ms: TTL in milliseconds if the value needs to be computed

        Returns:
            Cached or computed value
        """
        value, leased = await self._get(key, None, None)
        if value is not MISSING:
            return value

        try:
            value = factory() if callable(factory) else factory
            if inspect.isawaitable(value):
                value = await value
        except Exception:
            # Release our lease so waiters stop polling
            if leased:
                await self.delete(key)
            raise

        await self.set(key, value, ttl_ms)
        return value

    async def health_check(self) -> dict[str, Any]:
        """
        Perform a health check on the underlying store.

        Returns:
            Dict with health status info
        """
        health = await self._store.health_check()
        health["namespace"] = self._namespace
        return health
