"""In-memory store backend implementation."""

import re
import time
from dataclasses import dataclass
from typing import Any, Callable

from leasecache.cache.base import StoreBackend
from leasecache.cache.codec import IN_PROGRESS_MARKER, NEW_REPLY
from leasecache.cache.errors import StoreConnectionError


@dataclass
class _Slot:
    value: str
    expires_at: float | None = None


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile a Redis KEYS pattern.

    Supports ``*``, ``?``, ``[...]`` classes and backslash escapes, which
    ``fnmatch`` does not.
    """
    out = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("^"):
                    body = "^" + re.escape(body[1:]).replace("\\-", "-")
                else:
                    body = re.escape(body).replace("\\-", "-")
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z", re.DOTALL)


class InMemoryStore(StoreBackend):
    """
    Process-local store with native TTL.

    Best for:
    - Single-instance deployments
    - Development and testing

    Limitations:
    - Leases only exclude callers within this process
    - Lost on restart

    No method awaits between reading and writing a slot, so admission and
    probing are atomic under the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize in-memory store.

        Args:
            clock: Seconds clock used for expiry
        """
        self._store: dict[str, _Slot] = {}
        self._clock = clock
        self._connected = True

    @property
    def name(self) -> str:
        return "memory"

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        self._connected = True
        return True

    def _live(self, key: str) -> _Slot | None:
        slot = self._store.get(key)
        if slot is None:
            return None
        if slot.expires_at is not None and self._clock() >= slot.expires_at:
            del self._store[key]
            return None
        return slot

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    async def get(self, key: str) -> str | None:
        slot = self._live(key)
        return None if slot is None else slot.value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store a raw slot, without expiry unless a TTL is given."""
        self._store[key] = _Slot(value, self._expiry(ttl_seconds))

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        if ttl_seconds <= 0:
            raise StoreConnectionError("invalid expire time in setex command")
        self._store[key] = _Slot(value, self._expiry(ttl_seconds))

    async def delete(self, *keys: str) -> int:
        count = 0
        for key in keys:
            if self._live(key) is not None:
                del self._store[key]
                count += 1
        return count

    async def type(self, key: str) -> str:
        return "none" if self._live(key) is None else "string"

    async def keys(self, pattern: str) -> list[str]:
        regex = glob_to_regex(pattern)
        return [k for k in list(self._store) if self._live(k) is not None and regex.match(k)]

    async def ttl(self, key: str) -> int:
        slot = self._live(key)
        if slot is None:
            return -2
        if slot.expires_at is None:
            return -1
        return int(round(slot.expires_at - self._clock()))

    async def admit(self, key: str, lease_seconds: int) -> str:
        slot = self._live(key)
        if slot is None:
            self._store[key] = _Slot(IN_PROGRESS_MARKER, self._expiry(lease_seconds))
            return NEW_REPLY
        return slot.value

    async def probe_extend(self, key: str, lease_seconds: int) -> int:
        remaining = await self.ttl(key)
        if remaining <= 0:
            slot = self._live(key)
            if slot is not None:
                slot.expires_at = self._expiry(lease_seconds)
            return 0
        return remaining

    async def close(self) -> None:
        self._connected = False
        self._store.clear()

    async def health_check(self) -> dict[str, Any]:
        """Return health status with store statistics."""
        return {
            "backend": self.name,
            "connected": self.is_connected,
            "total_entries": sum(1 for k in list(self._store) if self._live(k) is not None),
        }

    def size(self) -> int:
        """Get current number of entries (sync method for convenience)."""
        return len(self._store)
