"""Runner for the two atomic lease operations."""

from leasecache.cache.base import StoreBackend
from leasecache.cache.codec import Marker, decode


class LeaseScriptRunner:
    """
    Issues admission and probe-extend against a store and interprets
    the raw replies.
    """

    def __init__(self, store: StoreBackend) -> None:
        self._store = store

    async def admit(self, key: str, lease_seconds: int) -> Marker:
        """
        Read a key, creating a lease marker if it is absent.

        Exactly one concurrent caller per key-creation epoch gets
        ``MarkerKind.NEW``; everyone else sees the marker or value
        written since.

        Raises:
            StoreConnectionError: If the store call fails
            CacheDecodeError: If the slot holds malformed JSON
            CacheProtocolError: If the slot holds an unknown marker
        """
        reply = await self._store.admit(key, lease_seconds)
        return decode(reply)

    async def probe_extend(self, key: str, lease_seconds: int) -> int:
        """
        Check whether a lease is still legitimately held.

        Returns:
            0 if the lease had no TTL left and has been re-armed for the
            caller to take over, otherwise the remaining TTL in seconds
        """
        reply = await self._store.probe_extend(key, lease_seconds)
        return max(0, int(reply))
