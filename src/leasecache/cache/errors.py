"""Exceptions raised by the lease cache."""


class CacheError(Exception):
    """Base class for all cache errors."""


class StoreConnectionError(CacheError):
    """The backing store could not be reached or rejected a command."""


class CacheDecodeError(CacheError):
    """A stored payload is not valid JSON."""


class CacheProtocolError(CacheError):
    """A stored payload carries a marker this client does not recognise."""
