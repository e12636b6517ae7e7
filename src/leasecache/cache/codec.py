"""
Marker codec for cache slots.

A cache slot is a single string. It holds either JSON text for a real
value, or one of the sentinel markers below. JSON text never starts with
``@``, so markers and encoded values cannot be confused.
"""

import inspect
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from leasecache.cache.errors import CacheDecodeError, CacheProtocolError

MARKER_PREFIX = "@"
NULL_MARKER = "@null"
IN_PROGRESS_MARKER = "@promise"
NEW_REPLY = "@new"


class _Missing:
    """Sentinel for "nothing cached, caller should compute"."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class MarkerKind(str, Enum):
    """What a raw slot or script reply represents."""

    ABSENT = "absent"
    NEW = "new"
    NULL = "null"
    IN_PROGRESS = "in_progress"
    VALUE = "value"


@dataclass(frozen=True)
class Marker:
    """Decoded form of a raw reply."""

    kind: MarkerKind
    value: Any = None


def encode(value: Any) -> str:
    """
    Encode an application value for storage.

    Args:
        value: None/MISSING, an awaitable (pending computation) or any
            JSON-serializable value

    Returns:
        String to store in the slot
    """
    if value is None or value is MISSING:
        return NULL_MARKER
    if inspect.isawaitable(value):
        return IN_PROGRESS_MARKER
    return json.dumps(value)


def _as_text(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CacheDecodeError(f"Cached payload is not UTF-8: {e}") from e
    return raw


def is_marker(raw: str | bytes) -> bool:
    """Check whether a raw slot holds a sentinel rather than JSON."""
    return _as_text(raw)[:1] == MARKER_PREFIX


def decode(raw: str | bytes | None) -> Marker:
    """
    Decode a raw slot or admission reply.

    Marker heads are compared before any JSON parsing, since admission
    replies may carry the discriminator ahead of other content.

    Raises:
        CacheProtocolError: For an unrecognised ``@`` marker
        CacheDecodeError: For a payload that is not valid JSON
    """
    if raw is None:
        return Marker(MarkerKind.ABSENT, MISSING)

    text = _as_text(raw)
    if text[: len(NEW_REPLY)] == NEW_REPLY:
        return Marker(MarkerKind.NEW, MISSING)
    if text[: len(NULL_MARKER)] == NULL_MARKER:
        return Marker(MarkerKind.NULL, None)
    if text[: len(IN_PROGRESS_MARKER)] == IN_PROGRESS_MARKER:
        return Marker(MarkerKind.IN_PROGRESS, MISSING)
    if text[:1] == MARKER_PREFIX:
        raise CacheProtocolError(f"Invalid cache marker: {text!r}")

    try:
        return Marker(MarkerKind.VALUE, json.loads(text))
    except (json.JSONDecodeError, TypeError) as e:
        raise CacheDecodeError(f"Cannot decode cached payload: {e}") from e
