"""Cache events and the pluggable log callback."""

import logging
import time
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

LogCallback = Callable[[str, str, float | None, Any], None]
"""Signature: (event, key, elapsed_ms, detail) -> None."""


class CacheEvent(str, Enum):
    """Events reported to the log callback."""

    ADMISSION_NEW = "admission-new"
    ADMISSION_HIT_NULL = "admission-hit-null"
    ADMISSION_HIT_VALUE = "admission-hit-value"
    WAIT_BEGIN = "wait-begin"
    WAIT_TIMEOUT = "wait-timeout"
    LEASE_EXTENDED = "lease-extended"
    LEASE_EXPIRED_TAKEOVER = "lease-expired-takeover"
    DECODE_EXCEPTION = "decode-exception"
    STORE_ERROR = "store-error"
    STORE_RETRY = "store-retry"
    SET = "set"
    DELETE = "delete"


def default_log(event: str, key: str, elapsed_ms: float | None = None, detail: Any = None) -> None:
    """Route events to the module logger at DEBUG."""
    logger.debug("%s %s elapsed_ms=%s detail=%r", event, key, elapsed_ms, detail)


def emit(
    log: LogCallback | None,
    event: CacheEvent,
    key: str,
    started: float | None = None,
    detail: Any = None,
) -> None:
    """
    Report an event without ever raising.

    Args:
        log: Callback to invoke (None = default_log)
        event: Event being reported
        key: User key the event concerns
        started: time.monotonic() at the start of the operation, if timed
        detail: Extra event data
    """
    elapsed = None if started is None else (time.monotonic() - started) * 1000
    try:
        (log or default_log)(event.value, key, elapsed, detail)
    except Exception as e:
        logger.warning(f"Cache log callback failed for {event.value}: {e}")
