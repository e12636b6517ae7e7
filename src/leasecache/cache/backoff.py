"""Backoff scheduling for callers waiting on another process's lease."""

import asyncio
import random
from dataclasses import dataclass, field

INITIAL_DELAY_MIN_MS = 25
INITIAL_DELAY_MAX_MS = 45
DELAY_CAP_MS = 5000
DELAY_CAP_JITTER_MS = 1000
GROWTH_FACTOR = 1.1
COMPRESSION_FACTOR = 2.6


def initial_delay(rng: random.Random | None = None) -> int:
    """Get a jittered first delay in milliseconds, in [25, 45)."""
    rng = rng or random
    return int(rng.uniform(INITIAL_DELAY_MIN_MS, INITIAL_DELAY_MAX_MS))


@dataclass
class WaitState:
    """
    Per-call wait bookkeeping for one ``get``.

    Attributes:
        budget: Seconds this caller is prepared to wait (0/None = never wait)
        delay: Current backoff interval in milliseconds
        total: Milliseconds waited since the budget was last set
        rng: Random source for jitter
    """

    budget: float | None
    delay: int = -1
    total: int = 0
    rng: random.Random | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.delay < 0:
            self.delay = initial_delay(self.rng)

    @property
    def exhausted(self) -> bool:
        """True when the accumulated wait is past the budget."""
        return bool(self.budget) and self.total > self.budget * 1000

    def advance(self) -> int:
        """
        Grow the delay and account for it.

        Growth is 10% per step until the delay passes the cap, after which
        it is re-jittered just above the cap.

        Returns:
            The next delay in milliseconds
        """
        if self.delay > DELAY_CAP_MS:
            rng = self.rng or random
            self.delay = int(rng.uniform(DELAY_CAP_MS, DELAY_CAP_MS + DELAY_CAP_JITTER_MS))
        else:
            self.delay = int(1 + self.delay * GROWTH_FACTOR)
        self.total += self.delay
        return self.delay

    def rebudget(self, ttl_seconds: int) -> None:
        """Restart the budget at the lease's remaining TTL and poll faster."""
        self.budget = ttl_seconds
        self.delay = int(1 + self.delay / COMPRESSION_FACTOR)
        self.total = 0

    async def sleep(self) -> None:
        """Yield to the event loop for the current delay."""
        await asyncio.sleep(self.delay / 1000)
