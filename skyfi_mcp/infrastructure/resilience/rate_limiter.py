"""Implementation of a rate limiter.

Controls the frequency of outgoing requests to the SkyFi API using a token
bucket: a capped pool of tokens refills continuously and every request
consumes one token.
"""

import time
import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_REFILL_PER_SECOND = 10.0

class RateLimiter:
    """Token bucket rate limiter shared by every outbound request."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        refill_per_second: float = DEFAULT_REFILL_PER_SECOND,
    ):
        """Initializes the rate limiter with a full bucket.

        Args:
            capacity: Maximum number of tokens the bucket can hold.
            refill_per_second: Tokens added per second, continuously.
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self.tokens = float(capacity)
        self.last_refill_at = time.monotonic()
        self._lock = asyncio.Lock()
        logger.info(f"RateLimiter initialized: capacity={capacity}, refill={refill_per_second}/s")

    def _refill(self) -> None:
        """Adds the tokens earned since the last refill, capped at capacity."""
        now = time.monotonic()
        elapsed = now - self.last_refill_at
        if elapsed > 0:
            self.tokens = min(float(self.capacity), self.tokens + elapsed * self.refill_per_second)
        self.last_refill_at = now

    async def acquire(self) -> None:
        """Waits until a token is available, then consumes it."""
        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= 1:
                    self.tokens -= 1
                    logger.debug(f"Rate limit token granted ({self.tokens:.2f} left).")
                    return
                wait_time = (1 - self.tokens) / self.refill_per_second

            # Sleep outside the lock
            logger.debug(f"Rate limit reached. Waiting for {wait_time:.3f} seconds.")
            await asyncio.sleep(wait_time)

    async def get_wait_time(self) -> float:
        """Estimates the time needed before the next request can be made."""
        async with self._lock:
            self._refill()
            if self.tokens >= 1:
                return 0.0
            return (1 - self.tokens) / self.refill_per_second
