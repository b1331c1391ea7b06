"""
Token bucket rate limiter shared by every outbound provider request.
"""

import asyncio
import random
import time
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter with jitter.

    `rate` tokens are added per second up to `burst`. Every acquire takes one
    token, waiting for the bucket to refill when empty. A random jitter in
    [0, jitter) seconds is added to each wait so concurrent enrichment tasks
    do not hit the provider in lockstep.
    """

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        jitter: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable] = None,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = max(1, burst)
        self.jitter = max(0.0, jitter)
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(self.burst)
        self._updated_at = clock()
        self._lock = asyncio.Lock()
        self.total_acquired = 0
        self.total_wait_seconds = 0.0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._updated_at = now

    async def acquire(self) -> float:
        """
        Wait for one token.

        Returns:
            Seconds spent waiting
        """
        async with self._lock:
            self._refill()
            wait = 0.0
            if self._tokens < 1:
                wait = (1 - self._tokens) / self.rate
            if self.jitter:
                wait += random.uniform(0, self.jitter)
            if wait > 0:
                await self._sleep(wait)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1)
            self.total_acquired += 1
            self.total_wait_seconds += wait
            return wait
