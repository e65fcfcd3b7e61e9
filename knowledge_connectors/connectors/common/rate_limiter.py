import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket bounding the outbound request rate of a single connector.

    The bucket starts full, holds at most ``requests_per_minute`` tokens and
    refills continuously at ``requests_per_minute / 60`` tokens per second.
    """

    def __init__(
        self,
        requests_per_minute: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be a positive integer")

        self.max_tokens = float(requests_per_minute)
        self.tokens = float(requests_per_minute)
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self._clock = clock
        self._sleep = sleep
        self.last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self.last_refill, 0.0)
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def wait_for_slot(self) -> None:
        async with self._lock:
            self._refill()

            while self.tokens < 1:
                wait_time = (1 - self.tokens) / self.refill_rate
                logger.debug(f"Rate limit reached, waiting {wait_time:.3f} seconds")
                await self._sleep(wait_time)
                self._refill()

            self.tokens -= 1
