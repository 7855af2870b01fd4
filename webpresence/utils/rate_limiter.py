"""Async sliding-window throttle for the outbound HTTP clients."""

import asyncio
import logging
import time
from collections import deque

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow at most ``max_calls`` per ``window_seconds``.

    Usage::

        limiter = RateLimiter(60, name="web_fetcher")
        async with limiter:
            await fetch()
    """

    def __init__(self, max_calls: int = 60, window_seconds: float = 60.0, name: str = "default"):
        if max_calls <= 0:
            raise ValueError(f"max_calls must be positive, got {max_calls}")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.name = name
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def delay(self) -> float:
        """Seconds to wait before the next call may start."""
        now = time.monotonic()
        self._prune(now)
        if len(self._calls) < self.max_calls:
            return 0.0
        return self.window_seconds - (now - self._calls[0])

    async def acquire(self) -> None:
        async with self._lock:
            wait = self.delay()
            while wait > 0:
                logger.debug("Throttling %s for %.2fs", self.name, wait)
                await asyncio.sleep(wait)
                wait = self.delay()
            self._calls.append(time.monotonic())

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def recent_calls(self) -> int:
        self._prune(time.monotonic())
        return len(self._calls)
