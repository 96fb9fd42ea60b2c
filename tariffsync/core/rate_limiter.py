"""TariffSync — Rate Limiter.

One instance per upstream API, backed by pyrate-limiter. Each logical
endpoint of that API is a key with its own bucket holding at most
``max_requests`` calls per ``window_ms``.
"""

import asyncio
from typing import Awaitable, Callable, Dict

from pyrate_limiter import Limiter, Rate

from tariffsync.core.logging import get_logger

logger = get_logger("rate_limiter")

DEFAULT_BUFFER_MS = 100


class RateLimiter:
    """Per-key sliding-window throttle.

    ``throttle`` never raises; its only effect is delay. A full bucket is
    retried every ``buffer_ms`` until the oldest call leaves the window.
    """

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        name: str = "default",
        buffer_ms: int = DEFAULT_BUFFER_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if window_ms <= 0 or max_requests <= 0:
            raise ValueError("window_ms and max_requests must be positive")
        self.name = name
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.buffer_ms = buffer_ms
        self._sleep = sleep
        self._limiters: Dict[str, Limiter] = {}

    def _limiter(self, key: str) -> Limiter:
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = Limiter(
                [Rate(self.max_requests, self.window_ms)],
                raise_when_fail=False,
                max_delay=None,
            )
            self._limiters[key] = limiter
        return limiter

    async def throttle(self, key: str) -> None:
        """Wait until a call for ``key`` fits in the window, then record it."""
        limiter = self._limiter(key)
        waited_ms = 0
        while not limiter.try_acquire(f"{self.name}:{key}"):
            if waited_ms == 0:
                logger.debug(f"Throttling {self.name}:{key}")
            await self._sleep(self.buffer_ms / 1000.0)
            waited_ms += self.buffer_ms
        if waited_ms:
            logger.debug(f"Released {self.name}:{key} after ~{waited_ms}ms")

    def keys(self) -> list:
        return sorted(self._limiters)
