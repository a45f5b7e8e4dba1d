"""
core/ratelimit.py -- Outbound request throttle for the metadata upstream.

Jikan allows 3 requests per second and 60 per minute. OutboundRateLimiter
enforces both as sliding windows over one deque of admission timestamps:

  admit iff  count(ts > now - 1)  < per_second
        and  count(ts > now - 60) < per_minute

acquire() never fails and never drops a caller; an over-limit caller polls
every poll_interval seconds until a slot opens. The window is only touched
while holding the asyncio.Lock, so concurrent admissions cannot both see the
same free slot.

Exactly one limiter should exist per process (created by the API lifespan or
the CLI) and be handed to the gateway explicitly -- the limit is global to the
upstream, not per request.

clock and sleep are injectable so tests can drive time deterministically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

logger = logging.getLogger("anivault.ratelimit")

_SECOND = 1.0
_MINUTE = 60.0


class OutboundRateLimiter:
    def __init__(
        self,
        per_second: int = 3,
        per_minute: int = 60,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if per_second < 1 or per_minute < 1:
            raise ValueError("Rate limits must be at least 1 request per window.")
        self.per_second = per_second
        self.per_minute = per_minute
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._window: deque[float] = deque()

    async def acquire(self) -> None:
        """Wait until a request slot is free, then claim it."""
        waited = False
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)
                if self._admits(now):
                    self._window.append(now)
                    return
            if not waited:
                logger.debug("Outbound rate limit reached; waiting for a free slot")
                waited = True
            await self._sleep(self._poll_interval)

    def _prune(self, now: float) -> None:
        cutoff = now - _MINUTE
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def _admits(self, now: float) -> bool:
        if len(self._window) >= self.per_minute:
            return False
        cutoff = now - _SECOND
        recent = sum(1 for ts in self._window if ts > cutoff)
        return recent < self.per_second
