"""
core/gateway.py -- Cache-aside access to the rate-limited metadata upstream.

fetch(url) flow:
  1. Cache hit       -> decode and return. No limiter slot, no network. A cached
                        payload that no longer decodes is evicted and treated
                        as a miss.
  2. Cache miss      -> await the shared OutboundRateLimiter.
  3. HTTP GET        -> requests.Session.get in a worker thread (asyncio.to_thread)
                        with a bounded timeout, so the event loop never blocks.
  4. HTTP 429        -> sleep a fixed backoff and retry the whole fetch once.
                        A second 429 raises UpstreamThrottled.
  5. Other non-2xx   -> UpstreamFailure(status). Timeouts and connection errors
                        -> UpstreamFailure(None). Nothing is cached on failure.
  6. Success         -> decode, then cache the raw payload, then return.

Decoding happens before the cache write, so a payload the caller cannot decode
is never cached. Cache reads and writes are blocking SQLite calls and also run
in worker threads. Concurrent misses for the same URL may both go upstream; the
cache is last-write-wins.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

import requests

from cache.store import ResponseCache
from core.ratelimit import OutboundRateLimiter

logger = logging.getLogger("anivault.gateway")

T = TypeVar("T")

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_BACKOFF = 1.0

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class GatewayError(Exception):
    """Base class for upstream failures. status/code drive the API envelope."""

    code = "upstream_error"
    status = 502
    message = "Upstream metadata service failed."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class UpstreamThrottled(GatewayError):
    """Upstream answered 429 twice in a row."""

    code = "upstream_throttled"
    status = 503
    message = "Upstream metadata service is rate limiting requests. Try again shortly."

    def __init__(self, retry_after: int = 1, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamFailure(GatewayError):
    """Non-2xx other than 429, transport error, or an undecodable body.

    upstream_status is None for transport failures (timeout, refused, DNS).
    """

    def __init__(self, upstream_status: Optional[int], message: Optional[str] = None) -> None:
        if message is None and upstream_status is not None:
            message = f"Upstream metadata service returned HTTP {upstream_status}."
        super().__init__(message)
        self.upstream_status = upstream_status


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


def _default_session() -> requests.Session:
    session = requests.Session()
    # Known public API; a short redirect budget guards against redirect chains.
    session.max_redirects = 3
    session.headers["Accept"] = "application/json"
    return session


def _retry_after_seconds(response: requests.Response, default: float) -> int:
    raw = response.headers.get("Retry-After", "")
    try:
        return max(1, int(raw))
    except ValueError:
        return max(1, int(round(default)))


class CacheAsideGateway:
    """Shared by every metadata request in the process.

    Usage:
        gateway = CacheAsideGateway(ResponseCache(), OutboundRateLimiter())
        payload = await gateway.fetch("https://api.jikan.moe/v4/anime/1/full")
    """

    def __init__(
        self,
        cache: Optional[ResponseCache],
        limiter: OutboundRateLimiter,
        session: Optional[requests.Session] = None,
        timeout: float = _DEFAULT_TIMEOUT,
        throttle_backoff: float = _DEFAULT_BACKOFF,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cache = cache
        self._limiter = limiter
        self._session = session or _default_session()
        self._timeout = timeout
        self._backoff = throttle_backoff
        self._sleep = sleep

    async def fetch(self, url: str, decode: Optional[Callable[[Any], T]] = None) -> Any:
        """Return the (decoded) payload for url, from cache or upstream.

        decode is applied to both cached and fresh payloads. A cached payload
        it rejects is evicted and fetched again. If it raises on a fresh
        payload, the error propagates as UpstreamFailure and nothing is cached.
        """
        for attempt in (1, 2):
            cached = await self._cache_get(url)
            if cached is not None:
                try:
                    result = decode(cached) if decode else cached
                except (ValueError, KeyError, TypeError) as exc:
                    logger.warning("Evicting undecodable cache entry for %s: %s", url, exc)
                    await asyncio.to_thread(self._cache.delete, url)
                else:
                    logger.debug("Cache hit %s", url)
                    return result

            await self._limiter.acquire()
            response = await self._get(url)

            if response.status_code == 429:
                if attempt == 1:
                    logger.warning("Upstream throttled %s; retrying in %.1fs", url, self._backoff)
                    await self._sleep(self._backoff)
                    continue
                logger.warning("Upstream throttled %s twice; giving up", url)
                raise UpstreamThrottled(retry_after=_retry_after_seconds(response, self._backoff))

            if not 200 <= response.status_code < 300:
                logger.warning("Upstream returned HTTP %d for %s", response.status_code, url)
                raise UpstreamFailure(response.status_code)

            try:
                payload = response.json()
                result = decode(payload) if decode else payload
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Undecodable upstream payload for %s: %s", url, exc)
                raise UpstreamFailure(response.status_code, "Upstream returned an unreadable payload.") from exc

            if self._cache is not None:
                await asyncio.to_thread(self._cache.set, url, payload)
            return result

        # Unreachable: the second 429 raises above.
        raise UpstreamThrottled()

    async def _cache_get(self, url: str) -> Any:
        if self._cache is None:
            return None
        return await asyncio.to_thread(self._cache.get, url)

    async def _get(self, url: str) -> requests.Response:
        try:
            return await asyncio.to_thread(self._session.get, url, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.warning("Upstream request failed for %s: %s", url, exc)
            raise UpstreamFailure(None, "Upstream metadata service is unreachable.") from exc

    def close(self) -> None:
        self._session.close()
