"""TariffSync — Shared Source Client.

Handles rate limiting, tiered caching and HTTP error translation for the four
upstream sources. Retries are not done here: a failed fetch fails the unit of
work, and the retry queue retries that unit as a whole.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from tariffsync.core.cache import CacheRegistry, CacheTier
from tariffsync.core.errors import SourceAPIError
from tariffsync.core.logging import get_logger
from tariffsync.core.rate_limiter import RateLimiter

T = TypeVar("T")


class SourceClient:
    """Base for a rate-limited, cached JSON API client."""

    source = "source"
    cache_prefix = "source"

    def __init__(
        self,
        base_url: str,
        http: httpx.AsyncClient,
        limiter: RateLimiter,
        caches: CacheRegistry,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.limiter = limiter
        self.caches = caches
        self.logger = get_logger(f"connectors.{self.source}")
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}

    # ── Core Request Method ──

    async def _request(
        self,
        limiter_key: str,
        path: str,
        params: Dict[str, Any] | None = None,
    ) -> Any:
        """GET ``path`` after throttling on ``limiter_key``; returns decoded JSON."""
        await self.limiter.throttle(limiter_key)
        url = f"{self.base_url}{path}"

        try:
            resp = await self.http.get(url, params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            self.logger.error(
                f"{self.source} returned {status} for {path}",
                extra={"status_code": status},
            )
            raise SourceAPIError(
                self.source, f"GET {path} failed with status {status}", status
            ) from e
        except httpx.RequestError as e:
            self.logger.error(f"Request to {self.source} failed for {path}: {e}")
            raise SourceAPIError(self.source, f"GET {path} failed: {e}") from e

        try:
            return resp.json()
        except ValueError as e:
            raise SourceAPIError(
                self.source, f"GET {path} returned non-JSON body", resp.status_code
            ) from e

    # ── Cache-through ──

    async def _cached(
        self,
        tier: CacheTier,
        key: str,
        loader: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """Return ``key`` from ``tier``, or load it, store it and return it.

        Concurrent misses on one key share a single load.
        """
        cache = self.caches[tier]
        cache_key = f"{self.cache_prefix}:{key}"
        cached = cache.get(cache_key)
        if cached is not None:
            self.logger.debug(f"Cache hit for {cache_key}")
            return cached

        pending = self._inflight.get(cache_key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(cache_key, loader, tier, ttl))
            self._inflight[cache_key] = pending
            pending.add_done_callback(lambda _: self._inflight.pop(cache_key, None))
        else:
            self.logger.debug(f"Joining in-flight load for {cache_key}")
        return await pending

    async def _load(
        self,
        cache_key: str,
        loader: Callable[[], Awaitable[T]],
        tier: CacheTier,
        ttl: Optional[float],
    ) -> T:
        value = await loader()
        self.caches[tier].set(cache_key, value, ttl)
        return value
