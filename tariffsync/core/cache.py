"""TariffSync — Tiered TTL Cache.

Three instances cover different data volatility: short (API responses that
move often), default, and long (reference data).
"""

import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from tariffsync.core.logging import get_logger

logger = get_logger("cache")


class CacheTier(str, Enum):
    SHORT = "short"
    DEFAULT = "default"
    LONG = "long"


@dataclass
class CacheStats:
    hits: int
    misses: int
    keys: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class Cache:
    """In-memory key/value store with absolute per-entry expiry.

    Expired entries are dropped lazily on read and swept on write once every
    check period (20% of the default TTL).
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.default_ttl = ttl_seconds
        self.check_period = ttl_seconds * 0.2
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._last_sweep = clock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self._misses += 1
                logger.debug(f"Cache key expired: {self.name}:{key}")
                return default
            self._hits += 1
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.check_period:
                self._sweep(now)
            self._entries[key] = (value, now + ttl)
        return True

    def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._entries.pop(key, None) is not None else 0

    def flush(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def prune_expired(self) -> int:
        """Drop every expired entry now; returns how many were removed."""
        with self._lock:
            return self._sweep(self._clock())

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits, misses=self._misses, keys=len(self._entries)
            )

    def _sweep(self, now: float) -> int:
        expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        return len(expired)


class CacheRegistry:
    """The three named cache tiers owned by the service context."""

    def __init__(
        self,
        short_ttl: float = 300,
        default_ttl: float = 3600,
        long_ttl: float = 86400,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._tiers: Dict[CacheTier, Cache] = {
            CacheTier.SHORT: Cache(short_ttl, name="short", clock=clock),
            CacheTier.DEFAULT: Cache(default_ttl, name="default", clock=clock),
            CacheTier.LONG: Cache(long_ttl, name="long", clock=clock),
        }

    def __getitem__(self, tier: CacheTier) -> Cache:
        return self._tiers[CacheTier(tier)]

    @property
    def short(self) -> Cache:
        return self._tiers[CacheTier.SHORT]

    @property
    def default(self) -> Cache:
        return self._tiers[CacheTier.DEFAULT]

    @property
    def long(self) -> Cache:
        return self._tiers[CacheTier.LONG]

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {tier.value: cache.stats().to_dict() for tier, cache in self._tiers.items()}

    def flush(self, tier: Optional[CacheTier] = None) -> None:
        """Flush one tier, or every tier when ``tier`` is None."""
        if tier is not None:
            self[tier].flush()
            return
        for cache in self._tiers.values():
            cache.flush()
