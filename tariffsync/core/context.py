"""TariffSync — Process-wide Service Context.

Built once at startup (FastAPI lifespan or a CLI command) and passed to every
component that needs shared state: rate limiters, cache tiers, the HTTP client
and the source clients. Closed once at shutdown.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import Session

from tariffsync.config import Settings
from tariffsync.connectors.cbp import CBPClient
from tariffsync.connectors.federal_register import FederalRegisterClient
from tariffsync.connectors.usitc import USITCClient
from tariffsync.connectors.ustr import USTRClient
from tariffsync.core.cache import CacheRegistry
from tariffsync.core.logging import get_logger
from tariffsync.core.rate_limiter import RateLimiter
from tariffsync.database import build_engine
from tariffsync.services.notifications import NotificationTrigger

logger = get_logger("context")


def build_rate_limiters(settings: Settings) -> Dict[str, RateLimiter]:
    """One limiter per upstream API, from the configured (window, max) pairs."""
    return {
        "usitc": RateLimiter(
            settings.usitc_rate_window_ms, settings.usitc_rate_max_requests, "usitc"
        ),
        "ustr": RateLimiter(
            settings.ustr_rate_window_ms, settings.ustr_rate_max_requests, "ustr"
        ),
        "cbp": RateLimiter(
            settings.cbp_rate_window_ms, settings.cbp_rate_max_requests, "cbp"
        ),
        "federal_register": RateLimiter(
            settings.federal_register_rate_window_ms,
            settings.federal_register_rate_max_requests,
            "federal_register",
        ),
    }


@dataclass
class ServiceContext:
    settings: Settings
    engine: Engine
    http: httpx.AsyncClient
    caches: CacheRegistry
    rate_limiters: Dict[str, RateLimiter]
    usitc: USITCClient = field(init=False)
    ustr: USTRClient = field(init=False)
    cbp: CBPClient = field(init=False)
    federal_register: FederalRegisterClient = field(init=False)
    notifier: NotificationTrigger = field(init=False)

    def __post_init__(self) -> None:
        s = self.settings
        self.notifier = NotificationTrigger(self.engine)
        self.usitc = USITCClient(
            s.usitc_api_url, self.http, self.rate_limiters["usitc"], self.caches
        )
        self.ustr = USTRClient(
            s.ustr_api_url, self.http, self.rate_limiters["ustr"], self.caches
        )
        self.cbp = CBPClient(
            s.cbp_api_url, self.http, self.rate_limiters["cbp"], self.caches
        )
        self.federal_register = FederalRegisterClient(
            s.fed_register_api_url,
            self.http,
            self.rate_limiters["federal_register"],
            self.caches,
        )

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: Optional[Engine] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limiters: Optional[Dict[str, RateLimiter]] = None,
        caches: Optional[CacheRegistry] = None,
    ) -> "ServiceContext":
        """Construct the context; every argument except ``settings`` is an override."""
        context = cls(
            settings=settings,
            engine=engine or build_engine(settings.effective_database_url),
            http=httpx.AsyncClient(timeout=settings.http_timeout, transport=transport),
            caches=caches
            or CacheRegistry(
                settings.cache_short_ttl,
                settings.cache_default_ttl,
                settings.cache_long_ttl,
            ),
            rate_limiters=rate_limiters or build_rate_limiters(settings),
        )
        logger.info("⚙️  Service context created")
        return context

    def session(self) -> Session:
        return Session(self.engine)

    async def aclose(self) -> None:
        if not self.http.is_closed:
            await self.http.aclose()
        logger.info("Service context closed")
