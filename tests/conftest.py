"""
Pytest configuration for TariffSync.

Provides fixtures for:
- Settings override (fast retries, no scheduler, known API key)
- In-memory SQLite engine with all tables created
- Fake upstream APIs served through httpx.MockTransport
- A fully wired ServiceContext
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.engine import Engine
from sqlmodel import Session

from tariffsync.config import Settings
from tariffsync.core.context import ServiceContext
from tariffsync.database import build_engine, init_db
from tariffsync.models.db_models import Country, Product, UserWatchlist

API_KEY = "test-key"

USITC_URL = "https://usitc.test/api"
USTR_URL = "https://ustr.test/api"
CBP_URL = "https://cbp.test/api"
FR_URL = "https://fr.test/api/v1"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Routes requests by (host, path) to canned JSON bodies or status codes.

    A route value may be a JSON body, an ``httpx.Response``, or a callable
    taking the request and returning either.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[httpx.Request] = []

    def add(self, base_url: str, path: str, body: Any) -> None:
        url = httpx.URL(base_url + path)
        self.routes[(url.host, url.path)] = body

    def count(self, path_suffix: str) -> int:
        return sum(1 for r in self.calls if r.url.path.endswith(path_suffix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            route = route(request)
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def general_rate(hts_code: str, rate: Any = "5%", description: str = "Widgets") -> Dict[str, Any]:
    return {
        "hts_code": hts_code,
        "description": description,
        "rate": rate,
        "unit": "kg",
        "special_rates": [{"program": "A", "rate": "Free"}],
    }


def install_product_sources(
    upstream: FakeUpstream,
    hts_code: str,
    rate: Any = "5%",
    section301: List[Dict[str, Any]] | None = None,
    exclusions: List[Dict[str, Any]] | None = None,
    rulings: List[Dict[str, Any]] | None = None,
    notices: List[Dict[str, Any]] | None = None,
) -> None:
    """Serve every source ``aggregate_product`` needs for one HTS code."""
    upstream.add(USITC_URL, f"/rates/{hts_code}", general_rate(hts_code, rate))
    upstream.add(USTR_URL, "/section301/current", section301 or [])
    upstream.add(USTR_URL, f"/exclusions/{hts_code}", exclusions or [])
    upstream.add(CBP_URL, f"/rulings/{hts_code}", rulings or [])
    upstream.add(FR_URL, "/documents", {"results": notices or []})


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        usitc_api_url=USITC_URL,
        ustr_api_url=USTR_URL,
        cbp_api_url=CBP_URL,
        fed_register_api_url=FR_URL,
        api_key=API_KEY,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        scheduler_enabled=False,
    )


@pytest.fixture
def engine(test_settings: Settings) -> Engine:
    engine = build_engine(test_settings.database_url)
    init_db(engine)
    return engine


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def context(test_settings: Settings, engine: Engine, upstream: FakeUpstream):
    ctx = ServiceContext.build(test_settings, engine=engine, transport=upstream.transport())
    try:
        yield ctx
    finally:
        await ctx.aclose()


@pytest.fixture
def make_product(engine: Engine) -> Callable[..., Product]:
    def _make(
        hts_code: str = "8471.30.0100",
        base_rate: float = 0.0,
        additional_rates: List[Dict[str, Any]] | None = None,
        age: timedelta = timedelta(0),
        **fields: Any,
    ) -> Product:
        with Session(engine) as session:
            product = Product(
                hts_code=hts_code,
                name=fields.pop("name", f"Product {hts_code}"),
                base_rate=base_rate,
                additional_rates=additional_rates or [],
                total_rate=fields.pop("total_rate", base_rate),
                last_updated=datetime.now(timezone.utc) - age,
                **fields,
            )
            session.add(product)
            session.commit()
            session.refresh(product)
            return product

    return _make


@pytest.fixture
def make_country(engine: Engine) -> Callable[..., Country]:
    def _make(code: str = "CN", name: str = "China") -> Country:
        with Session(engine) as session:
            country = Country(code=code, name=name)
            session.add(country)
            session.commit()
            session.refresh(country)
            return country

    return _make


@pytest.fixture
def watch(engine: Engine) -> Callable[..., None]:
    def _watch(user_id: str, product_id: int, notify_changes: bool = True) -> None:
        with Session(engine) as session:
            session.add(
                UserWatchlist(
                    user_id=user_id, product_id=product_id, notify_changes=notify_changes
                )
            )
            session.commit()

    return _watch
