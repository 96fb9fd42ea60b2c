from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from sqlmodel import Session, select

from conftest import CBP_URL, install_product_sources
from tariffsync.core.errors import SourceAPIError, ValidationError
from tariffsync.models.db_models import (
    Notification,
    Product,
    ProductExclusion,
    ProductRuling,
    TariffRate,
)
from tariffsync.services.aggregator import (
    aggregate_product,
    compute_total_rate,
    find_stale_products,
    parse_rate,
    update_tariff_rate,
)

CODE = "8471.30.0100"


@pytest.mark.parametrize(
    "value, expected",
    [
        (2.5, 2.5),
        ("2.5", 2.5),
        ("7.5%", 7.5),
        ("  25 ", 25.0),
        ("Free", None),
        ("abc", None),
        (None, None),
        (True, None),
        (float("nan"), None),
    ],
)
def test_parse_rate(value, expected) -> None:
    assert parse_rate(value) == expected


def test_total_rate_ignores_non_numeric_additional_rates() -> None:
    assert compute_total_rate(5.0, [{"rate": "2.5"}, {"rate": "abc"}]) == 7.5
    assert compute_total_rate(3.0, [{"rate": 1}, {}, {"rate": None}]) == 4.0
    assert compute_total_rate(0.0, []) == 0.0


def test_tariff_rate_upsert_converges_on_last_payload(engine, make_product, make_country) -> None:
    product = make_product(CODE)
    country = make_country()

    with Session(engine) as session:
        update_tariff_rate(session, product.id, country.id, 5.0, [{"rate": "1"}], "2024-06-01")
        update_tariff_rate(session, product.id, country.id, 5.0, [{"rate": "2.5"}], "2024-06-01")

    with Session(engine) as session:
        rows = session.exec(select(TariffRate)).all()
    assert len(rows) == 1
    assert rows[0].total_rate == 7.5
    assert rows[0].additional_rates == [{"rate": "2.5"}]


@pytest.mark.asyncio
async def test_aggregate_merges_every_source(context, upstream, engine) -> None:
    install_product_sources(
        upstream,
        CODE,
        rate="5.0",
        section301=[
            {"hts_code": CODE, "rate": "2.5", "list_number": "3"},
            {"hts_code": CODE, "rate": "abc", "list_number": "4A", "countries": ["CN"]},
            {"hts_code": "0101.21.0000", "rate": "25"},
        ],
        exclusions=[{"id": 7, "hts_code": CODE, "description": "Excluded parts"}],
        rulings=[{"ruling_number": "N123456", "title": "Laptop classification"}],
        notices=[{"document_number": "2024-1", "title": "Tariff Notice", "abstract": ""}],
    )

    result = await aggregate_product(context, CODE, "Computers")

    assert result.total_rate == 7.5
    assert (result.ruling_count, result.exclusion_count) == (1, 1)
    with Session(engine) as session:
        product = session.exec(select(Product).where(Product.hts_code == CODE)).one()
        assert product.base_rate == 5.0
        assert product.category == "Computers"
        assert [r["list_number"] for r in product.additional_rates] == ["3", "4A"]
        assert product.additional_rates[1]["countries"] == ["CN"]
        exclusion = session.exec(select(ProductExclusion)).one()
        assert exclusion.exclusion_id == "7"


@pytest.mark.asyncio
async def test_aggregate_is_all_or_nothing(context, upstream, engine) -> None:
    install_product_sources(upstream, CODE)
    upstream.add(CBP_URL, f"/rulings/{CODE}", httpx.Response(500))

    with pytest.raises(SourceAPIError):
        await aggregate_product(context, CODE, "Computers")

    with Session(engine) as session:
        assert session.exec(select(Product)).all() == []


@pytest.mark.asyncio
async def test_aggregate_rejects_malformed_code(context, upstream) -> None:
    with pytest.raises(ValidationError):
        await aggregate_product(context, "8471", "Computers")
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_reaggregation_updates_in_place_and_notifies_watchers(
    context, upstream, engine, watch
) -> None:
    install_product_sources(upstream, CODE, rate="5")
    first = await aggregate_product(context, CODE, "Computers")
    watch("alice", first.product_id)

    context.caches.flush()
    install_product_sources(
        upstream,
        CODE,
        rate="8",
        rulings=[{"ruling_number": "N1"}],
    )
    second = await aggregate_product(context, CODE, "Computers")

    assert second.product_id == first.product_id
    assert second.total_rate == 8.0
    with Session(engine) as session:
        assert len(session.exec(select(Product)).all()) == 1
        assert len(session.exec(select(ProductRuling)).all()) == 1
        types = sorted(n.type for n in session.exec(select(Notification)).all())
    assert types == ["new_ruling", "rate_change"]


def test_find_stale_products_oldest_first(engine, make_product) -> None:
    make_product("0101.21.0000", age=timedelta(days=8))
    make_product("0102.21.0000", age=timedelta(days=30))
    make_product("0103.10.0000", age=timedelta(days=1))

    with Session(engine) as session:
        assert find_stale_products(session) == ["0102.21.0000", "0101.21.0000"]
        assert find_stale_products(session, limit=1) == ["0102.21.0000"]
