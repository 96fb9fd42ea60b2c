from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest
from sqlmodel import Session, select

from conftest import FR_URL, USITC_URL, USTR_URL, general_rate, install_product_sources
from tariffsync.core.errors import SyncInProgressError
from tariffsync.models.db_models import (
    ImpactLevel,
    Notification,
    Product,
    SyncLease,
    SyncRun,
    SyncStatus,
    TariffRate,
    TradeUpdate,
    utcnow,
)
from tariffsync.services.aggregator import update_tariff_rate
from tariffsync.sync import products as products_module
from tariffsync.sync.dispatch import SyncDispatcher
from tariffsync.sync.products import ProductSync
from tariffsync.sync.tariffs import (
    TariffSync,
    adjust_for_trade_agreements,
    is_significant_change,
    rates_for_country,
)
from tariffsync.sync.updates import UpdateSync, classify_impact


def _runs(engine) -> list[SyncRun]:
    with Session(engine) as session:
        return list(session.exec(select(SyncRun).order_by(SyncRun.id)).all())


def _notice(number: str, abstract: str = "", title: str = "Notice") -> dict:
    return {
        "document_number": number,
        "title": title,
        "abstract": abstract,
        "publication_date": "2024-05-01",
        "html_url": f"https://fr.test/d/{number}",
    }


# ── Run lifecycle and lease ──


@pytest.mark.asyncio
async def test_second_run_of_same_type_is_rejected_while_lease_is_held(context, engine) -> None:
    first = UpdateSync(context)
    run_id = first.begin()

    with pytest.raises(SyncInProgressError) as exc:
        UpdateSync(context).begin()
    assert exc.value.run_id == run_id

    # A different type has its own lease
    TariffSync(context).begin()


@pytest.mark.asyncio
async def test_expired_lease_is_taken_over(context, engine) -> None:
    UpdateSync(context).begin()
    with Session(engine) as session:
        lease = session.get(SyncLease, "updates")
        lease.expires_at = utcnow() - timedelta(minutes=1)
        session.add(lease)
        session.commit()

    run_id = UpdateSync(context).begin()

    with Session(engine) as session:
        assert session.get(SyncLease, "updates").run_id == run_id


class SlowUpdateSync(UpdateSync):
    async def _execute(self, queue):
        queue.submit(lambda: asyncio.sleep(1.5), label="slow")
        return {}


@pytest.mark.asyncio
async def test_lease_is_renewed_while_a_run_outlives_its_ttl(context, engine) -> None:
    context.settings.lease_ttl_seconds = 1
    first = SlowUpdateSync(context)
    run_id = first.begin()
    running = asyncio.create_task(first.execute(run_id))

    await asyncio.sleep(1.2)
    with pytest.raises(SyncInProgressError) as exc:
        UpdateSync(context).begin()
    assert exc.value.run_id == run_id

    outcome = await running
    assert outcome.ok
    assert [r.status for r in _runs(engine)] == ["completed"]
    with Session(engine) as session:
        assert session.get(SyncLease, "updates") is None


@pytest.mark.asyncio
async def test_setup_failure_marks_run_failed_and_releases_lease(
    context, upstream, engine, make_country
) -> None:
    make_country()
    upstream.add(USTR_URL, "/agreements", httpx.Response(503))

    outcome = await TariffSync(context).run()

    assert outcome.status == SyncStatus.FAILED
    assert "503" in outcome.error
    run = _runs(engine)[-1]
    assert run.status == "failed"
    assert run.completed_at is not None
    assert run.error_message
    with Session(engine) as session:
        assert session.get(SyncLease, "tariffs") is None


# ── Tariff sync ──


def test_country_specific_rates_and_fta_placeholder() -> None:
    rates = [
        {"type": "section301", "rate": "25", "countries": ["CN"]},
        {"type": "standard", "rate": "3"},
    ]

    assert rates_for_country(rates, "MX") == [{"type": "standard", "rate": "3"}]
    assert adjust_for_trade_agreements(rates, ["FTA"])[1]["rate"] == 0
    assert adjust_for_trade_agreements(rates, ["FTA"])[0]["rate"] == "25"
    assert adjust_for_trade_agreements(rates, ["GSP"]) == rates


def test_rate_change_threshold() -> None:
    assert is_significant_change(10, 11.5)
    assert is_significant_change(10, 9)
    assert not is_significant_change(10, 10.5)


@pytest.mark.asyncio
@pytest.mark.parametrize("new_total, expected", [(11.5, 1), (10.5, 0)])
async def test_tariff_sync_notifies_only_on_significant_change(
    context, upstream, engine, make_product, make_country, watch, new_total, expected
) -> None:
    product = make_product(base_rate=new_total)
    country = make_country()
    watch("alice", product.id)
    with Session(engine) as session:
        update_tariff_rate(session, product.id, country.id, 10.0, [], "2024-01-01")
    upstream.add(USTR_URL, "/agreements", [])

    outcome = await TariffSync(context).run()

    assert outcome.ok
    assert outcome.stats["succeeded"] == 1
    with Session(engine) as session:
        notifications = session.exec(select(Notification)).all()
        latest = session.exec(
            select(TariffRate).order_by(TariffRate.effective_date.desc())
        ).first()
    assert len(notifications) == expected
    assert latest.total_rate == new_total


@pytest.mark.asyncio
async def test_tariff_sync_rerun_same_day_converges(
    context, upstream, engine, make_product, make_country
) -> None:
    make_product(base_rate=5.0, additional_rates=[{"type": "section301", "rate": "25", "countries": ["CN"]}])
    make_country("CN", "China")
    make_country("MX", "Mexico")
    upstream.add(
        USTR_URL, "/agreements", [{"code": "USMCA", "countries": ["MX"]}]
    )

    await TariffSync(context).run()
    await TariffSync(context).run()

    with Session(engine) as session:
        rows = session.exec(select(TariffRate)).all()
    assert sorted(r.total_rate for r in rows) == [5.0, 30.0]


@pytest.mark.asyncio
async def test_tariff_sync_without_countries_is_a_noop(context, upstream) -> None:
    outcome = await TariffSync(context).run()

    assert outcome.ok
    assert outcome.stats["countries"] == 0
    assert upstream.calls == []


# ── Update sync ──


def test_impact_classification() -> None:
    assert classify_impact("Notice", "A significant change in rates") == ImpactLevel.HIGH
    assert classify_impact("Notice", "A minor amendment") == ImpactLevel.MEDIUM
    assert classify_impact("Notice", "Routine publication") == ImpactLevel.LOW
    assert classify_impact("Immediate Effect", "") == ImpactLevel.HIGH


@pytest.mark.asyncio
async def test_update_sync_ingests_and_classifies(context, upstream, engine) -> None:
    upstream.add(
        FR_URL,
        "/documents",
        {
            "results": [
                _notice("2024-00001", "A significant change in rates"),
                _notice("2024-00002", "A minor amendment"),
                _notice("2024-00003", "Routine"),
                _notice("2024-00003", "Routine"),
            ]
        },
    )

    outcome = await UpdateSync(context).run()

    assert outcome.ok
    assert outcome.stats["new_notices"] == 3
    with Session(engine) as session:
        impacts = {
            u.source_reference: u.impact for u in session.exec(select(TradeUpdate)).all()
        }
    assert impacts == {"2024-00001": "high", "2024-00002": "medium", "2024-00003": "low"}


@pytest.mark.asyncio
async def test_update_sync_skips_known_notices(context, upstream, engine) -> None:
    with Session(engine) as session:
        session.add(TradeUpdate(title="Known", source_reference="2024-12345"))
        session.commit()
    upstream.add(FR_URL, "/documents", {"results": [_notice("2024-12345")]})

    outcome = await UpdateSync(context).run()

    assert outcome.ok
    assert outcome.stats["new_notices"] == 0
    assert outcome.stats["submitted"] == 0
    with Session(engine) as session:
        assert len(session.exec(select(TradeUpdate)).all()) == 1


@pytest.mark.asyncio
async def test_update_sync_notifies_watchers_of_mentioned_products(
    context, upstream, engine, make_product, watch
) -> None:
    product = make_product("8471.30.0100")
    watch("alice", product.id)
    upstream.add(
        FR_URL,
        "/documents",
        {"results": [_notice("2024-00009", "Affects 8471.30.0100 imports")]},
    )

    await UpdateSync(context).run()

    with Session(engine) as session:
        notification = session.exec(select(Notification)).one()
    assert notification.user_id == "alice"
    assert notification.type == "system"


# ── Product sync ──


@pytest.mark.asyncio
async def test_incremental_sync_refreshes_stale_products(
    context, upstream, engine, make_product
) -> None:
    make_product("8471.30.0100", base_rate=1.0, category="Computers", age=timedelta(days=10))
    make_product("0101.21.0000", base_rate=1.0, age=timedelta(days=1))
    install_product_sources(upstream, "8471.30.0100", rate="4.5")

    outcome = await ProductSync(context).run()

    assert outcome.ok
    assert outcome.stats["stale_products"] == 1
    assert outcome.stats["succeeded"] == 1
    with Session(engine) as session:
        product = session.exec(
            select(Product).where(Product.hts_code == "8471.30.0100")
        ).one()
    assert product.base_rate == 4.5
    assert product.category == "Computers"
    run = _runs(engine)[-1]
    assert (run.status, run.items_succeeded, run.items_failed) == ("completed", 1, 0)


@pytest.mark.asyncio
async def test_full_sync_walks_chapters_and_isolates_failures(
    context, upstream, engine, monkeypatch
) -> None:
    monkeypatch.setattr(products_module, "HTS_CHAPTERS", ["01", "02"])
    upstream.add(
        USITC_URL,
        "/chapters/01",
        {
            "chapter": "01",
            "description": "Live animals",
            "sections": [
                {
                    "description": "Horses",
                    "rates": [general_rate("0101.21.0000"), general_rate("0101.29.0000")],
                }
            ],
        },
    )
    install_product_sources(upstream, "0101.21.0000", rate="2")
    install_product_sources(upstream, "0101.29.0000", rate="3")

    outcome = await ProductSync(context, full=True).run()

    # Chapter 02 is missing upstream: one task fails, the run still completes
    assert outcome.ok
    assert outcome.stats["submitted"] == 4
    assert outcome.stats["succeeded"] == 3
    assert outcome.stats["failed"] == 1
    assert upstream.count("/chapters/02") == 3
    with Session(engine) as session:
        categories = {p.hts_code: p.category for p in session.exec(select(Product)).all()}
    assert categories == {"0101.21.0000": "Horses", "0101.29.0000": "Horses"}


# ── Dispatch ──


@pytest.mark.asyncio
async def test_dispatcher_starts_run_and_rejects_overlap(context, upstream) -> None:
    upstream.add(FR_URL, "/documents", {"results": []})
    dispatcher = SyncDispatcher()

    handle = dispatcher.dispatch(UpdateSync(context))
    with pytest.raises(SyncInProgressError):
        dispatcher.dispatch(UpdateSync(context))

    outcome = await handle.wait()
    assert outcome.ok
    assert outcome.run_id == handle.run_id

    # Lease is released once the run finishes
    again = dispatcher.dispatch(UpdateSync(context))
    assert (await again.wait()).ok
