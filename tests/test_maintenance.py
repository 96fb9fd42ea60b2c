from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from sqlmodel import Session, select

from conftest import FR_URL
from tariffsync.models.db_models import (
    Notification,
    SyncLease,
    SyncRun,
    SyncStatus,
    utcnow,
)
from tariffsync.scheduler.jobs import SyncScheduler
from tariffsync.sync.cleanup import (
    cleanup_expired_leases,
    cleanup_notifications,
    cleanup_sync_runs,
    run_cleanup,
)
from tariffsync.sync.updates import UpdateSync


def _add_runs(engine, statuses: list[str]) -> None:
    now = utcnow()
    with Session(engine) as session:
        for age, status in enumerate(statuses):
            session.add(
                SyncRun(type="updates", status=status, started_at=now - timedelta(hours=age))
            )
        session.commit()


# ── Cleanup ──


@pytest.mark.asyncio
async def test_cleanup_keeps_newest_runs_and_running_ones(context, engine) -> None:
    _add_runs(engine, ["completed", "failed", "running", "completed"])

    deleted = cleanup_sync_runs(context, keep=1)

    assert deleted == 2
    with Session(engine) as session:
        left = sorted(r.status for r in session.exec(select(SyncRun)).all())
    assert left == ["completed", "running"]


@pytest.mark.asyncio
async def test_cleanup_drops_old_notifications_and_expired_leases(context, engine) -> None:
    with Session(engine) as session:
        session.add(
            Notification(
                user_id="alice",
                title="old",
                message="m",
                type="system",
                created_at=utcnow() - timedelta(days=120),
            )
        )
        session.add(Notification(user_id="alice", title="new", message="m", type="system"))
        session.add(SyncLease(sync_type="products", expires_at=utcnow() - timedelta(hours=1)))
        session.add(SyncLease(sync_type="tariffs", expires_at=utcnow() + timedelta(hours=1)))
        session.commit()

    assert cleanup_notifications(context) == 1
    assert cleanup_expired_leases(context) == 1
    with Session(engine) as session:
        assert [n.title for n in session.exec(select(Notification)).all()] == ["new"]
        assert [l.sync_type for l in session.exec(select(SyncLease)).all()] == ["tariffs"]


@pytest.mark.asyncio
async def test_run_cleanup_flushes_volatile_tiers_only(context) -> None:
    context.caches.short.set("a", 1)
    context.caches.default.set("b", 2)
    context.caches.long.set("c", 3)

    result = run_cleanup(context)

    stats = context.caches.stats()
    assert stats["short"]["keys"] == 0
    assert stats["default"]["keys"] == 0
    assert stats["long"]["keys"] == 1
    assert set(result) == {
        "cache_entries_pruned",
        "sync_runs_deleted",
        "notifications_deleted",
        "leases_deleted",
    }


# ── Scheduler ──


@pytest.mark.asyncio
async def test_scheduler_disabled_by_config(context) -> None:
    scheduler = SyncScheduler(context)

    scheduler.start()

    assert not scheduler.running
    scheduler.stop()


@pytest.mark.asyncio
async def test_scheduler_registers_named_jobs(context) -> None:
    context.settings.scheduler_enabled = True
    scheduler = SyncScheduler(context)

    scheduler.start()
    try:
        assert scheduler.running
        assert sorted(job.id for job in scheduler.scheduler.get_jobs()) == [
            "cleanup",
            "product_sync",
            "tariff_sync",
            "update_sync",
        ]
    finally:
        scheduler.stop()


@pytest.mark.asyncio
async def test_scheduled_job_never_raises(context, upstream, engine) -> None:
    upstream.add(FR_URL, "/documents", httpx.Response(500))
    scheduler = SyncScheduler(context)

    await scheduler.update_sync_job()

    assert [r.status for r in _runs(engine)] == [SyncStatus.FAILED.value]


@pytest.mark.asyncio
async def test_scheduled_job_skips_when_lease_held(context, engine) -> None:
    UpdateSync(context).begin()

    await SyncScheduler(context).update_sync_job()

    assert len(_runs(engine)) == 1


def _runs(engine) -> list[SyncRun]:
    with Session(engine) as session:
        return list(session.exec(select(SyncRun)).all())
