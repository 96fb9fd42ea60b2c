"""TariffSync — Cleanup Job.

Flushes the volatile cache tiers and prunes sync history, old notifications
and expired leases.
"""

from datetime import timedelta
from typing import Dict

from sqlmodel import select

from tariffsync.core.cache import CacheTier
from tariffsync.core.context import ServiceContext
from tariffsync.core.logging import get_logger
from tariffsync.models.db_models import (
    Notification,
    SyncLease,
    SyncRun,
    SyncStatus,
    utcnow,
)

logger = get_logger("sync.cleanup")

KEEP_SYNC_RUNS = 100
NOTIFICATION_RETENTION = timedelta(days=90)


def run_cleanup(context: ServiceContext) -> Dict[str, int]:
    """Run every cleanup step; returns how many rows/entries each removed."""
    logger.info("Starting cleanup job")

    context.caches.flush(CacheTier.SHORT)
    context.caches.flush(CacheTier.DEFAULT)
    pruned = context.caches.long.prune_expired()
    logger.info(f"Long cache stats: {context.caches.long.stats().to_dict()}")

    result = {
        "cache_entries_pruned": pruned,
        "sync_runs_deleted": cleanup_sync_runs(context),
        "notifications_deleted": cleanup_notifications(context),
        "leases_deleted": cleanup_expired_leases(context),
    }
    logger.info(f"Cleanup job completed: {result}")
    return result


def cleanup_sync_runs(context: ServiceContext, keep: int = KEEP_SYNC_RUNS) -> int:
    """Delete all but the newest ``keep`` sync runs (running rows are kept)."""
    with context.session() as session:
        keep_ids = session.exec(
            select(SyncRun.id).order_by(SyncRun.started_at.desc()).limit(keep)  # type: ignore
        ).all()
        if not keep_ids:
            logger.info("No sync status records found, nothing to clean up")
            return 0
        stale = session.exec(
            select(SyncRun).where(
                SyncRun.id.not_in(keep_ids),  # type: ignore
                SyncRun.status != SyncStatus.RUNNING.value,
            )
        ).all()
        for run in stale:
            session.delete(run)
        session.commit()
    return len(stale)


def cleanup_notifications(context: ServiceContext) -> int:
    cutoff = utcnow() - NOTIFICATION_RETENTION
    with context.session() as session:
        old = session.exec(
            select(Notification).where(Notification.created_at < cutoff)
        ).all()
        for notification in old:
            session.delete(notification)
        session.commit()
    return len(old)


def cleanup_expired_leases(context: ServiceContext) -> int:
    with context.session() as session:
        expired = session.exec(
            select(SyncLease).where(SyncLease.expires_at < utcnow())
        ).all()
        for lease in expired:
            logger.warning(
                f"Dropping expired {lease.sync_type} lease held by run {lease.run_id}",
                extra={"sync_type": lease.sync_type, "run_id": lease.run_id},
            )
            session.delete(lease)
        session.commit()
    return len(expired)
