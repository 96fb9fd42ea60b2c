"""TariffSync — Sync Run Lifecycle.

Each run moves idle → running → completed | failed. ``begin`` takes the
per-type lease and records the run; ``execute`` does the work through a
RetryQueue and writes the single terminal transition. While the work runs
the lease is renewed every third of its TTL.
"""

import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from tariffsync.core.context import ServiceContext
from tariffsync.core.errors import SyncInProgressError
from tariffsync.core.logging import get_logger
from tariffsync.core.retry_queue import RetryQueue
from tariffsync.models.db_models import (
    SyncLease,
    SyncRun,
    SyncStatus,
    SyncType,
    utcnow,
)

logger = get_logger("sync.runner")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class SyncOutcome:
    run_id: Optional[int]
    sync_type: SyncType
    status: SyncStatus
    error: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.COMPLETED


# ─────────────────────────────────────────────
# Lease
# ─────────────────────────────────────────────


def acquire_lease(session: Session, sync_type: SyncType, ttl_seconds: int) -> SyncLease:
    """Take the lease for ``sync_type`` inside the caller's transaction.

    An expired lease is taken over; a live one raises SyncInProgressError.
    """
    now = utcnow()
    held = session.get(SyncLease, sync_type.value)
    if held is not None:
        if _as_utc(held.expires_at) > now:
            raise SyncInProgressError(sync_type.value, held.run_id)
        logger.warning(
            f"Taking over expired {sync_type.value} lease from run {held.run_id}",
            extra={"sync_type": sync_type.value},
        )
        session.delete(held)
        session.flush()

    lease = SyncLease(
        sync_type=sync_type.value,
        acquired_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )
    session.add(lease)
    try:
        session.flush()
    except IntegrityError as e:
        session.rollback()
        raise SyncInProgressError(sync_type.value) from e
    return lease


def renew_lease(
    session: Session, sync_type: SyncType, run_id: Optional[int], ttl_seconds: float
) -> bool:
    """Push the lease expiry forward; False once ``run_id`` no longer holds it."""
    lease = session.get(SyncLease, sync_type.value)
    if lease is None or lease.run_id != run_id:
        return False
    lease.expires_at = utcnow() + timedelta(seconds=ttl_seconds)
    session.add(lease)
    session.commit()
    return True


def release_lease(session: Session, sync_type: SyncType, run_id: Optional[int]) -> None:
    lease = session.get(SyncLease, sync_type.value)
    if lease is not None and lease.run_id == run_id:
        session.delete(lease)
        session.commit()


# ─────────────────────────────────────────────
# Runner
# ─────────────────────────────────────────────


class SyncRunner:
    """Base class for one kind of sync pass."""

    sync_type: SyncType

    def __init__(self, context: ServiceContext):
        self.context = context
        self.settings = context.settings

    def describe(self) -> str:
        return self.sync_type.value

    def begin(self) -> int:
        """Acquire the lease and create the running SyncRun row; returns its id."""
        with self.context.session() as session:
            lease = acquire_lease(
                session, self.sync_type, self.settings.lease_ttl_seconds
            )
            run = SyncRun(type=self.sync_type.value, status=SyncStatus.RUNNING.value)
            session.add(run)
            session.flush()
            lease.run_id = run.id
            session.add(lease)
            session.commit()
            run_id = run.id

        logger.info(
            f"Started {self.describe()} sync (run {run_id})",
            extra={"sync_type": self.sync_type.value, "run_id": run_id},
        )
        return run_id

    async def execute(self, run_id: int) -> SyncOutcome:
        """Do the work for an already-begun run and record how it ended."""
        queue = RetryQueue(
            concurrency=self.settings.sync_concurrency,
            retries=self.settings.sync_retries,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            name=self.sync_type.value,
        )
        started = time.perf_counter()
        extra = {"sync_type": self.sync_type.value, "run_id": run_id}
        heartbeat = asyncio.create_task(self._heartbeat(run_id))

        try:
            stats = await self._execute(queue) or {}
            await queue.on_idle()
        except Exception as e:
            # Let anything already queued finish before the lease goes away
            await queue.on_idle()
            logger.error(
                f"Error during {self.describe()} sync: {e}", exc_info=True, extra=extra
            )
            error = str(e) or type(e).__name__
            self._finish(run_id, SyncStatus.FAILED, queue, error=error)
            return SyncOutcome(
                run_id, self.sync_type, SyncStatus.FAILED, error=error, stats=self._stats(queue)
            )
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            with self.context.session() as session:
                release_lease(session, self.sync_type, run_id)

        stats.update(self._stats(queue))
        self._finish(run_id, SyncStatus.COMPLETED, queue)
        logger.info(
            f"{self.describe().capitalize()} sync completed: {stats}",
            extra={**extra, "duration_ms": round((time.perf_counter() - started) * 1000, 1)},
        )
        return SyncOutcome(run_id, self.sync_type, SyncStatus.COMPLETED, stats=stats)

    async def run(self) -> SyncOutcome:
        """begin + execute. Lease rejection propagates; run errors are captured."""
        run_id = self.begin()
        return await self.execute(run_id)

    async def _heartbeat(self, run_id: int) -> None:
        """Keep the lease alive while the run works; expiry only frees crashed runs."""
        ttl = self.settings.lease_ttl_seconds
        while True:
            await asyncio.sleep(ttl / 3)
            try:
                with self.context.session() as session:
                    renewed = renew_lease(session, self.sync_type, run_id, ttl)
            except SQLAlchemyError as e:
                # Retried on the next beat
                logger.warning(f"Could not renew {self.sync_type.value} lease: {e}")
                continue
            if not renewed:
                logger.warning(
                    f"Lost {self.sync_type.value} lease for run {run_id}",
                    extra={"sync_type": self.sync_type.value, "run_id": run_id},
                )
                return

    async def _execute(self, queue: RetryQueue) -> Optional[Dict[str, Any]]:
        """Submit the run's work to ``queue``; may return extra stats."""
        raise NotImplementedError

    # ── Terminal transition ──

    @staticmethod
    def _stats(queue: RetryQueue) -> Dict[str, int]:
        summary = queue.summary()
        return {
            "submitted": summary.submitted,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
        }

    def _finish(
        self,
        run_id: Optional[int],
        status: SyncStatus,
        queue: RetryQueue,
        error: Optional[str] = None,
    ) -> None:
        summary = queue.summary()
        with self.context.session() as session:
            run = session.get(SyncRun, run_id) if run_id is not None else None
            if run is None:
                # Unknown run: fall back to the newest running row of this type
                run = session.exec(
                    select(SyncRun)
                    .where(
                        SyncRun.type == self.sync_type.value,
                        SyncRun.status == SyncStatus.RUNNING.value,
                    )
                    .order_by(SyncRun.started_at.desc())  # type: ignore
                    .limit(1)
                ).first()
            if run is None or run.status != SyncStatus.RUNNING.value:
                logger.warning(
                    f"No running {self.sync_type.value} run to mark {status.value}"
                )
                return
            run.status = status.value
            run.completed_at = utcnow()
            run.error_message = error
            run.items_succeeded = summary.succeeded
            run.items_failed = summary.failed
            session.add(run)
            session.commit()
