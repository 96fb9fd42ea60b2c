"""TariffSync — Scheduler Jobs.

APScheduler cron jobs for the periodic syncs and the cleanup pass. The
scheduler is its own component with an explicit start/stop lifecycle.
"""

from typing import Awaitable, Callable, Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from tariffsync.core.context import ServiceContext
from tariffsync.core.errors import SyncInProgressError
from tariffsync.core.logging import get_logger
from tariffsync.services.sync_service import (
    run_product_sync,
    run_tariff_sync,
    run_update_sync,
)
from tariffsync.sync.cleanup import run_cleanup
from tariffsync.sync.runner import SyncOutcome

logger = get_logger("scheduler")


class SyncScheduler:
    """Named periodic jobs bound to one service context."""

    def __init__(self, context: ServiceContext):
        self.context = context
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    # ── Jobs ──

    async def _run_sync(self, name: str, sync: Callable[[], Awaitable[SyncOutcome]]) -> None:
        logger.info(f"Starting scheduled {name} job")
        try:
            outcome = await sync()
        except SyncInProgressError as e:
            logger.warning(f"Scheduled {name} job skipped: {e}")
            return
        except Exception as e:
            logger.error(f"Scheduled {name} job failed: {e}", exc_info=True)
            return
        if outcome.ok:
            logger.info(f"Scheduled {name} job completed: {outcome.stats}")
        else:
            logger.error(f"Scheduled {name} job failed: {outcome.error}")

    async def product_sync_job(self) -> None:
        await self._run_sync("product sync", lambda: run_product_sync(self.context))

    async def tariff_sync_job(self) -> None:
        await self._run_sync("tariff sync", lambda: run_tariff_sync(self.context))

    async def update_sync_job(self) -> None:
        await self._run_sync("update sync", lambda: run_update_sync(self.context))

    async def cleanup_job(self) -> None:
        logger.info("Starting scheduled cleanup job")
        try:
            run_cleanup(self.context)
        except Exception as e:
            logger.error(f"Scheduled cleanup job failed: {e}", exc_info=True)

    # ── Lifecycle ──

    def jobs(self) -> Dict[str, tuple[Callable[[], Awaitable[None]], str]]:
        s = self.context.settings
        return {
            "product_sync": (self.product_sync_job, s.product_sync_cron),
            "tariff_sync": (self.tariff_sync_job, s.tariff_sync_cron),
            "update_sync": (self.update_sync_job, s.update_sync_cron),
            "cleanup": (self.cleanup_job, s.cleanup_cron),
        }

    def start(self) -> None:
        """Configure and start the scheduler."""
        if not self.context.settings.scheduler_enabled:
            logger.info("Scheduler disabled via config")
            return

        for job_id, (func, crontab) in self.jobs().items():
            self.scheduler.add_job(
                func,
                CronTrigger.from_crontab(crontab, timezone="UTC"),
                id=job_id,
                replace_existing=True,
                misfire_grace_time=3600,
                max_instances=1,
            )
        self.scheduler.start()
        logger.info(f"Scheduler started with jobs: {', '.join(self.jobs())}")

    def stop(self) -> None:
        """Shutdown the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
