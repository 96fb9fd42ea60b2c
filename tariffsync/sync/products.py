"""TariffSync — Product Sync.

Full mode walks all 99 HTS chapters and aggregates every code they contain.
Incremental mode refreshes only products not updated within a week.
"""

from typing import Any, Dict

from sqlmodel import select

from tariffsync.core.logging import get_logger
from tariffsync.core.retry_queue import RetryQueue
from tariffsync.models.db_models import Product, SyncType
from tariffsync.services.aggregator import aggregate_product, find_stale_products
from tariffsync.sync.runner import SyncRunner

logger = get_logger("sync.products")

HTS_CHAPTERS = [f"{chapter:02d}" for chapter in range(1, 100)]
DEFAULT_CATEGORY = "Uncategorized"


class ProductSync(SyncRunner):
    sync_type = SyncType.PRODUCTS

    def __init__(self, context, full: bool = False):
        super().__init__(context)
        self.full = full

    def describe(self) -> str:
        return "full product" if self.full else "incremental product"

    async def _execute(self, queue: RetryQueue) -> Dict[str, Any]:
        if self.full:
            return self._queue_full(queue)
        return self._queue_incremental(queue)

    def _submit_product(self, queue: RetryQueue, hts_code: str, category: str) -> None:
        queue.submit(
            lambda: aggregate_product(self.context, hts_code, category),
            label=f"product {hts_code}",
        )

    # ── Full ──

    def _queue_full(self, queue: RetryQueue) -> Dict[str, Any]:
        logger.info("Starting full product sync")
        for chapter in HTS_CHAPTERS:
            queue.submit(
                lambda chapter=chapter: self._sync_chapter(queue, chapter),
                label=f"chapter {chapter}",
            )
        return {"chapters": len(HTS_CHAPTERS)}

    async def _sync_chapter(self, queue: RetryQueue, chapter: str) -> int:
        """Fetch one chapter and queue every code in it; returns the code count."""
        logger.info(f"Processing HTS chapter {chapter}")
        data = await self.context.usitc.get_hts_chapter(chapter)
        codes = data.hts_codes()
        for hts_code, category in codes:
            self._submit_product(queue, hts_code, category)
        logger.info(f"Queued {len(codes)} products from HTS chapter {chapter}")
        return len(codes)

    # ── Incremental ──

    def _queue_incremental(self, queue: RetryQueue) -> Dict[str, Any]:
        logger.info("Starting incremental product sync")
        with self.context.session() as session:
            hts_codes = find_stale_products(session, self.settings.sync_batch_size)
            if not hts_codes:
                logger.info("No products need updating")
                return {"stale_products": 0}

            categories = dict(
                session.exec(
                    select(Product.hts_code, Product.category).where(
                        Product.hts_code.in_(hts_codes)  # type: ignore
                    )
                ).all()
            )

        logger.info(f"Found {len(hts_codes)} products to update")
        for hts_code in hts_codes:
            self._submit_product(
                queue, hts_code, categories.get(hts_code) or DEFAULT_CATEGORY
            )
        return {"stale_products": len(hts_codes)}
