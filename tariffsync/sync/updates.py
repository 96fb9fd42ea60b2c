"""TariffSync — Trade Update Sync.

Ingests new Federal Register tariff notices as trade updates, classifies
their impact and notifies watchers of the products they mention.
"""

from typing import Any, Dict

from sqlmodel import select

from tariffsync.core.logging import get_logger
from tariffsync.core.retry_queue import RetryQueue
from tariffsync.models.db_models import ImpactLevel, SyncType, TradeUpdate
from tariffsync.models.schemas import FederalRegisterNotice
from tariffsync.sync.runner import SyncRunner

logger = get_logger("sync.updates")

HIGH_IMPACT_PHRASES = (
    "immediate effect",
    "significant change",
    "major revision",
    "substantial increase",
)
MEDIUM_IMPACT_PHRASES = (
    "modification",
    "amendment",
    "updated rates",
    "changes to",
)


def classify_impact(title: str, abstract: str) -> ImpactLevel:
    content = f"{title or ''} {abstract or ''}".lower()
    if any(phrase in content for phrase in HIGH_IMPACT_PHRASES):
        return ImpactLevel.HIGH
    if any(phrase in content for phrase in MEDIUM_IMPACT_PHRASES):
        return ImpactLevel.MEDIUM
    return ImpactLevel.LOW


class UpdateSync(SyncRunner):
    sync_type = SyncType.UPDATES

    async def _execute(self, queue: RetryQueue) -> Dict[str, Any]:
        logger.info("Starting trade updates sync")
        notices = await self.context.federal_register.get_tariff_notices()

        # Same document can appear twice in one response
        by_reference = {n.document_number: n for n in notices}
        with self.context.session() as session:
            existing = set(
                session.exec(
                    select(TradeUpdate.source_reference).where(
                        TradeUpdate.source_reference.in_(list(by_reference))  # type: ignore
                    )
                ).all()
            )

        new_notices = [n for ref, n in by_reference.items() if ref not in existing]
        logger.info(f"Found {len(new_notices)} new trade updates")

        for notice in new_notices:
            queue.submit(
                lambda notice=notice: self._ingest(notice),
                label=f"notice {notice.document_number}",
            )
        return {"notices": len(notices), "new_notices": len(new_notices)}

    async def _ingest(self, notice: FederalRegisterNotice) -> int:
        """Store one notice (once) and notify watchers; returns the update id."""
        with self.context.session() as session:
            update = session.exec(
                select(TradeUpdate).where(
                    TradeUpdate.source_reference == notice.document_number
                )
            ).first()
            if update is None:
                update = TradeUpdate(
                    title=notice.title,
                    description=notice.abstract,
                    impact=classify_impact(notice.title, notice.abstract).value,
                    source_url=notice.html_url,
                    source_reference=notice.document_number,
                    published_date=notice.publication_date,
                )
                session.add(update)
                session.commit()
                session.refresh(update)
            update_id = update.id

        self.context.notifier.on_trade_update_ingested(update_id)
        logger.info(f"Processed trade update: {notice.document_number}")
        return update_id
