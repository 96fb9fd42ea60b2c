"""TariffSync — Notification Trigger.

Turns detected product changes and newly ingested trade updates into
notification rows for the users watching the affected products.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from tariffsync.core.logging import get_logger
from tariffsync.models.db_models import (
    Notification,
    NotificationType,
    Product,
    TradeUpdate,
    UserWatchlist,
)
from tariffsync.models.schemas import extract_hts_codes

logger = get_logger("services.notifications")


@dataclass
class ProductSnapshot:
    """What a watcher cares about in a product, at one point in time."""

    product_id: int
    name: str
    total_rate: float
    ruling_count: int = 0
    exclusion_count: int = 0


class NotificationTrigger:
    """Creates notifications; each public call runs in its own session."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def notify_watchers(
        self,
        product_id: int,
        title: str,
        message: str,
        type: NotificationType,
    ) -> int:
        """Insert one notification per watcher of ``product_id``; returns the count."""
        with Session(self.engine) as session:
            user_ids = session.exec(
                select(UserWatchlist.user_id).where(
                    UserWatchlist.product_id == product_id,
                    UserWatchlist.notify_changes == True,  # noqa: E712
                )
            ).all()

            if not user_ids:
                logger.info(f"No watchers found for product {product_id}")
                return 0

            for user_id in user_ids:
                session.add(
                    Notification(
                        user_id=user_id,
                        title=title,
                        message=message,
                        type=NotificationType(type).value,
                    )
                )
            session.commit()

        logger.info(
            f"Created notifications for {len(user_ids)} users watching product {product_id}"
        )
        return len(user_ids)

    def notify_user(
        self, user_id: str, title: str, message: str, type: NotificationType
    ) -> Notification:
        with Session(self.engine) as session:
            notification = Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=NotificationType(type).value,
            )
            session.add(notification)
            session.commit()
            session.refresh(notification)
        logger.info(f"Sent notification to user {user_id}")
        return notification

    def on_trade_update_ingested(self, update_id: int) -> int:
        """Notify watchers of every product whose HTS code the update mentions.

        Returns the number of affected products.
        """
        with Session(self.engine) as session:
            update: Optional[TradeUpdate] = session.get(TradeUpdate, update_id)
            if update is None:
                raise LookupError(f"Trade update {update_id} not found")

            codes = extract_hts_codes(update.description)
            if not codes:
                logger.info(f"Trade update {update_id} mentions no HTS codes")
                return 0

            products = session.exec(
                select(Product).where(Product.hts_code.in_(codes))  # type: ignore
            ).all()
            affected = [(p.id, p.name or p.hts_code) for p in products]
            update_title = update.title

        for product_id, name in affected:
            self.notify_watchers(
                product_id,
                "Trade Policy Update",
                f"A trade policy update may affect {name}: {update_title}",
                NotificationType.SYSTEM,
            )

        logger.info(
            f"Notified watchers of {len(affected)} products about trade update {update_id}"
        )
        return len(affected)

    def diff_and_notify(
        self, product_id: int, old: ProductSnapshot, new: ProductSnapshot
    ) -> list[NotificationType]:
        """Emit one notification per changed dimension; returns the types emitted."""
        emitted: list[NotificationType] = []

        if old.total_rate != new.total_rate:
            self.notify_watchers(
                product_id,
                "Tariff Rate Changed",
                f"The tariff rate for {new.name} has changed from "
                f"{old.total_rate}% to {new.total_rate}%",
                NotificationType.RATE_CHANGE,
            )
            emitted.append(NotificationType.RATE_CHANGE)

        if new.ruling_count > old.ruling_count:
            self.notify_watchers(
                product_id,
                "New Ruling Available",
                f"A new customs ruling has been issued for {new.name}",
                NotificationType.NEW_RULING,
            )
            emitted.append(NotificationType.NEW_RULING)

        if new.exclusion_count > old.exclusion_count:
            self.notify_watchers(
                product_id,
                "New Exclusion Available",
                f"A new exclusion has been added for {new.name}",
                NotificationType.EXCLUSION,
            )
            emitted.append(NotificationType.EXCLUSION)

        return emitted
