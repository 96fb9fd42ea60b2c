"""TariffSync — Database Models.

Every table that a sync writes carries a unique constraint on its natural key,
so repeated delivery from retries and overlapping runs converges on one row.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field, UniqueConstraint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncType(str, Enum):
    PRODUCTS = "products"
    TARIFFS = "tariffs"
    UPDATES = "updates"


class SyncStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(str, Enum):
    RATE_CHANGE = "rate_change"
    NEW_RULING = "new_ruling"
    EXCLUSION = "exclusion"
    SYSTEM = "system"


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ─────────────────────────────────────────────
# Products and their dependent collections
# ─────────────────────────────────────────────


class Product(SQLModel, table=True):
    """One HTS code, merged from every source.

    ``total_rate`` is always ``base_rate`` plus the numeric part of each
    additional rate.
    """

    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    hts_code: str = Field(index=True, unique=True, description="XXXX.XX.XXXX")
    name: str = Field(default="")
    description: str = Field(default="")
    category: str = Field(default="Uncategorized", index=True)
    base_rate: float = Field(default=0.0)
    unit: str = Field(default="")
    special_rates: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    additional_rates: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    total_rate: float = Field(default=0.0)
    last_updated: datetime = Field(default_factory=utcnow, index=True)


class ProductExclusion(SQLModel, table=True):
    __tablename__ = "product_exclusions"
    __table_args__ = (
        UniqueConstraint("product_id", "exclusion_id", name="uq_product_exclusion"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    exclusion_id: str
    description: str = Field(default="")
    effective_date: str = Field(default="")
    expiry_date: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)


class ProductRuling(SQLModel, table=True):
    __tablename__ = "product_rulings"
    __table_args__ = (
        UniqueConstraint("product_id", "ruling_number", name="uq_product_ruling"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    ruling_number: str
    date: str = Field(default="")
    title: str = Field(default="")
    description: str = Field(default="")
    url: str = Field(default="")
    updated_at: datetime = Field(default_factory=utcnow)


class ProductNotice(SQLModel, table=True):
    """Federal Register notice that sets an effective date for a product."""

    __tablename__ = "product_notices"
    __table_args__ = (
        UniqueConstraint("product_id", "document_number", name="uq_product_notice"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    document_number: str
    title: str = Field(default="")
    publication_date: str = Field(default="")
    effective_date: str = Field(default="")
    html_url: str = Field(default="")
    updated_at: datetime = Field(default_factory=utcnow)


# ─────────────────────────────────────────────
# Per-country rates
# ─────────────────────────────────────────────


class Country(SQLModel, table=True):
    __tablename__ = "countries"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True, description="ISO alpha-2")
    name: str = Field(default="")


class TariffRate(SQLModel, table=True):
    """Rate of one product imported from one country, as of one date.

    Upsert on (product_id, country_id, effective_date) is the only write path.
    """

    __tablename__ = "tariff_rates"
    __table_args__ = (
        UniqueConstraint(
            "product_id", "country_id", "effective_date", name="uq_tariff_rate"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    country_id: int = Field(foreign_key="countries.id", index=True)
    effective_date: str = Field(index=True, description="YYYY-MM-DD")
    base_rate: float = Field(default=0.0)
    additional_rates: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    total_rate: float = Field(default=0.0)
    updated_at: datetime = Field(default_factory=utcnow)


# ─────────────────────────────────────────────
# Sync bookkeeping
# ─────────────────────────────────────────────


class SyncRun(SQLModel, table=True):
    """One sync pass. Moves from running to completed or failed exactly once."""

    __tablename__ = "sync_status"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(index=True, description="products | tariffs | updates")
    status: str = Field(default=SyncStatus.RUNNING.value, index=True)
    started_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    items_succeeded: int = Field(default=0)
    items_failed: int = Field(default=0)


class SyncLease(SQLModel, table=True):
    """Held by the active run of a sync type; the primary key makes it exclusive."""

    __tablename__ = "sync_leases"

    sync_type: str = Field(primary_key=True)
    run_id: Optional[int] = None
    acquired_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime


# ─────────────────────────────────────────────
# Trade updates and notifications
# ─────────────────────────────────────────────


class TradeUpdate(SQLModel, table=True):
    __tablename__ = "trade_updates"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(default="")
    description: str = Field(default="")
    impact: str = Field(default=ImpactLevel.LOW.value, description="low | medium | high")
    source_url: str = Field(default="")
    source_reference: str = Field(
        index=True, unique=True, description="Federal Register document number"
    )
    published_date: str = Field(default="")
    created_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    title: str
    message: str
    type: str = Field(description="rate_change | new_ruling | exclusion | system")
    read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, index=True)


class UserWatchlist(SQLModel, table=True):
    __tablename__ = "user_watchlists"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_user_watchlist"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    notify_changes: bool = Field(default=True)
