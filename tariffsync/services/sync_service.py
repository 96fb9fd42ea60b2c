"""TariffSync — Core Operations exposed to the route layer and the CLI."""

from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import select

from tariffsync.core.cache import CacheTier
from tariffsync.core.context import ServiceContext
from tariffsync.models.db_models import (
    Notification,
    Product,
    SyncRun,
    SyncType,
    TariffRate,
    TradeUpdate,
)
from tariffsync.sync.products import ProductSync
from tariffsync.sync.runner import SyncOutcome
from tariffsync.sync.tariffs import TariffSync
from tariffsync.sync.updates import UpdateSync


async def run_product_sync(context: ServiceContext, full: bool = False) -> SyncOutcome:
    return await ProductSync(context, full=full).run()


async def run_tariff_sync(context: ServiceContext) -> SyncOutcome:
    return await TariffSync(context).run()


async def run_update_sync(context: ServiceContext) -> SyncOutcome:
    return await UpdateSync(context).run()


def get_cache_stats(context: ServiceContext) -> Dict[str, Dict[str, int]]:
    return context.caches.stats()


def clear_cache(context: ServiceContext, tier: Optional[str] = None) -> None:
    """Flush one tier by name, or every tier when ``tier`` is None."""
    context.caches.flush(CacheTier(tier) if tier else None)


def list_sync_runs(
    context: ServiceContext, sync_type: Optional[SyncType] = None, limit: int = 10
) -> List[SyncRun]:
    """Most recent sync runs, newest first."""
    query = select(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit)  # type: ignore
    if sync_type is not None:
        query = query.where(SyncRun.type == SyncType(sync_type).value)
    with context.session() as session:
        return list(session.exec(query).all())


def database_stats(context: ServiceContext) -> Dict[str, Any]:
    """Row counts of the main tables."""
    tables = {
        "products": Product,
        "tariff_rates": TariffRate,
        "trade_updates": TradeUpdate,
        "notifications": Notification,
    }
    with context.session() as session:
        return {
            name: session.exec(select(func.count()).select_from(model)).one()
            for name, model in tables.items()
        }
