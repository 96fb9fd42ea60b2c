"""TariffSync — Read-side queries over synced products, rates and updates."""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlmodel import col, select

from tariffsync.core.context import ServiceContext
from tariffsync.models.db_models import (
    Country,
    Product,
    ProductExclusion,
    ProductNotice,
    ProductRuling,
    TariffRate,
    TradeUpdate,
)


def list_products(
    context: ServiceContext,
    limit: int = 100,
    page: int = 0,
    category: Optional[str] = None,
    q: Optional[str] = None,
) -> Tuple[List[Product], int]:
    """One page of products, most recently updated first, plus the filtered total."""
    filters = []
    if category:
        filters.append(Product.category == category)
    if q:
        pattern = f"%{q}%"
        filters.append(
            or_(
                col(Product.name).ilike(pattern),
                col(Product.description).ilike(pattern),
                col(Product.hts_code).ilike(pattern),
            )
        )

    query = (
        select(Product)
        .where(*filters)
        .order_by(col(Product.last_updated).desc(), col(Product.id).desc())
        .offset(page * limit)
        .limit(limit)
    )
    with context.session() as session:
        total = session.exec(select(func.count()).select_from(Product).where(*filters)).one()
        return list(session.exec(query).all()), total


def get_product_detail(context: ServiceContext, product_id: int) -> Optional[Dict[str, Any]]:
    """A product with its exclusions, rulings, notices and per-country rates."""
    with context.session() as session:
        product = session.get(Product, product_id)
        if product is None:
            return None

        def rows(model):
            return [
                r.model_dump()
                for r in session.exec(select(model).where(model.product_id == product_id)).all()
            ]

        rates = session.exec(
            select(TariffRate, Country)
            .join(Country, col(Country.id) == TariffRate.country_id)
            .where(TariffRate.product_id == product_id)
            .order_by(col(TariffRate.effective_date).desc())
        ).all()

        return {
            **product.model_dump(),
            "exclusions": rows(ProductExclusion),
            "rulings": rows(ProductRuling),
            "notices": rows(ProductNotice),
            "tariff_rates": [
                {**rate.model_dump(), "country": country.model_dump()}
                for rate, country in rates
            ],
        }


def list_trade_updates(context: ServiceContext, limit: int = 20) -> List[TradeUpdate]:
    query = (
        select(TradeUpdate)
        .order_by(col(TradeUpdate.published_date).desc(), col(TradeUpdate.id).desc())
        .limit(limit)
    )
    with context.session() as session:
        return list(session.exec(query).all())


def list_countries(context: ServiceContext) -> List[Country]:
    with context.session() as session:
        return list(session.exec(select(Country).order_by(Country.name)).all())


def get_latest_tariff(
    context: ServiceContext, product_id: int, country_id: int
) -> Optional[TariffRate]:
    """Newest rate row for the (product, country) pair."""
    query = (
        select(TariffRate)
        .where(TariffRate.product_id == product_id, TariffRate.country_id == country_id)
        .order_by(col(TariffRate.effective_date).desc())
        .limit(1)
    )
    with context.session() as session:
        return session.exec(query).first()
