"""TariffSync — Product Data Aggregator.

Fetches every source for one HTS code concurrently, merges the results and
persists the product with its dependent collections:

  fetch (all-or-nothing) → upsert product → upsert exclusions / rulings /
  notices and replace additional rates → recompute total rate → diff & notify
"""

import asyncio
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from tariffsync.core.context import ServiceContext
from tariffsync.core.errors import ValidationError
from tariffsync.core.logging import get_logger
from tariffsync.models.db_models import (
    Product,
    ProductExclusion,
    ProductNotice,
    ProductRuling,
    TariffRate,
    utcnow,
)
from tariffsync.models.schemas import (
    HTS_CODE_RE,
    CBPRuling,
    Exclusion,
    FederalRegisterNotice,
    HTSRate,
    Section301Tariff,
)
from tariffsync.services.notifications import ProductSnapshot

logger = get_logger("services.aggregator")

STALE_AFTER = timedelta(days=7)

_NUMERIC_PREFIX = re.compile(r"^\s*[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")


# ─────────────────────────────────────────────
# Rate arithmetic
# ─────────────────────────────────────────────


def parse_rate(value: Any) -> Optional[float]:
    """Numeric value of a rate field, or None when it has none.

    Strings are read up to the end of their leading number, so "2.5" and
    "2.5%" are both 2.5, while "Free" and "abc" have no numeric value.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _NUMERIC_PREFIX.match(value)
        return float(match.group()) if match else None
    return None


def compute_total_rate(base_rate: float, additional_rates: Iterable[Dict[str, Any]]) -> float:
    """``base_rate`` plus every numeric additional rate; non-numeric rates add 0."""
    total = base_rate
    for rate in additional_rates:
        total += parse_rate(rate.get("rate")) or 0.0
    return total


def _additional_rate(tariff: Section301Tariff) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "type": "section301",
        "rate": tariff.rate,
        "list_number": tariff.list_number,
        "description": tariff.description,
        "effective_date": tariff.effective_date,
    }
    if tariff.expiry_date:
        entry["expiry_date"] = tariff.expiry_date
    if tariff.countries:
        entry["countries"] = list(tariff.countries)
    return entry


# ─────────────────────────────────────────────
# Persistence steps
# ─────────────────────────────────────────────


def snapshot(session: Session, product: Product) -> ProductSnapshot:
    ruling_count = session.exec(
        select(func.count()).select_from(ProductRuling).where(
            ProductRuling.product_id == product.id
        )
    ).one()
    exclusion_count = session.exec(
        select(func.count()).select_from(ProductExclusion).where(
            ProductExclusion.product_id == product.id
        )
    ).one()
    return ProductSnapshot(
        product_id=product.id,
        name=product.name or product.hts_code,
        total_rate=product.total_rate,
        ruling_count=ruling_count,
        exclusion_count=exclusion_count,
    )


def upsert_product(session: Session, general: HTSRate, category: str) -> Product:
    """Insert or update the product row for ``general.hts_code``; returns it with an id."""
    product = session.exec(
        select(Product).where(Product.hts_code == general.hts_code)
    ).first()
    if product is None:
        product = Product(hts_code=general.hts_code)

    product.name = general.description or product.name
    product.description = general.description
    product.category = category or product.category
    product.base_rate = parse_rate(general.rate) or 0.0
    product.unit = general.unit
    product.special_rates = [s.model_dump() for s in general.special_rates]
    session.add(product)
    session.flush()
    return product


def upsert_exclusions(
    session: Session, product_id: int, exclusions: List[Exclusion]
) -> None:
    for exclusion in exclusions:
        row = session.exec(
            select(ProductExclusion).where(
                ProductExclusion.product_id == product_id,
                ProductExclusion.exclusion_id == exclusion.id,
            )
        ).first() or ProductExclusion(product_id=product_id, exclusion_id=exclusion.id)
        row.description = exclusion.description
        row.effective_date = exclusion.effective_date
        row.expiry_date = exclusion.expiry_date
        row.updated_at = utcnow()
        session.add(row)


def upsert_rulings(session: Session, product_id: int, rulings: List[CBPRuling]) -> None:
    for ruling in rulings:
        row = session.exec(
            select(ProductRuling).where(
                ProductRuling.product_id == product_id,
                ProductRuling.ruling_number == ruling.ruling_number,
            )
        ).first() or ProductRuling(
            product_id=product_id, ruling_number=ruling.ruling_number
        )
        row.date = ruling.date
        row.title = ruling.title
        row.description = ruling.description
        row.url = ruling.url
        row.updated_at = utcnow()
        session.add(row)


def upsert_notices(
    session: Session, product_id: int, notices: List[FederalRegisterNotice]
) -> None:
    for notice in notices:
        row = session.exec(
            select(ProductNotice).where(
                ProductNotice.product_id == product_id,
                ProductNotice.document_number == notice.document_number,
            )
        ).first() or ProductNotice(
            product_id=product_id, document_number=notice.document_number
        )
        row.title = notice.title
        row.publication_date = notice.publication_date
        row.effective_date = notice.effective_date
        row.html_url = notice.html_url
        row.updated_at = utcnow()
        session.add(row)


def refresh_total_rate(session: Session, product: Product) -> float:
    product.total_rate = compute_total_rate(product.base_rate, product.additional_rates)
    product.last_updated = utcnow()
    session.add(product)
    return product.total_rate


# ─────────────────────────────────────────────
# Public operations
# ─────────────────────────────────────────────


async def aggregate_product(
    context: ServiceContext, hts_code: str, category: str
) -> ProductSnapshot:
    """Fetch, merge and persist one HTS code; raises if any source fails."""
    if not HTS_CODE_RE.match(hts_code):
        raise ValidationError("aggregator", f"malformed HTS code {hts_code!r}")

    logger.info(
        f"Starting data aggregation for HTS code {hts_code}",
        extra={"hts_code": hts_code},
    )

    results = await asyncio.gather(
        context.usitc.get_general_rates(hts_code),
        context.ustr.get_section301_tariffs(),
        context.ustr.get_exclusions(hts_code),
        context.cbp.get_rulings(hts_code),
        context.federal_register.get_effective_dates(hts_code),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    general, section301, exclusions, rulings, notices = results
    if general.hts_code != hts_code:
        raise ValidationError(
            "usitc", f"asked for {hts_code}, received {general.hts_code}"
        )

    relevant = [t for t in section301 if t.hts_code == hts_code]

    with context.session() as session:
        existing = session.exec(
            select(Product).where(Product.hts_code == hts_code)
        ).first()
        old = snapshot(session, existing) if existing is not None else None

        product = upsert_product(session, general, category)
        product.additional_rates = [_additional_rate(t) for t in relevant]
        upsert_exclusions(session, product.id, exclusions)
        upsert_rulings(session, product.id, rulings)
        upsert_notices(session, product.id, notices)
        refresh_total_rate(session, product)
        session.commit()
        session.refresh(product)
        new = snapshot(session, product)

    if old is not None:
        context.notifier.diff_and_notify(new.product_id, old, new)

    logger.info(
        f"Successfully aggregated data for HTS code {hts_code} (total rate {new.total_rate}%)",
        extra={"hts_code": hts_code},
    )
    return new


def find_stale_products(session: Session, limit: int = 100) -> List[str]:
    """HTS codes not refreshed within ``STALE_AFTER``, oldest first."""
    cutoff = datetime.now(timezone.utc) - STALE_AFTER
    rows = session.exec(
        select(Product.hts_code)
        .where(Product.last_updated < cutoff)
        .order_by(Product.last_updated.asc())  # type: ignore
        .limit(limit)
    ).all()
    return list(rows)


def latest_total_rate(
    session: Session, product_id: int, country_id: int
) -> Optional[float]:
    """Total rate of the most recent tariff rate row for the pair, if any."""
    return session.exec(
        select(TariffRate.total_rate)
        .where(TariffRate.product_id == product_id, TariffRate.country_id == country_id)
        .order_by(TariffRate.effective_date.desc())  # type: ignore
        .limit(1)
    ).first()


def update_tariff_rate(
    session: Session,
    product_id: int,
    country_id: int,
    base_rate: float,
    additional_rates: List[Dict[str, Any]],
    effective_date: str,
) -> TariffRate:
    """Upsert the rate for (product, country, effective_date) and commit."""
    logger.info(f"Updating tariff rates for product {product_id}, country {country_id}")

    row = session.exec(
        select(TariffRate).where(
            TariffRate.product_id == product_id,
            TariffRate.country_id == country_id,
            TariffRate.effective_date == effective_date,
        )
    ).first() or TariffRate(
        product_id=product_id, country_id=country_id, effective_date=effective_date
    )
    row.base_rate = base_rate
    row.additional_rates = [dict(r) for r in additional_rates]
    row.total_rate = compute_total_rate(base_rate, additional_rates)
    row.updated_at = utcnow()
    session.add(row)
    session.commit()
    session.refresh(row)
    return row
