"""TariffSync — Tariff Rate Sync.

Recomputes the rate of every (product, country) pair in the batch and
notifies watchers when a pair's total moves by at least one percentage point.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlmodel import select

from tariffsync.core.logging import get_logger
from tariffsync.core.retry_queue import RetryQueue
from tariffsync.models.db_models import Country, NotificationType, Product, SyncType
from tariffsync.services.aggregator import latest_total_rate, update_tariff_rate
from tariffsync.sync.runner import SyncRunner

logger = get_logger("sync.tariffs")

RATE_CHANGE_THRESHOLD = 1.0


@dataclass(frozen=True)
class _ProductRow:
    id: int
    name: str
    base_rate: float
    additional_rates: List[Dict[str, Any]]


@dataclass(frozen=True)
class _CountryRow:
    id: int
    code: str
    name: str


def rates_for_country(
    additional_rates: List[Dict[str, Any]], country_code: str
) -> List[Dict[str, Any]]:
    """Rates that apply to every country, plus those listing ``country_code``."""
    return [
        rate
        for rate in additional_rates
        if not rate.get("countries") or country_code in rate["countries"]
    ]


def adjust_for_trade_agreements(
    rates: List[Dict[str, Any]], agreement_codes: List[str]
) -> List[Dict[str, Any]]:
    """Placeholder agreement policy: an FTA eliminates "standard" rates.

    No other agreement changes anything.
    """
    if "FTA" not in agreement_codes:
        return rates
    return [
        {**rate, "rate": 0} if rate.get("type") == "standard" else rate
        for rate in rates
    ]


def is_significant_change(previous: float, current: float) -> bool:
    return abs(current - previous) >= RATE_CHANGE_THRESHOLD


class TariffSync(SyncRunner):
    sync_type = SyncType.TARIFFS

    async def _execute(self, queue: RetryQueue) -> Dict[str, Any]:
        logger.info("Starting tariff rates sync")

        with self.context.session() as session:
            countries = [
                _CountryRow(c.id, c.code, c.name)
                for c in session.exec(select(Country)).all()
            ]
        if not countries:
            logger.warning("No countries found, skipping tariff sync")
            return {"products": 0, "countries": 0}

        agreements = await self.context.ustr.get_trade_agreements()
        country_agreements: Dict[str, List[str]] = defaultdict(list)
        for agreement in agreements:
            for country_code in agreement.countries:
                country_agreements[country_code].append(agreement.code)

        with self.context.session() as session:
            products = [
                _ProductRow(p.id, p.name or p.hts_code, p.base_rate, list(p.additional_rates))
                for p in session.exec(
                    select(Product)
                    .order_by(Product.last_updated.asc())  # type: ignore
                    .limit(self.settings.sync_batch_size)
                ).all()
            ]
        if not products:
            logger.warning("No products found, skipping tariff sync")
            return {"products": 0, "countries": len(countries)}

        logger.info(
            f"Processing tariff rates for {len(products)} products and {len(countries)} countries"
        )
        effective_date = datetime.now(timezone.utc).date().isoformat()
        for product in products:
            for country in countries:
                queue.submit(
                    lambda product=product, country=country: self._sync_pair(
                        product,
                        country,
                        country_agreements.get(country.code, []),
                        effective_date,
                    ),
                    label=f"product {product.id} / {country.code}",
                )
        return {"products": len(products), "countries": len(countries)}

    async def _sync_pair(
        self,
        product: _ProductRow,
        country: _CountryRow,
        agreement_codes: List[str],
        effective_date: str,
    ) -> float:
        """Upsert one pair's rate; returns the new total."""
        rates = rates_for_country(product.additional_rates, country.code)
        if agreement_codes:
            rates = adjust_for_trade_agreements(rates, agreement_codes)

        with self.context.session() as session:
            previous = latest_total_rate(session, product.id, country.id)
            row = update_tariff_rate(
                session, product.id, country.id, product.base_rate, rates, effective_date
            )
            new_total = row.total_rate

        if previous is not None and is_significant_change(previous, new_total):
            self.context.notifier.notify_watchers(
                product.id,
                f"Tariff Rate Change for {country.name}",
                f"The tariff rate for {product.name} imported from {country.name} "
                f"has changed from {previous}% to {new_total}%",
                NotificationType.RATE_CHANGE,
            )
        return new_total
