"""TariffSync — USTR client: Section 301 tariffs, exclusions, trade agreements."""

from typing import List

from tariffsync.connectors.base import SourceClient
from tariffsync.core.cache import CacheTier
from tariffsync.models.schemas import (
    Exclusion,
    Section301Tariff,
    TradeAgreement,
    parse_payload_list,
)

TWELVE_HOURS = 12 * 3600
ONE_DAY = 24 * 3600


class USTRClient(SourceClient):
    source = "ustr"
    cache_prefix = "ustr"

    async def get_section301_tariffs(self) -> List[Section301Tariff]:
        """All current Section 301 tariffs, across every HTS code."""

        async def load() -> List[Section301Tariff]:
            self.logger.info("Fetching Section 301 tariffs")
            data = await self._request("section301", "/section301/current")
            return parse_payload_list(Section301Tariff, data, self.source)

        return await self._cached(CacheTier.LONG, "section301", load, TWELVE_HOURS)

    async def get_exclusions(self, hts_code: str) -> List[Exclusion]:
        async def load() -> List[Exclusion]:
            self.logger.info(
                f"Fetching exclusions for HTS code {hts_code}",
                extra={"hts_code": hts_code},
            )
            data = await self._request("exclusions", f"/exclusions/{hts_code}")
            return parse_payload_list(Exclusion, data, self.source)

        return await self._cached(
            CacheTier.LONG, f"exclusions:{hts_code}", load, TWELVE_HOURS
        )

    async def get_trade_agreements(self) -> List[TradeAgreement]:
        async def load() -> List[TradeAgreement]:
            self.logger.info("Fetching trade agreements")
            data = await self._request("agreements", "/agreements")
            return parse_payload_list(TradeAgreement, data, self.source)

        return await self._cached(CacheTier.LONG, "agreements", load, ONE_DAY)
