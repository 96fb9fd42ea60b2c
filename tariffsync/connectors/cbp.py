"""TariffSync — CBP customs rulings client."""

from typing import Any, List

from tariffsync.connectors.base import SourceClient
from tariffsync.core.cache import CacheTier
from tariffsync.models.schemas import CBPRuling, parse_payload_list


class CBPClient(SourceClient):
    source = "cbp"
    cache_prefix = "cbp"

    async def get_rulings(self, hts_code: str) -> List[CBPRuling]:
        async def load() -> List[CBPRuling]:
            self.logger.info(
                f"Fetching CBP rulings for HTS code {hts_code}",
                extra={"hts_code": hts_code},
            )
            data = await self._request("rulings", f"/rulings/{hts_code}")
            return parse_payload_list(CBPRuling, data, self.source)

        return await self._cached(CacheTier.LONG, f"rulings:{hts_code}", load, 12 * 3600)

    async def get_implementation_guidance(self, topic: str) -> Any:
        """Free-form guidance document; returned as decoded JSON."""

        async def load() -> Any:
            self.logger.info(f"Fetching implementation guidance for {topic}")
            return await self._request("guidance", f"/guidance/{topic}")

        return await self._cached(CacheTier.LONG, f"guidance:{topic}", load, 24 * 3600)
