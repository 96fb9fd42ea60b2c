"""TariffSync — USITC Harmonized Tariff Schedule client."""

from typing import List

from tariffsync.connectors.base import SourceClient
from tariffsync.core.cache import CacheTier
from tariffsync.models.schemas import (
    HTSChapter,
    HTSRate,
    parse_payload,
    parse_payload_list,
)


class USITCClient(SourceClient):
    """General rates and chapter listings from the HTS."""

    source = "usitc"
    cache_prefix = "usitc"

    async def get_hts_chapter(self, chapter: str) -> HTSChapter:
        """Get data for an entire HTS chapter ("01".."99")."""

        async def load() -> HTSChapter:
            self.logger.info(f"Fetching HTS chapter {chapter}")
            data = await self._request("chapter", f"/chapters/{chapter}")
            return parse_payload(HTSChapter, data, self.source)

        return await self._cached(CacheTier.DEFAULT, f"chapter:{chapter}", load, 3600)

    async def search_hts_codes(self, query: str) -> List[HTSRate]:
        async def load() -> List[HTSRate]:
            self.logger.info(f'Searching HTS codes for "{query}"')
            data = await self._request("search", "/search", {"q": query})
            return parse_payload_list(HTSRate, data, self.source)

        return await self._cached(CacheTier.SHORT, f"search:{query}", load, 1800)

    async def get_general_rates(self, hts_code: str) -> HTSRate:
        """Get the general rate line for one HTS code."""

        async def load() -> HTSRate:
            self.logger.info(
                f"Fetching rates for HTS code {hts_code}", extra={"hts_code": hts_code}
            )
            data = await self._request("rates", f"/rates/{hts_code}")
            return parse_payload(HTSRate, data, self.source)

        return await self._cached(CacheTier.DEFAULT, f"rates:{hts_code}", load, 3600)
