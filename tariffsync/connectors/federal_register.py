"""TariffSync — Federal Register notices client."""

from typing import Any, Dict, List

from tariffsync.connectors.base import SourceClient
from tariffsync.core.cache import CacheTier
from tariffsync.core.errors import ValidationError
from tariffsync.models.schemas import (
    FederalRegisterNotice,
    extract_hts_codes,
    parse_payload,
)


class FederalRegisterClient(SourceClient):
    source = "federal_register"
    cache_prefix = "fr"

    def _results(self, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, dict) or not isinstance(data.get("results", []), list):
            raise ValidationError(self.source, "expected object with a results array")
        return data.get("results") or []

    def _to_notice(self, raw: Dict[str, Any], with_codes: bool) -> FederalRegisterNotice:
        notice = parse_payload(FederalRegisterNotice, raw, self.source)
        updates: Dict[str, Any] = {
            "effective_date": notice.effective_date or notice.publication_date
        }
        if with_codes:
            updates["hts_codes"] = extract_hts_codes(notice.abstract)
        return notice.model_copy(update=updates)

    async def get_tariff_notices(self) -> List[FederalRegisterNotice]:
        """Newest tariff notices, with HTS codes pulled from each abstract."""

        async def load() -> List[FederalRegisterNotice]:
            self.logger.info("Fetching tariff notices from Federal Register")
            data = await self._request(
                "notices",
                "/documents",
                {
                    "conditions[type]": "NOTICE",
                    "conditions[topics][]": "tariffs",
                    "per_page": 100,
                    "order": "newest",
                },
            )
            return [self._to_notice(raw, with_codes=True) for raw in self._results(data)]

        return await self._cached(CacheTier.SHORT, "notices", load, 4 * 3600)

    async def get_effective_dates(self, hts_code: str) -> List[FederalRegisterNotice]:
        """Notices mentioning ``hts_code`` (or titled as tariff notices)."""

        async def load() -> List[FederalRegisterNotice]:
            self.logger.info(
                f"Fetching effective dates for HTS code {hts_code}",
                extra={"hts_code": hts_code},
            )
            data = await self._request(
                "dates",
                "/documents",
                {"conditions[term]": hts_code, "per_page": 50, "order": "newest"},
            )
            notices = [self._to_notice(raw, with_codes=False) for raw in self._results(data)]
            return [
                n for n in notices if hts_code in n.abstract or "Tariff" in n.title
            ]

        return await self._cached(CacheTier.LONG, f"dates:{hts_code}", load, 12 * 3600)
