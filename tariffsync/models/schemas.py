"""TariffSync — Upstream Payload Schemas.

Every source client parses raw JSON into these types through ``parse_payload``
or ``parse_payload_list``. A payload that does not fit raises
``tariffsync.core.errors.ValidationError``; fields are never silently defaulted
when they are required.
"""

import re
from typing import Any, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from tariffsync.core.errors import ValidationError

HTS_CODE_PATTERN = r"^\d{4}\.\d{2}\.\d{4}$"
HTS_CODE_RE = re.compile(HTS_CODE_PATTERN)

ModelT = TypeVar("ModelT", bound=BaseModel)

RateValue = Union[float, str, None]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ─────────────────────────────────────────────
# USITC: Harmonized Tariff Schedule
# ─────────────────────────────────────────────


class SpecialRate(_Payload):
    program: str
    rate: RateValue = None


class HTSRate(_Payload):
    """General (column 1) rate for one HTS code."""

    hts_code: str = Field(pattern=HTS_CODE_PATTERN)
    description: str = ""
    rate: RateValue = None
    unit: str = ""
    special_rates: List[SpecialRate] = []


class HTSSection(_Payload):
    code: str = ""
    description: str = ""
    rates: List[HTSRate] = []


class HTSChapter(_Payload):
    chapter: str = Field(min_length=1)
    description: str = Field(min_length=1)
    sections: List[HTSSection]

    def hts_codes(self) -> List[tuple[str, str]]:
        """(hts_code, category) for every rate line in the chapter."""
        return [
            (rate.hts_code, section.description or self.description)
            for section in self.sections
            for rate in section.rates
        ]


# ─────────────────────────────────────────────
# USTR: Section 301, exclusions, agreements
# ─────────────────────────────────────────────


class Section301Tariff(_Payload):
    hts_code: str
    rate: RateValue = None
    description: str = ""
    effective_date: str = ""
    expiry_date: Optional[str] = None
    list_number: str = ""
    countries: List[str] = []


class Exclusion(_Payload):
    id: str
    hts_code: str = ""
    description: str = ""
    effective_date: str = ""
    expiry_date: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class TradeAgreement(_Payload):
    code: str
    name: str = ""
    description: str = ""
    effective_date: str = ""
    countries: List[str] = []


# ─────────────────────────────────────────────
# CBP: Customs rulings
# ─────────────────────────────────────────────


class CBPRuling(_Payload):
    ruling_number: str
    date: str = ""
    title: str = ""
    description: str = ""
    hts_codes: List[str] = []
    url: str = ""


# ─────────────────────────────────────────────
# Federal Register: notices
# ─────────────────────────────────────────────


class FederalRegisterNotice(_Payload):
    document_number: str
    title: str = ""
    abstract: str = ""
    publication_date: str = ""
    effective_date: str = ""
    html_url: str = ""
    hts_codes: List[str] = []

    @field_validator("title", "abstract", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


# ─────────────────────────────────────────────
# Validation step
# ─────────────────────────────────────────────


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc or 'payload'}: {first.get('msg', 'invalid')}"


def parse_payload(model: Type[ModelT], data: Any, source: str) -> ModelT:
    """Validate a single JSON object against ``model``."""
    if not isinstance(data, dict):
        raise ValidationError(source, f"expected object, got {type(data).__name__}")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(source, _describe(e)) from e


def parse_payload_list(model: Type[ModelT], data: Any, source: str) -> List[ModelT]:
    """Validate a JSON array whose items all match ``model``."""
    if not isinstance(data, list):
        raise ValidationError(source, f"expected array, got {type(data).__name__}")
    return [parse_payload(model, item, source) for item in data]


def extract_hts_codes(text: Optional[str]) -> List[str]:
    """Unique HTS codes (XXXX.XX.XXXX) mentioned in free text, in order of appearance."""
    if not text:
        return []
    return list(dict.fromkeys(re.findall(r"\b\d{4}\.\d{2}\.\d{4}\b", text)))
