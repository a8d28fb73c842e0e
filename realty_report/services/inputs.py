"""Request options and everything derived from them before any source is called."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from .finance import snapshot_price_uf
from .location import location_from_url
from ..core.config import settings
from ..core.errors import InputValidationError, SourceUnavailableError
from ..core.numbers import extract_leading_number
from ..data.base import (
    DEFAULT_TERMS,
    MAX_PRINCIPAL_UF,
    MIN_PRINCIPAL_UF,
    PropertySnapshot,
    SearchFilters,
    check_principal,
    check_terms,
)

# Investment analysis always compares against rentals
SEARCH_OPERATION = "Arriendo"
MAX_PAGES_LIMIT = 3


@dataclass(frozen=True)
class ReportOptions:
    property_price_uf: Optional[float] = None
    loan_terms: tuple = DEFAULT_TERMS
    location: Optional[str] = None
    property_type: Optional[str] = None
    max_pages: int = field(default_factory=lambda: settings.MAX_SEARCH_PAGES)
    uses_manager: bool = False
    owner_pays_common_fees: bool = False
    uses_broker: bool = False


def validate_listing_url(url: str) -> str:
    if not url or not url.strip():
        raise InputValidationError("url", "is required")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InputValidationError("url", "must be an absolute http(s) URL")
    host = parsed.hostname.lower()
    if not any(host == d or host.endswith("." + d) for d in settings.supported_domains):
        raise InputValidationError("url", f"unsupported portal {host}")
    return url.strip()


def validate_options(options: ReportOptions) -> None:
    if options.property_price_uf is not None:
        check_principal(float(options.property_price_uf))
    check_terms(options.loan_terms)
    if not 1 <= options.max_pages <= MAX_PAGES_LIMIT:
        raise InputValidationError("max_pages", f"must be between 1 and {MAX_PAGES_LIMIT}")


def property_type_for(url: str, snapshot: Optional[PropertySnapshot], override: Optional[str]) -> str:
    if override:
        return override
    text = (snapshot.title if snapshot else "") or urlparse(url).path
    text = text.lower()
    if "departamento" in text or "depto" in text:
        return "Departamento"
    return "Casa"


def build_search_filters(snapshot: Optional[PropertySnapshot]) -> SearchFilters:
    """Minimum bedrooms/bathrooms/area/parking taken from the listing itself."""
    if snapshot is None:
        return SearchFilters()
    return SearchFilters(
        min_bedrooms=extract_leading_number(snapshot.bedrooms),
        min_bathrooms=extract_leading_number(snapshot.bathrooms),
        min_area_m2=extract_leading_number(snapshot.area),
        min_parking=extract_leading_number(snapshot.features.get("parking")),
    )


@dataclass(frozen=True)
class SearchParams:
    property_type: str
    operation: str
    location: str
    location_source: str       # override | url
    max_pages: int
    filters: SearchFilters


def derive_search_params(url: str, snapshot: Optional[PropertySnapshot], options: ReportOptions) -> SearchParams:
    if options.location:
        location, source = options.location, "override"
    else:
        location, source = location_from_url(url), "url"
    return SearchParams(
        property_type=property_type_for(url, snapshot, options.property_type),
        operation=SEARCH_OPERATION,
        location=location,
        location_source=source,
        max_pages=options.max_pages,
        filters=build_search_filters(snapshot),
    )


def resolve_principal(snapshot: Optional[PropertySnapshot], options: ReportOptions) -> float:
    """
    Loan principal in UF: scraped price, then the explicit option. A scraped
    price outside the simulator bounds is skipped, never clamped.
    """
    candidates = [snapshot_price_uf(snapshot), options.property_price_uf]
    for value in candidates:
        if value and MIN_PRINCIPAL_UF <= value <= MAX_PRINCIPAL_UF:
            return float(value)
    raise SourceUnavailableError("loan_simulator", "no property price within simulator bounds")
