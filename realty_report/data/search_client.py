import logging

import httpx

from .base import ComparableSearch, ComparableListing, SearchFilters, SourceResult
from ..core.config import settings
from ..core.utils import fnv1a_32, seeded_rand, format_thousands, normalize_text

log = logging.getLogger(__name__)

# Hard ceiling regardless of configuration
COMPARABLES_HARD_CAP = 25

def comparables_cap() -> int:
    return max(1, min(settings.MAX_COMPARABLES, COMPARABLES_HARD_CAP))

class MockSearch(ComparableSearch):
    """
    Synthetic rental comparables for a location. A few are quoted in UF,
    the way some owners publish rents.
    """
    async def search(self, property_type: str, operation: str, location: str,
                     max_pages: int, filters: SearchFilters) -> SourceResult[tuple]:
        seed = fnv1a_32(normalize_text(f"{property_type}|{location}"))
        base_rent = 1_500_000 + int(seeded_rand(seed, 1)[0] * 1_600_000)
        min_beds = int(filters.min_bedrooms or 2)
        count = min(comparables_cap(), 6 * max_pages)
        out = []
        for i in range(count):
            r = seeded_rand(seed + 31 * i, 3)
            rent = int(base_rent * (0.8 + r[0] * 0.4))
            in_uf = i % 5 == 4
            price = f"{rent / settings.UF_VALUE_CLP:.0f}" if in_uf else format_thousands(rent)
            beds = min_beds + int(r[1] * 2)
            out.append(ComparableListing(
                title=f"{property_type} en arriendo {beds}D",
                price=price,
                currency="UF" if in_uf else "CLP",
                address=location,
                bedrooms=f"{beds} dormitorios",
                bathrooms=f"{1 + int(r[2] * 3)} baños",
                area=f"{int((filters.min_area_m2 or 70) + r[2] * 60)} m2",
                link=f"https://www.portalinmobiliario.com/arriendo/mock-{seed}-{i}",
            ))
        return SourceResult.ok(tuple(out))

class HttpSearch(ComparableSearch):
    """
    Client for the portal search microservice.
    """
    def __init__(self, base_url: str, timeout: float = 60, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport  # injectable for tests

    async def search(self, property_type: str, operation: str, location: str,
                     max_pages: int, filters: SearchFilters) -> SourceResult[tuple]:
        params = {"tipo": property_type, "operacion": operation, "ubicacion": location,
                  "max_paginas": max_pages, **filters.as_params()}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(f"{self.base_url}/search", params=params)
                r.raise_for_status()
                body = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("search request failed", extra={"location": location, "error": str(exc)})
            return SourceResult.failed(f"search request failed: {exc}")

        items = body.get("data", body) if isinstance(body, dict) else body
        if not isinstance(items, list):
            return SourceResult.failed("search returned an unexpected payload")
        listings = tuple(
            ComparableListing(
                title=i.get("titulo") or i.get("title") or "",
                price=str(i.get("precio") or i.get("price") or ""),
                currency=i.get("moneda") or i.get("currency") or "CLP",
                address=i.get("ubicacion") or i.get("address") or "",
                bedrooms=i.get("dormitorios") or i.get("bedrooms"),
                bathrooms=i.get("banos") or i.get("bathrooms"),
                area=i.get("superficie") or i.get("area"),
                link=i.get("link") or "",
            )
            for i in items if isinstance(i, dict)
        )
        return SourceResult.ok(listings[:comparables_cap()])

def search_client() -> ComparableSearch:
    if settings.SEARCH_PROVIDER == "http" and settings.SEARCH_BASE_URL:
        return HttpSearch(settings.SEARCH_BASE_URL, settings.SEARCH_TIMEOUT_SECONDS)
    return MockSearch()
