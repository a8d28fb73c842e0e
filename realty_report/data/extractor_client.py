import logging

import httpx

from .base import PropertyExtractor, PropertySnapshot, SourceResult
from ..core.config import settings
from ..core.utils import fnv1a_32, seeded_rand, format_thousands

log = logging.getLogger(__name__)

_SAMPLE_ADDRESSES = [
    "Los Castaños 855, Montemar, Concón, Valparaíso",
    "Av. Apoquindo 4500, Las Condes, Santiago",
    "Av. Providencia 2100, Providencia, Santiago",
    "Av. Vitacura 3600, Vitacura, Santiago",
    "Av. Irarrázaval 3400, Ñuñoa, Santiago",
]

class MockExtractor(PropertyExtractor):
    """
    Synthetic listing for a URL. Values are plausible but fake and
    stable for a given URL.
    """
    async def extract(self, url: str) -> SourceResult[PropertySnapshot]:
        seed = fnv1a_32(url)
        r = seeded_rand(seed, 5)
        price_uf = 4_000 + int(r[0] * 110) * 100          # 4.000..14.900 UF
        beds = 2 + int(r[1] * 4)                           # 2..5
        baths = 1 + int(r[2] * 3)                          # 1..3
        area = 60 + int(r[3] * 180)                        # 60..239 m2
        address = _SAMPLE_ADDRESSES[seed % len(_SAMPLE_ADDRESSES)]
        kind = "Departamento" if r[4] < 0.5 else "Casa"
        snapshot = PropertySnapshot(
            title=f"{kind} en venta {beds}D {baths}B",
            price_uf=format_thousands(price_uf),
            price_clp="$" + format_thousands(price_uf * settings.UF_VALUE_CLP),
            address=address,
            bedrooms=f"{beds} dormitorios",
            bathrooms=f"{baths} baños",
            area=f"{area} m2 totales",
            description=f"{kind} de {area} m2 en {address.split(',')[-2].strip()}.",
            features={"parking": f"{1 + seed % 2} estacionamientos"},
            link=url,
        )
        return SourceResult.ok(snapshot)

class HttpExtractor(PropertyExtractor):
    """
    Client for the listing-extraction microservice (headless browser lives there).
    """
    def __init__(self, base_url: str, timeout: float = 45, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport  # injectable for tests

    async def extract(self, url: str) -> SourceResult[PropertySnapshot]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(f"{self.base_url}/extract", json={"url": url})
                r.raise_for_status()
                body = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("extractor request failed", extra={"url": url, "error": str(exc)})
            return SourceResult.failed(f"extractor request failed: {exc}")

        data = body.get("data", body) if isinstance(body, dict) else None
        if not isinstance(data, dict) or not data.get("title"):
            return SourceResult.failed("extractor returned no listing")
        return SourceResult.ok(PropertySnapshot(
            title=data["title"],
            price_uf=data.get("price_uf"),
            price_clp=data.get("price_clp") or data.get("price"),
            address=data.get("address") or "",
            bedrooms=data.get("bedrooms"),
            bathrooms=data.get("bathrooms"),
            area=data.get("area") or data.get("surface"),
            description=data.get("description") or "",
            features=dict(data.get("features") or {}),
            link=data.get("link") or url,
        ))

def extractor_client() -> PropertyExtractor:
    if settings.EXTRACTOR_PROVIDER == "http" and settings.EXTRACTOR_BASE_URL:
        return HttpExtractor(settings.EXTRACTOR_BASE_URL, settings.EXTRACTOR_TIMEOUT_SECONDS)
    return MockExtractor()
