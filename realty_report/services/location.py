"""Location parsing and consistency checks.

The comparable search is only useful when it runs in the same commune as the
listing. The search location may come from a user override or from the URL
slug; once the extractor has read the real address, the two are compared and
the search location is re-derived from the address when they disagree.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from ..core.utils import normalize_text, strip_accents

log = logging.getLogger(__name__)

DEFAULT_LOCATION = "Las Condes, Santiago"

# Shared localities that make two differently written locations compatible
CONSISTENCY_KEYWORDS = ("concon", "valparaiso", "santiago", "las condes", "providencia")

_METRO = r"(santiago|metropolitana)"

# Evaluated in order; the first match wins
PRIORITY_PATTERNS = [
    (r"montemar.*concon.*valparaiso", "Concón, Valparaíso"),
    (r"concon.*valparaiso", "Concón, Valparaíso"),
    (r"vina del mar.*valparaiso", "Viña del Mar, Valparaíso"),
    (r"renaca", "Reñaca, Viña del Mar"),
    (r"valparaiso.*valparaiso", "Valparaíso, Valparaíso"),
    (rf"las condes.*{_METRO}", "Las Condes, Santiago"),
    (rf"providencia.*{_METRO}", "Providencia, Santiago"),
    (rf"vitacura.*{_METRO}", "Vitacura, Santiago"),
    (rf"lo barnechea.*{_METRO}", "Lo Barnechea, Santiago"),
    (rf"la dehesa.*{_METRO}", "Lo Barnechea, Santiago"),
    (rf"nunoa.*{_METRO}", "Ñuñoa, Santiago"),
    (rf"san miguel.*{_METRO}", "San Miguel, Santiago"),
    (rf"la florida.*{_METRO}", "La Florida, Santiago"),
    (r"antofagasta", "Antofagasta, Antofagasta"),
    (r"temuco.*araucania", "Temuco, Araucanía"),
    (r"concepcion.*biobio", "Concepción, Biobío"),
    (r"la serena.*coquimbo", "La Serena, Coquimbo"),
]

KNOWN_PLACES = [
    ("las condes", "Las Condes, Santiago"),
    ("providencia", "Providencia, Santiago"),
    ("vitacura", "Vitacura, Santiago"),
    ("lo barnechea", "Lo Barnechea, Santiago"),
    ("nunoa", "Ñuñoa, Santiago"),
    ("la reina", "La Reina, Santiago"),
    ("concon", "Concón, Valparaíso"),
    ("vina del mar", "Viña del Mar, Valparaíso"),
    ("valparaiso", "Valparaíso, Valparaíso"),
    ("santiago", "Santiago, Santiago"),
]

# URL slug fragment -> location, used only when nothing better exists
URL_HINTS = [
    (("concon", "montemar", "valparaiso"), "Concón, Valparaíso"),
    (("las-condes",), "Las Condes, Santiago"),
    (("providencia",), "Providencia, Santiago"),
    (("vitacura",), "Vitacura, Santiago"),
]


def _key(text: str) -> str:
    return strip_accents(normalize_text(text or ""))


@dataclass(frozen=True)
class LocationCheck:
    consistent: bool
    confidence: str            # high | medium | low
    method: str                # exact_match | containment_match | keyword_match | no_match | missing_input
    ground_truth: str = ""
    derived: str = ""
    keywords: tuple = ()

    def to_dict(self) -> dict:
        return {
            "consistent": self.consistent,
            "confidence": self.confidence,
            "method": self.method,
            "ground_truth": self.ground_truth,
            "derived": self.derived,
            "keywords": list(self.keywords),
        }


def verify_location_consistency(ground_truth: str, derived: str) -> LocationCheck:
    truth_key, derived_key = _key(ground_truth), _key(derived)
    base = {"ground_truth": ground_truth or "", "derived": derived or ""}
    if not truth_key or not derived_key:
        return LocationCheck(False, "low", "missing_input", **base)
    if truth_key == derived_key:
        return LocationCheck(True, "high", "exact_match", **base)
    if truth_key in derived_key or derived_key in truth_key:
        return LocationCheck(True, "medium", "containment_match", **base)
    shared = tuple(k for k in CONSISTENCY_KEYWORDS if k in truth_key and k in derived_key)
    if shared:
        return LocationCheck(True, "medium", "keyword_match", keywords=shared, **base)
    return LocationCheck(False, "low", "no_match", **base)


def _meaningful(part: str) -> bool:
    return len(part) > 2 and not part.isdigit() and "@" not in part and "www" not in part.lower()


def parse_real_location(address: str) -> str:
    """Search location for a scraped address.

    Priority patterns first, then the last two meaningful comma-separated
    parts, then a known-place scan, then the address itself.
    """
    if not address or not address.strip():
        return ""
    key = _key(address)

    for pattern, location in PRIORITY_PATTERNS:
        if re.search(pattern, key):
            return location

    parts = [p.strip() for p in address.split(",") if _meaningful(p.strip())]
    if len(parts) >= 2:
        return f"{parts[-2]}, {parts[-1]}"

    for fragment, location in KNOWN_PLACES:
        if fragment in key:
            return location

    return address.strip()


def location_from_url(url: str) -> str:
    path = _key(urlparse(url).path) if url else ""
    for fragments, location in URL_HINTS:
        if any(f in path for f in fragments):
            return location
    return DEFAULT_LOCATION


@dataclass
class LocationDecision:
    location: str
    source: str                          # override | url | address
    check: Optional[LocationCheck] = None
    corrected_from: Optional[str] = None
    notes: list = field(default_factory=list)


def reconcile_search_location(address: Optional[str], candidate: str, source: str) -> LocationDecision:
    """Keep ``candidate`` unless it disagrees with the scraped address."""
    if not address:
        return LocationDecision(location=candidate, source=source)

    check = verify_location_consistency(address, candidate)
    if check.confidence != "low":
        return LocationDecision(location=candidate, source=source, check=check)

    corrected = parse_real_location(address)
    if not corrected or _key(corrected) == _key(candidate):
        return LocationDecision(location=candidate, source=source, check=check)

    log.info("search location corrected from listing address",
             extra={"from": candidate, "to": corrected, "method": check.method})
    return LocationDecision(location=corrected, source="address", check=check, corrected_from=candidate)
