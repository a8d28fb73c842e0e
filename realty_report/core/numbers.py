"""Locale-aware number parsing for Chilean listing and bank strings.

Portals and bank simulators mix conventions: ``"6.900"`` is six thousand nine
hundred, ``"6,5"`` is six and a half and ``"1.234.567,89"`` uses both
separators. Every price, rent and payment in the project is read through
``parse_locale_number`` so the rules live in one place.
"""

from __future__ import annotations

import re

_NUMERIC = re.compile(r"^\d+(\.\d+)?$")
_MARKERS = re.compile(r"UF|CLP|\$|\s", re.IGNORECASE)
_LEADING = re.compile(r"^\s*(\d+(?:[.,]\d+)*)")


def parse_locale_number(text) -> float | None:
    """Parse a locale-formatted amount. Returns ``None`` when not numeric.

    - a single ``.`` followed by exactly three digits is a thousands separator
    - a ``.`` followed by one or two digits is a decimal point
    - several ``.`` are thousands separators
    - with both ``.`` and ``,`` present, ``.`` is thousands and ``,`` decimal
    - a lone ``,`` is a decimal point
    """
    if text is None:
        return None
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)

    cleaned = _MARKERS.sub("", str(text))
    if not cleaned:
        return None

    if "." in cleaned and "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif "." in cleaned:
        parts = cleaned.split(".")
        if len(parts) > 2:
            cleaned = "".join(parts)
        elif len(parts[1]) == 3:
            cleaned = parts[0] + parts[1]
        # one, two or four+ digits after the dot: already a decimal
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")

    if not _NUMERIC.match(cleaned):
        return None
    return float(cleaned)


def parse_amount(text) -> float:
    """Like ``parse_locale_number`` but 0.0 on failure, for summing cost items."""
    value = parse_locale_number(text)
    return value if value is not None else 0.0


def extract_leading_number(text) -> float | None:
    """Leading number of a descriptive string: "2,5 baños" -> 2.5, "184 m2" -> 184."""
    if text is None:
        return None
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)
    match = _LEADING.match(str(text))
    if not match:
        return None
    return parse_locale_number(match.group(1))


def extract_marked_amount(text, marker: str) -> float | None:
    """Amount that follows ``marker`` inside a mixed string.

    ``extract_marked_amount("UF 2,98 (equivale a $116.920)", "$")`` is 116920
    and with ``"UF"`` it is 2.98.
    """
    if not text:
        return None
    match = re.search(re.escape(marker) + r"\s*(\d[\d.,]*\d|\d)", str(text), re.IGNORECASE)
    if not match:
        return None
    return parse_locale_number(match.group(1))
