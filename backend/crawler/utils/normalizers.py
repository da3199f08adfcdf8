"""
Data normalization utilities for the crawler.

These functions turn raw text read from a page into typed values.
Malformed or empty input never raises; it normalizes to a zero value.
"""

import math
import re
import unicodedata


def normalize_text(text: str) -> str:
    """
    Collapse runs of whitespace and strip.

    Examples:
        "  Cozy\\n  loft " -> "Cozy loft"
    """
    if not text:
        return ""
    return re.sub(r'\s+', ' ', text).strip()


def _to_float(text: str) -> float:
    try:
        value = float(text)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def parse_price(price_text: str) -> float:
    """
    Parse a price, stripping currency symbols and thousands separators.

    Examples:
        $120 -> 120.0
        $1,234.50 -> 1234.5
        € 99 -> 99.0
        '' -> 0.0
        'n/a' -> 0.0
    """
    if not price_text:
        return 0.0
    cleaned = ''.join(
        ch for ch in price_text
        if unicodedata.category(ch) != 'Sc' and ch != ',' and not ch.isspace()
    )
    return _to_float(cleaned)


def parse_rating(rating_text: str) -> float:
    """
    Parse a bare float rating.

    Examples:
        4.92 -> 4.92
        ' 5.0 ' -> 5.0
        'New' -> 0.0
    """
    if not rating_text:
        return 0.0
    return _to_float(rating_text.strip())


def parse_city(location: str) -> str:
    """
    Extract the city from a comma-separated location.

    The city is the second-to-last part when there are at least two.

    Examples:
        "Trastevere, Rome, Italy" -> "Rome"
        "Paris, France" -> "Paris"
        "Lisbon" -> "Lisbon"
    """
    parts = [part.strip() for part in (location or '').split(',')]
    if len(parts) >= 2:
        return parts[-2]
    return parts[0]
