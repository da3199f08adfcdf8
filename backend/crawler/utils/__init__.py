"""Shared utilities for the crawler."""

from .normalizers import (
    normalize_text,
    parse_price,
    parse_rating,
    parse_city,
)

__all__ = [
    'normalize_text',
    'parse_price',
    'parse_rating',
    'parse_city',
]
