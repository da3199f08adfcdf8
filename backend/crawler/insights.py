"""
Post-run insights over a batch of listings.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .base import ListingRecord
from .utils.normalizers import parse_city

RULE = "=" * 60
THIN_RULE = "-" * 60


@dataclass
class Insights:
    total: int = 0
    average_price: float = 0.0
    min_price: float = 0.0
    max_price: float = 0.0
    most_expensive: Optional[ListingRecord] = None
    per_location: List[Tuple[str, int]] = field(default_factory=list)
    top_rated: List[ListingRecord] = field(default_factory=list)
    platform_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'total': self.total,
            'average_price': round(self.average_price, 2),
            'min_price': self.min_price,
            'max_price': self.max_price,
            'most_expensive': self.most_expensive.to_dict() if self.most_expensive else None,
            'per_location': [{'location': loc, 'count': count} for loc, count in self.per_location],
            'top_rated': [r.to_dict() for r in self.top_rated],
            'platform_counts': dict(self.platform_counts),
        }


def compute_insights(records: Sequence[ListingRecord], top: int = 5) -> Insights:
    """
    Aggregate price, location, rating and platform statistics.

    Locations are grouped by city (see parse_city) and sorted by count,
    highest first. Ties keep first-seen order.
    """
    if not records:
        return Insights()

    prices = [r.price for r in records]
    most_expensive = records[0]
    for record in records[1:]:
        if record.price > most_expensive.price:
            most_expensive = record

    cities = Counter(parse_city(r.location) or r.location for r in records)

    return Insights(
        total=len(records),
        average_price=sum(prices) / len(records),
        min_price=min(prices),
        max_price=max(prices),
        most_expensive=most_expensive,
        per_location=cities.most_common(),
        top_rated=sorted(records, key=lambda r: r.rating, reverse=True)[:top],
        platform_counts=dict(Counter(r.platform for r in records)),
    )


def format_report(insights: Insights) -> str:
    """Render insights as a plain-text report."""
    if not insights.total:
        return "No listings scraped."

    lines = [
        RULE,
        "SCRAPING INSIGHTS REPORT".center(60),
        RULE,
        "",
        "SUMMARY STATISTICS",
        THIN_RULE,
        f"  {'Total Listings Scraped:':<25}{insights.total}",
    ]
    for platform, count in sorted(insights.platform_counts.items()):
        lines.append(f"  {platform + ' Listings:':<25}{count}")
    lines += [
        f"  {'Average Price:':<25}${insights.average_price:.2f}",
        f"  {'Minimum Price:':<25}${insights.min_price:.0f}",
        f"  {'Maximum Price:':<25}${insights.max_price:.0f}",
    ]

    top = insights.most_expensive
    if top is not None:
        lines += [
            "",
            "MOST EXPENSIVE PROPERTY",
            THIN_RULE,
            f"  {'Title:':<25}{top.title}",
            f"  {'Price:':<25}${top.price:.0f}",
            f"  {'Location:':<25}{top.location}",
        ]

    lines += ["", "LISTINGS PER LOCATION", THIN_RULE]
    lines += [f"  {location + ':':<40} {count}" for location, count in insights.per_location]

    lines += ["", f"TOP {len(insights.top_rated)} HIGHEST RATED PROPERTIES", THIN_RULE]
    for i, record in enumerate(insights.top_rated, 1):
        lines.append(f"  {i}. {record.title}")
        lines.append(f"     Rating: {record.rating:.2f}  Price: ${record.price:.0f}  Location: {record.location}")

    lines.append(RULE)
    return "\n".join(lines)
