"""
Quality/age filter applied to every collected item.

Two independent thresholds, both inclusive: an item is kept iff its
quality score is at least the floor AND its age is at most the ceiling.
The filter does not care how a source computed ``quality_score``.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from src.ingestion.schemas import ContentItem


def passes_filter(
    item: ContentItem,
    min_quality: float,
    max_age: timedelta,
    now: datetime,
) -> bool:
    """Check a single item against the quality floor and age ceiling."""
    if item.quality_score < min_quality:
        return False
    return (now - item.timestamp) <= max_age


def filter_items(
    items: Iterable[ContentItem],
    min_quality: float,
    max_age: timedelta,
    now: datetime | None = None,
) -> list[ContentItem]:
    """
    Return the items that pass both thresholds, in input order.

    Args:
        items: Collected items (any mix of source types)
        min_quality: Quality floor in [0, 1]
        max_age: Maximum age relative to ``now``
        now: Reference time (defaults to current UTC time)

    Returns:
        Retained items
    """
    now = now or datetime.now(timezone.utc)
    return [item for item in items if passes_filter(item, min_quality, max_age, now)]
