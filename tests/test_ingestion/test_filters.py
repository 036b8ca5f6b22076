"""Tests for the quality/age filter."""

from datetime import datetime, timedelta, timezone

from src.ingestion.filters import filter_items, passes_filter
from src.ingestion.schemas import SourceType

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestFilterItems:
    """Tests for filter_items."""

    def test_quality_and_age_example(self, make_item):
        """q:0.9/1h and q:0.8/2h survive; q:0.5/30h is dropped."""
        high = make_item(quality=0.9, age=timedelta(hours=1))
        low = make_item(quality=0.5, age=timedelta(hours=30))
        good = make_item(quality=0.8, age=timedelta(hours=2))

        retained = filter_items(
            [high, low, good], min_quality=0.7, max_age=timedelta(hours=24), now=FIXED_NOW
        )

        assert retained == [high, good]

    def test_low_quality_excluded_even_when_recent(self, make_item):
        item = make_item(quality=0.5, age=timedelta(minutes=5))
        assert filter_items([item], 0.7, timedelta(hours=24), now=FIXED_NOW) == []

    def test_old_item_excluded_even_when_high_quality(self, make_item):
        item = make_item(quality=1.0, age=timedelta(hours=25))
        assert filter_items([item], 0.7, timedelta(hours=24), now=FIXED_NOW) == []

    def test_preserves_input_order_across_sources(self, make_item):
        items = [
            make_item(source_type=SourceType.RSS, source_key="https://a.example/feed"),
            make_item(source_type=SourceType.TWITTER),
            make_item(source_type=SourceType.TELEGRAM, source_key="durov"),
        ]
        assert filter_items(items, 0.5, timedelta(hours=24), now=FIXED_NOW) == items

    def test_empty_input(self):
        assert filter_items([], 0.7, timedelta(hours=24), now=FIXED_NOW) == []


class TestBoundaries:
    """Both thresholds are inclusive."""

    def test_quality_equal_to_floor_is_kept(self, make_item):
        item = make_item(quality=0.7)
        assert passes_filter(item, 0.7, timedelta(hours=24), FIXED_NOW) is True

    def test_quality_just_below_floor_is_dropped(self, make_item):
        item = make_item(quality=0.69)
        assert passes_filter(item, 0.7, timedelta(hours=24), FIXED_NOW) is False

    def test_age_equal_to_ceiling_is_kept(self, make_item):
        item = make_item(age=timedelta(hours=24))
        assert passes_filter(item, 0.7, timedelta(hours=24), FIXED_NOW) is True

    def test_age_past_ceiling_is_dropped(self, make_item):
        item = make_item(age=timedelta(hours=24, seconds=1))
        assert passes_filter(item, 0.7, timedelta(hours=24), FIXED_NOW) is False

    def test_zero_floor_keeps_zero_quality(self, make_item):
        item = make_item(quality=0.0)
        assert passes_filter(item, 0.0, timedelta(hours=24), FIXED_NOW) is True
