"""Pytest fixtures for digest-pipeline tests."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from src.config.settings import Settings
from src.ingestion.schemas import ContentItem, EngagementMetrics, SourceType

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for cache and pipeline tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings configured for testing: in-memory backends, no credentials."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        cache_backend="memory",
        storage_backend="memory",
        config_store_path=tmp_path / "pipeline_config.json",
        twitter_bearer_token=None,
        synthesis_url=None,
        slack_webhook_url=None,
        twitter_post_token=None,
        ops_slack_webhook_url=None,
        notification_timeout_seconds=1.0,
    )


@pytest.fixture
def mock_metrics() -> MagicMock:
    """Stand-in MetricsCollector so tests don't touch the global registry."""
    return MagicMock()


@pytest.fixture
def make_item() -> Callable[..., ContentItem]:
    """Factory for ContentItems with sensible defaults."""
    counter = {"n": 0}

    def _make(
        source_type: SourceType = SourceType.TWITTER,
        source_key: str = "openai",
        quality: float = 0.8,
        age: timedelta = timedelta(hours=1),
        item_id: str | None = None,
        url: str | None = None,
        text: str = "New model release with better reasoning and lower latency",
        likes: int = 10,
        now: datetime = NOW,
    ) -> ContentItem:
        counter["n"] += 1
        return ContentItem(
            id=item_id or f"item_{counter['n']}",
            source_type=source_type,
            source_key=source_key,
            url=url,
            timestamp=now - age,
            text=text,
            title=text[:40] if source_type == SourceType.RSS else None,
            quality_score=quality,
            engagement=EngagementMetrics(likes=likes),
        )

    return _make
