"""Content ingestion - collectors, schemas, and the quality/age filter."""

from src.ingestion.base_collector import BaseCollector, CollectorError, CollectorLimits
from src.ingestion.filters import filter_items, passes_filter
from src.ingestion.mock_collector import MockCollector, create_mock_collectors
from src.ingestion.rss_collector import RssCollector
from src.ingestion.schemas import (
    CacheRecord,
    ContentItem,
    EngagementMetrics,
    SourceType,
)
from src.ingestion.telegram_collector import TelegramCollector
from src.ingestion.twitter_collector import TwitterCollector

__all__ = [
    "BaseCollector",
    "CacheRecord",
    "CollectorError",
    "CollectorLimits",
    "ContentItem",
    "EngagementMetrics",
    "MockCollector",
    "RssCollector",
    "SourceType",
    "TelegramCollector",
    "TwitterCollector",
    "create_mock_collectors",
    "filter_items",
    "passes_filter",
]
