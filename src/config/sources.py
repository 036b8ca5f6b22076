"""
Default source keys and per-source collection limits.

These seed the configuration store when no config file exists yet.
Keys can be changed afterwards with ``digest-pipeline set-sources``.
"""

from src.ingestion.base_collector import CollectorLimits
from src.ingestion.schemas import SourceType

# Twitter/X handles
TWITTER_ACCOUNTS = [
    "openai",
    "anthropicai",
]

# Public Telegram channels (t.me/s/<name>)
TELEGRAM_CHANNELS = [
    "telegram",
    "durov",
]

# Tech & AI feeds
TECH_FEEDS = [
    "https://techcrunch.com/feed/",
    "https://www.theverge.com/rss/index.xml",
]

# Research feeds, not enabled by default
RESEARCH_FEEDS = [
    "https://arxiv.org/rss/cs.AI",
    "https://arxiv.org/rss/cs.LG",
]

DEFAULT_SOURCE_KEYS: dict[SourceType, list[str]] = {
    SourceType.TWITTER: TWITTER_ACCOUNTS,
    SourceType.TELEGRAM: TELEGRAM_CHANNELS,
    SourceType.RSS: TECH_FEEDS,
}

# Per-fetch limits: how many items to keep and the shortest useful text
DEFAULT_LIMITS: dict[SourceType, CollectorLimits] = {
    SourceType.TWITTER: CollectorLimits(max_items=200, min_text_length=50),
    SourceType.TELEGRAM: CollectorLimits(max_items=50, min_text_length=30),
    SourceType.RSS: CollectorLimits(max_items=20, min_text_length=200),
}

# Freshness overrides for keys that update faster or slower than their type
DEFAULT_CACHE_OVERRIDES: dict[str, float] = {
    "twitter:breakingnews": 2.0,
    "telegram:cryptonews": 3.0,
    "rss:https://arxiv.org/rss/cs.AI": 12.0,
}


def get_default_source_keys() -> dict[SourceType, list[str]]:
    """Fresh copy of the default keys, safe for callers to mutate."""
    return {source: list(keys) for source, keys in DEFAULT_SOURCE_KEYS.items()}
