"""
Mock collector for testing and development.

Generates synthetic tech/AI content that mimics social posts, channel
messages, and feed articles. Useful for:
- Running the pipeline without source credentials
- Exercising the cache and filter paths
- Simulating per-key failures
"""

import random
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from typing import Any

from src.ingestion.base_collector import (
    BaseCollector,
    CollectorLimits,
    clean_text,
    stable_hash,
)
from src.ingestion.schemas import ContentItem, EngagementMetrics, SourceType

TOPICS = [
    "open-weight models",
    "GPU supply",
    "agent frameworks",
    "inference pricing",
    "AI regulation",
    "on-device models",
    "developer tooling",
]

POST_TEMPLATES = [
    "Big week for {topic}: three launches and a pricing change nobody expected.",
    "Thread on {topic} and why the benchmarks are misleading this quarter.",
    "We shipped a new release focused on {topic}. Changelog and numbers inside.",
    "Hot take: {topic} is where the real margin is moving in 2025.",
    "Notes from the {topic} meetup. Lots of skepticism about current evals.",
]

ARTICLE_TEMPLATES = [
    "Inside the race for {topic}",
    "What the latest {topic} announcement means for startups",
    "Analysis: {topic} is reshaping the cloud market",
    "The quiet consolidation of {topic}",
]

LOW_QUALITY_TEMPLATES = [
    "gm",
    "{topic}??",
    "lol {topic}",
    "follow for more {topic} alpha",
]

SAMPLE_AUTHORS = [
    "research_lab",
    "infra_weekly",
    "ml_engineer_ana",
    "vc_notes",
    "random_account_42",
]


class MockCollector(BaseCollector):
    """
    Mock collector that generates synthetic items for any SourceKey.

    Keys listed in ``failing_keys`` raise, which exercises per-key
    failure isolation in the orchestrator.
    """

    def __init__(
        self,
        source_type: SourceType = SourceType.TWITTER,
        items_per_fetch: int = 10,
        failing_keys: set[str] | None = None,
        max_age_hours: int = 36,
        seed: int | None = None,
        rate_limit: int = 600,
    ):
        """
        Initialize mock collector.

        Args:
            source_type: Which source type to mimic
            items_per_fetch: Number of items to generate per key
            failing_keys: Keys whose fetch raises
            max_age_hours: Items are timestamped within this many hours
            seed: Seed for reproducible output
            rate_limit: Rate limit (kept for interface parity)
        """
        super().__init__(rate_limit=rate_limit)
        self._source_type = source_type
        self._items_per_fetch = items_per_fetch
        self._failing_keys = set(failing_keys or ())
        self._max_age_hours = max_age_hours
        self._random = random.Random(seed)
        self._counter = 0
        self.fetch_calls: list[str] = []

    @property
    def source_type(self) -> SourceType:
        return self._source_type

    async def _fetch_raw(
        self, key: str, limits: CollectorLimits
    ) -> AsyncIterator[dict[str, Any]]:
        """Generate mock raw data for one key."""
        self.fetch_calls.append(key)
        await self._rate_limiter.acquire()

        if key in self._failing_keys:
            raise ConnectionError(f"mock origin unavailable for {key}")

        now = datetime.now(timezone.utc)
        for _ in range(self._items_per_fetch):
            self._counter += 1
            topic = self._random.choice(TOPICS)

            # Roughly 25% low quality
            low_quality = self._random.random() < 0.25
            if low_quality:
                template = self._random.choice(LOW_QUALITY_TEMPLATES)
                quality = round(self._random.uniform(0.05, 0.45), 2)
            elif self._source_type == SourceType.RSS:
                template = self._random.choice(ARTICLE_TEMPLATES)
                quality = round(self._random.uniform(0.6, 0.95), 2)
            else:
                template = self._random.choice(POST_TEMPLATES)
                quality = round(self._random.uniform(0.5, 0.95), 2)

            timestamp = now - timedelta(
                hours=self._random.randint(0, self._max_age_hours),
                minutes=self._random.randint(0, 59),
            )

            yield {
                "id": f"mock_{self._counter}",
                "text": template.format(topic=topic),
                "author": self._random.choice(SAMPLE_AUTHORS),
                "timestamp": timestamp.isoformat(),
                "quality_score": quality,
                "topic": topic,
                "likes": self._random.randint(0, 400),
                "shares": self._random.randint(0, 80),
                "comments": self._random.randint(0, 40),
                "views": self._random.randint(100, 20_000),
            }

    def _transform(self, raw: dict[str, Any], key: str) -> ContentItem | None:
        """Transform mock raw data to ContentItem."""
        try:
            text = clean_text(raw["text"])
            if not text:
                return None

            url = None
            title = None
            if self._source_type == SourceType.RSS:
                title = text
                url = f"{key.rstrip('/')}/articles/{stable_hash(raw['id'] + text)}"
            elif self._source_type == SourceType.TWITTER:
                url = f"https://twitter.com/{key}/status/{raw['id']}"
            else:
                url = f"https://t.me/{key}/{raw['id']}"

            engagement = EngagementMetrics(
                likes=raw.get("likes", 0),
                shares=raw.get("shares", 0),
                comments=raw.get("comments", 0),
                views=raw.get("views") if self._source_type == SourceType.TELEGRAM else None,
            )

            return ContentItem(
                id=raw["id"],
                source_type=self._source_type,
                source_key=key,
                url=url,
                timestamp=datetime.fromisoformat(raw["timestamp"]),
                text=text,
                title=title,
                author=raw.get("author"),
                quality_score=raw["quality_score"],
                engagement=engagement,
                metadata={"topic": raw.get("topic")},
            )

        except (KeyError, ValueError):
            return None

    async def health_check(self) -> bool:
        """Mock collector is always healthy."""
        return True


def create_mock_collectors(
    items_per_fetch: int = 10,
    seed: int | None = None,
) -> dict[SourceType, MockCollector]:
    """
    Create mock collectors for all source types.

    Args:
        items_per_fetch: Number of items each collector generates per key
        seed: Seed shared by all collectors

    Returns:
        Dictionary mapping SourceType to MockCollector
    """
    return {
        SourceType.TWITTER: MockCollector(
            source_type=SourceType.TWITTER,
            items_per_fetch=items_per_fetch,
            seed=seed,
        ),
        SourceType.TELEGRAM: MockCollector(
            source_type=SourceType.TELEGRAM,
            items_per_fetch=items_per_fetch,
            seed=seed,
        ),
        SourceType.RSS: MockCollector(
            source_type=SourceType.RSS,
            items_per_fetch=max(1, items_per_fetch // 2),  # Lower volume
            seed=seed,
        ),
    }
