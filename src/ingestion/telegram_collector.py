"""
Telegram public channel collector.

Each SourceKey is a public channel username. Messages are read from the
channel's public web preview (``https://t.me/s/<channel>``), which needs
no API credentials.
"""

import logging
import re
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import httpx
from bs4 import BeautifulSoup

from src.ingestion.base_collector import BaseCollector, CollectorLimits, clean_text
from src.ingestion.schemas import ContentItem, EngagementMetrics, SourceType

logger = logging.getLogger(__name__)

TELEGRAM_BASE_URL = "https://t.me"


def parse_count(text: str | None) -> int:
    """Parse counters like '1.2K' or '3M' into integers."""
    if not text:
        return 0
    match = re.match(r"([\d.]+)\s*([KM]?)", text.strip().upper())
    if not match:
        return 0
    value = float(match.group(1))
    return int(value * {"K": 1_000, "M": 1_000_000}.get(match.group(2), 1))


def score_message(text: str, links: int, views: int, has_media: bool) -> float:
    """Heuristic message quality in [0, 1] from length, links, and reach."""
    score = 0.5
    lowered = text.lower()
    words = len(lowered.split())

    if words >= 10:
        score += 0.1
    if words >= 50:
        score += 0.1
    if words > 200:
        score -= 0.1
    if 0 < links <= 3:
        score += 0.1
    if has_media:
        score += 0.05
    if "?" in lowered:
        score += 0.05
    if views > 100:
        score += 0.1
    if views > 1000:
        score += 0.1
    if views > 10_000:
        score += 0.1
    if "subscribe" in lowered and "channel" in lowered:
        score -= 0.2
    if len(re.findall(r"[@#]\w+", lowered)) > 5:
        score -= 0.1
    if links > 5:
        score -= 0.2

    return max(0.0, min(1.0, score))


class TelegramCollector(BaseCollector):
    """Collector for public Telegram channels via their web preview."""

    def __init__(
        self,
        rate_limit: int = 20,
        base_url: str = TELEGRAM_BASE_URL,
        timeout: float = 30.0,
    ):
        """
        Initialize Telegram collector.

        Args:
            rate_limit: Requests per minute
            base_url: Web preview host
            timeout: HTTP timeout in seconds
        """
        super().__init__(rate_limit=rate_limit)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def source_type(self) -> SourceType:
        return SourceType.TELEGRAM

    async def _fetch_raw(
        self, key: str, limits: CollectorLimits
    ) -> AsyncIterator[dict[str, Any]]:
        """Fetch the channel preview page and yield its messages, newest first."""
        await self._rate_limiter.acquire()

        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            response = await client.get(
                f"{self._base_url}/s/{key}",
                headers={"User-Agent": "Mozilla/5.0 (compatible; DigestPipeline/1.0)"},
            )
            response.raise_for_status()

        soup = BeautifulSoup(response.text, "html.parser")
        messages = soup.select(".tgme_widget_message")
        if not messages and not soup.select_one(".tgme_channel_info"):
            raise ValueError(f"No public preview for channel {key}")

        for element in reversed(messages):
            text_el = element.select_one(".tgme_widget_message_text")
            time_el = element.select_one(".tgme_widget_message_date time")
            author_el = element.select_one(".tgme_widget_message_from_author")
            views_el = element.select_one(".tgme_widget_message_views")
            yield {
                "post": element.get("data-post", ""),
                "text": text_el.get_text(separator=" ") if text_el else "",
                "links": len(text_el.select("a[href]")) if text_el else 0,
                "datetime": time_el.get("datetime") if time_el else None,
                "author": author_el.get_text() if author_el else None,
                "views": parse_count(views_el.get_text() if views_el else None),
                "has_media": element.select_one(
                    ".tgme_widget_message_photo_wrap, .tgme_widget_message_video"
                ) is not None,
            }

    def _transform(self, raw: dict[str, Any], key: str) -> ContentItem | None:
        """Transform a scraped message to a ContentItem."""
        text = clean_text(raw.get("text", ""))
        post = raw.get("post", "")
        if not text or not post or not raw.get("datetime"):
            return None

        try:
            timestamp = datetime.fromisoformat(raw["datetime"])
        except ValueError:
            return None

        message_id = post.rsplit("/", 1)[-1]
        return ContentItem(
            id=f"{key}_{message_id}",
            source_type=SourceType.TELEGRAM,
            source_key=key,
            url=f"{self._base_url}/{post}",
            timestamp=timestamp,
            text=text,
            author=clean_text(raw["author"]) if raw.get("author") else key,
            quality_score=score_message(
                text, raw.get("links", 0), raw.get("views", 0), raw.get("has_media", False)
            ),
            engagement=EngagementMetrics(views=raw.get("views", 0)),
            metadata={"has_media": raw.get("has_media", False)},
        )
