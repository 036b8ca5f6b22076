"""
RSS/Atom feed collector.

Each SourceKey is a feed URL. Handles:
- RSS/Atom feed parsing (feedparser)
- HTML content extraction and cleaning (BeautifulSoup)
- A metadata-based quality score per article
"""

import html
import logging
import re
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import feedparser
import httpx
from bs4 import BeautifulSoup

from src.ingestion.base_collector import (
    BaseCollector,
    CollectorLimits,
    clean_text,
    stable_hash,
)
from src.ingestion.schemas import ContentItem, SourceType

logger = logging.getLogger(__name__)

USER_AGENT = "DigestPipeline/1.0 (RSS Reader)"


def clean_html_content(html_content: str) -> str:
    """
    Extract clean text from HTML content.

    Args:
        html_content: Raw HTML string

    Returns:
        Clean text content
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style", "nav", "footer", "header"]):
        element.decompose()

    text = html.unescape(soup.get_text(separator=" "))
    return re.sub(r"\s+", " ", text).strip()


def score_article(
    title: str,
    content: str,
    link: str,
    author: str | None,
    has_date: bool,
    categories: list[str],
) -> float:
    """Heuristic article quality in [0, 1] from completeness and length."""
    score = 0.5
    words = len(content.split())
    lowered = title.lower()

    if author:
        score += 0.1
    if has_date:
        score += 0.1
    if categories:
        score += 0.1
    if words > 300:
        score += 0.1
    if words > 1000:
        score += 0.1
    if words < 100:
        score -= 0.2
    if "?" in lowered:
        score += 0.05
    if 50 < len(title) < 100:
        score += 0.05
    if "advertisement" in lowered or "sponsored" in lowered:
        score -= 0.3
    if "ads." in link or "promo." in link:
        score -= 0.2

    return max(0.0, min(1.0, score))


class RssCollector(BaseCollector):
    """
    Feed collector for RSS and Atom sources.

    Polling cadence is driven by the cache: a feed is only requested
    when its cache record is stale.
    """

    def __init__(self, rate_limit: int = 60, timeout: float = 30.0):
        """
        Initialize RSS collector.

        Args:
            rate_limit: Requests per minute
            timeout: HTTP timeout in seconds
        """
        super().__init__(rate_limit=rate_limit)
        self._timeout = timeout

    @property
    def source_type(self) -> SourceType:
        return SourceType.RSS

    async def _fetch_raw(
        self, key: str, limits: CollectorLimits
    ) -> AsyncIterator[dict[str, Any]]:
        """Fetch one feed and yield its entries."""
        await self._rate_limiter.acquire()

        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            response = await client.get(key, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()

        feed = feedparser.parse(response.text)
        entries = feed.get("entries", [])
        if feed.get("bozo") and not entries:
            raise ValueError(f"Unparseable feed: {feed.get('bozo_exception')}")

        logger.debug(f"Fetched {len(entries)} entries from {key}")
        for entry in entries:
            yield {"entry": entry, "feed_title": feed.get("feed", {}).get("title")}

    def _transform(self, raw: dict[str, Any], key: str) -> ContentItem | None:
        """Transform a feed entry to a ContentItem."""
        try:
            entry = raw["entry"]
            title = clean_text(entry.get("title", ""))
            if not title:
                return None

            content = ""
            if entry.get("content"):
                content = entry["content"][0].get("value", "")
            elif "summary" in entry:
                content = entry.get("summary", "")
            content = clean_text(clean_html_content(content)) or title

            timestamp = self._parse_timestamp(entry)
            link = entry.get("link") or None
            author = entry.get("author") or raw.get("feed_title")
            categories = [t.get("term", "") for t in entry.get("tags", []) if t.get("term")]

            return ContentItem(
                id=self._get_entry_id(entry),
                source_type=SourceType.RSS,
                source_key=key,
                url=link,
                timestamp=timestamp or datetime.now(timezone.utc),
                text=content,
                title=title,
                author=author,
                quality_score=score_article(
                    title, content, link or "", entry.get("author"),
                    timestamp is not None, categories,
                ),
                metadata={
                    "feed_title": raw.get("feed_title"),
                    "categories": categories,
                    "word_count": len(content.split()),
                },
            )

        except Exception as e:
            logger.debug(f"Failed to transform feed entry from {key}: {e}")
            return None

    def _parse_timestamp(self, entry: dict[str, Any]) -> datetime | None:
        """Parse timestamp from a feed entry."""
        for field in ["published", "updated", "created"]:
            if field in entry:
                try:
                    return parsedate_to_datetime(entry[field])
                except (TypeError, ValueError):
                    pass

            parsed_field = f"{field}_parsed"
            if entry.get(parsed_field):
                try:
                    return datetime.fromtimestamp(
                        time.mktime(entry[parsed_field]),
                        tz=timezone.utc,
                    )
                except (TypeError, ValueError, OverflowError):
                    pass

        return None

    def _get_entry_id(self, entry: dict[str, Any]) -> str:
        """Stable ID from the entry's id, guid, or link."""
        for field in ["id", "guid", "link"]:
            if entry.get(field):
                return stable_hash(str(entry[field]))
        return stable_hash(entry.get("title", ""))
