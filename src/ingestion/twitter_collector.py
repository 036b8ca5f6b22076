"""
Twitter API v2 collector.

Each SourceKey is an account handle. Fetches the account's recent
original tweets (no retweets or replies) from the user timeline
endpoint, paginating until the per-fetch item limit is reached.
"""

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import httpx

from src.ingestion.base_collector import BaseCollector, CollectorLimits, clean_text
from src.ingestion.schemas import ContentItem, EngagementMetrics, SourceType

logger = logging.getLogger(__name__)

TWITTER_API_BASE = "https://api.twitter.com/2"


def score_tweet(tweet: dict[str, Any], user: dict[str, Any]) -> float:
    """Heuristic tweet quality in [0, 1] from content, author, and engagement."""
    score = 0.5
    text = tweet.get("text", "").lower()
    entities = tweet.get("entities", {})
    hashtags = entities.get("hashtags", [])

    if entities.get("urls"):
        score += 0.1
    if 0 < len(hashtags) <= 3:
        score += 0.1
    if "?" in text:
        score += 0.05
    if tweet.get("context_annotations"):
        score += 0.1
    if "follow me" in text:
        score -= 0.2
    if "dm me" in text:
        score -= 0.1
    if len(hashtags) > 5:
        score -= 0.2

    followers = user.get("public_metrics", {}).get("followers_count", 0)
    if user.get("verified"):
        score += 0.1
    if followers > 10_000:
        score += 0.1
    if followers > 100_000:
        score += 0.1

    metrics = tweet.get("public_metrics", {})
    engagement = (
        metrics.get("like_count", 0)
        + metrics.get("retweet_count", 0) * 2
        + metrics.get("reply_count", 0) * 1.5
        + metrics.get("quote_count", 0) * 3
    )
    score += min(engagement / max(followers * 0.01, 1), 0.2)

    return max(0.0, min(1.0, score))


class TwitterCollector(BaseCollector):
    """
    Collector for account timelines via the Twitter API v2.

    Rate Limits:
        The timeline endpoint allows a small number of requests per
        15-minute window on basic tiers, so the default is conservative.
    """

    def __init__(
        self,
        bearer_token: str,
        rate_limit: int = 30,
        max_pages: int = 2,
        timeout: float = 30.0,
    ):
        """
        Initialize Twitter collector.

        Args:
            bearer_token: Twitter API bearer token
            rate_limit: Requests per minute
            max_pages: Timeline pages fetched per key
            timeout: HTTP timeout in seconds
        """
        super().__init__(rate_limit=rate_limit)
        self._bearer_token = bearer_token
        self._max_pages = max_pages
        self._timeout = timeout

    @property
    def source_type(self) -> SourceType:
        return SourceType.TWITTER

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._bearer_token}",
            "User-Agent": "DigestPipeline/1.0",
        }

    async def _get(self, client: httpx.AsyncClient, path: str, **params: Any) -> dict:
        await self._rate_limiter.acquire()
        response = await client.get(
            f"{TWITTER_API_BASE}{path}", headers=self._headers(), params=params
        )
        response.raise_for_status()
        return response.json()

    async def _fetch_raw(
        self, key: str, limits: CollectorLimits
    ) -> AsyncIterator[dict[str, Any]]:
        """Resolve the handle, then page through its timeline."""
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            lookup = await self._get(
                client,
                f"/users/by/username/{key.lstrip('@')}",
                **{"user.fields": "public_metrics,verified"},
            )
            user = lookup.get("data")
            if not user:
                raise ValueError(f"Unknown Twitter account: {key}")

            params: dict[str, Any] = {
                "max_results": max(5, min(limits.max_items, 100)),
                "exclude": "retweets,replies",
                "tweet.fields": "created_at,public_metrics,entities,context_annotations",
            }
            for _ in range(self._max_pages):
                data = await self._get(client, f"/users/{user['id']}/tweets", **params)
                for tweet in data.get("data", []):
                    yield {"tweet": tweet, "user": user}

                next_token = data.get("meta", {}).get("next_token")
                if not next_token:
                    break
                params["pagination_token"] = next_token

    def _transform(self, raw: dict[str, Any], key: str) -> ContentItem | None:
        """Transform a timeline tweet to a ContentItem."""
        try:
            tweet = raw["tweet"]
            user = raw["user"]
            text = clean_text(tweet.get("text", ""))
            if not text:
                return None

            metrics = tweet.get("public_metrics", {})
            username = user.get("username", key.lstrip("@"))
            return ContentItem(
                id=tweet["id"],
                source_type=SourceType.TWITTER,
                source_key=key,
                url=f"https://twitter.com/{username}/status/{tweet['id']}",
                timestamp=datetime.fromisoformat(tweet["created_at"].replace("Z", "+00:00")),
                text=text,
                author=username,
                quality_score=score_tweet(tweet, user),
                engagement=EngagementMetrics(
                    likes=metrics.get("like_count", 0),
                    shares=metrics.get("retweet_count", 0) + metrics.get("quote_count", 0),
                    comments=metrics.get("reply_count", 0),
                    views=metrics.get("impression_count"),
                ),
                metadata={
                    "author_name": user.get("name"),
                    "author_followers": user.get("public_metrics", {}).get("followers_count"),
                },
            )

        except (KeyError, ValueError) as e:
            logger.debug(f"Failed to transform tweet from {key}: {e}")
            return None
