"""Distribution channel implementations for digest publishing.

Provides an ABC for distribution channels plus concrete implementations
for Slack and Twitter/X. A CircuitBreaker decorator wraps any channel
to stop hammering a downstream service that keeps failing.

Channels never raise: every failure comes back as an unsuccessful
DistributionResult.
"""

import enum
import logging
import time
from abc import ABC, abstractmethod

import httpx

from src.distribution.schemas import DigestView, DistributionResult

logger = logging.getLogger(__name__)

TWEET_MAX_LENGTH = 280
TWITTER_API_URL = "https://api.twitter.com/2/tweets"


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


class DistributionChannel(ABC):
    """Abstract base for digest distribution channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel (e.g. 'slack', 'twitter')."""

    @abstractmethod
    async def send(self, view: DigestView) -> DistributionResult:
        """Publish a digest through this channel.

        Args:
            view: Digest rendering input.

        Returns:
            DistributionResult; failures are reported, not raised.
        """

    def _failure(self, error: str) -> DistributionResult:
        return DistributionResult(platform=self.name, success=False, error=error)


class SlackDigestChannel(DistributionChannel):
    """Posts digests to a Slack channel via incoming webhook.

    Formats the digest using Slack Block Kit. Creates a new
    ``httpx.AsyncClient`` per call.
    """

    def __init__(
        self,
        webhook_url: str,
        channel: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "slack"

    def _format_message(self, view: DigestView) -> dict:
        """Build Slack Block Kit payload from a digest view."""
        blocks: list[dict] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": truncate(view.title, 150)},
            },
        ]
        if view.summary:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": truncate(view.summary, 3000)},
            })
        if view.key_insights:
            insights = "\n".join(f"• {insight}" for insight in view.key_insights)
            blocks.append({
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": truncate(f"*Key insights*\n{insights}", 3000),
                },
            })
        blocks.append({
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": (
                        f"*Topics:* {', '.join(view.trending_topics) or 'n/a'} | "
                        f"*Sources:* {view.sources_count} | "
                        f"*Confidence:* {view.confidence_score:.0%}"
                    ),
                },
            ],
        })

        payload: dict = {"text": view.title, "blocks": blocks}
        if self._channel:
            payload["channel"] = self._channel
        return payload

    async def send(self, view: DigestView) -> DistributionResult:
        payload = self._format_message(view)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._webhook_url, json=payload)
                if resp.is_success:
                    return DistributionResult(platform=self.name, success=True)
                logger.warning(
                    "Slack webhook returned %d for digest %s",
                    resp.status_code, view.digest_id,
                )
                return self._failure(f"HTTP {resp.status_code}")
        except httpx.TimeoutException:
            logger.warning("Slack webhook timed out for digest %s", view.digest_id)
            return self._failure("timeout")
        except Exception as e:
            logger.warning(
                "Slack webhook failed for digest %s: %s", view.digest_id, e,
            )
            return self._failure(str(e))


class TwitterDigestChannel(DistributionChannel):
    """Posts digests to X/Twitter through the v2 ``POST /2/tweets`` endpoint.

    ``tweet_format="summary"`` posts a single tweet. ``"thread"`` posts
    the summary tweet and chains one reply per key insight, followed by
    a trending-topics tweet. The result URL points at the first tweet.
    """

    def __init__(
        self,
        bearer_token: str,
        tweet_format: str = "thread",
        api_url: str = TWITTER_API_URL,
        timeout: float = 10.0,
        max_thread_length: int = 8,
    ) -> None:
        if tweet_format not in ("summary", "thread"):
            raise ValueError(f"Unknown tweet format: {tweet_format}")
        self._bearer_token = bearer_token
        self._tweet_format = tweet_format
        self._api_url = api_url
        self._timeout = timeout
        self._max_thread_length = max_thread_length

    @property
    def name(self) -> str:
        return "twitter"

    def _format_tweets(self, view: DigestView) -> list[str]:
        """Render the digest as a list of tweet texts, first tweet first."""
        head = truncate(f"{view.title}\n\n{view.summary}", TWEET_MAX_LENGTH)
        if self._tweet_format == "summary":
            return [head]

        tweets = [head]
        for i, insight in enumerate(view.key_insights, start=1):
            tweets.append(truncate(f"{i}/ {insight}", TWEET_MAX_LENGTH))
        if view.trending_topics:
            tags = " ".join(
                f"#{topic.replace(' ', '')}" for topic in view.trending_topics[:5]
            )
            tweets.append(truncate(f"Trending: {tags}", TWEET_MAX_LENGTH))
        return tweets[: self._max_thread_length]

    async def _post(
        self, client: httpx.AsyncClient, text: str, reply_to: str | None
    ) -> str:
        body: dict = {"text": text}
        if reply_to:
            body["reply"] = {"in_reply_to_tweet_id": reply_to}
        resp = await client.post(
            self._api_url,
            json=body,
            headers={"Authorization": f"Bearer {self._bearer_token}"},
        )
        resp.raise_for_status()
        return resp.json()["data"]["id"]

    async def send(self, view: DigestView) -> DistributionResult:
        tweets = self._format_tweets(view)
        first_id: str | None = None
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                reply_to: str | None = None
                for text in tweets:
                    reply_to = await self._post(client, text, reply_to)
                    first_id = first_id or reply_to
        except httpx.TimeoutException:
            logger.warning("Twitter post timed out for digest %s", view.digest_id)
            return self._failure("timeout")
        except Exception as e:
            logger.warning("Twitter post failed for digest %s: %s", view.digest_id, e)
            return self._failure(str(e))

        logger.info(
            "Posted digest %s to Twitter as %d tweet(s)", view.digest_id, len(tweets)
        )
        return DistributionResult(
            platform=self.name,
            success=True,
            url=f"https://x.com/i/web/status/{first_id}",
        )


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(DistributionChannel):
    """Wraps a DistributionChannel with circuit breaker protection.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: All sends pass through. Consecutive failures tracked.
    - OPEN: Sends rejected immediately. After recovery_timeout, moves
      to HALF_OPEN.
    - HALF_OPEN: Single probe send allowed. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        channel: DistributionChannel,
        failure_threshold: int = 3,
        recovery_timeout: float = 300.0,
    ) -> None:
        self._channel = channel
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._channel.name

    @property
    def state(self) -> CircuitState:
        return self._state

    async def send(self, view: DigestView) -> DistributionResult:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit breaker %s: OPEN → HALF_OPEN (recovery probe)",
                    self.name,
                )
            else:
                logger.debug(
                    "Circuit breaker %s: OPEN, rejecting digest %s",
                    self.name, view.digest_id,
                )
                return self._failure("circuit open")

        result = await self._channel.send(view)

        if result.success:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "Circuit breaker %s: HALF_OPEN → CLOSED (probe succeeded)",
                    self.name,
                )
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker %s: HALF_OPEN → OPEN (probe failed)",
                    self.name,
                )
            elif self._consecutive_failures >= self._failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker %s: CLOSED → OPEN after %d failures",
                    self.name, self._consecutive_failures,
                )

        return result
