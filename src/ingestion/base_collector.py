"""
Base collector interface and shared functionality for source collectors.

Each source collector fetches the items of one SourceKey (an account
handle, channel name, or feed URL). The base class provides:
- Rate limiting
- Per-key error wrapping (CollectorError)
- All-or-nothing results: a failing key never leaks a partial batch
- Run statistics and logging
"""

import asyncio
import hashlib
import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from src.ingestion.schemas import ContentItem, SourceType

logger = logging.getLogger(__name__)


class CollectorError(Exception):
    """A single SourceKey could not be collected."""

    def __init__(self, source_type: SourceType, source_key: str, message: str):
        self.source_type = source_type
        self.source_key = source_key
        super().__init__(f"{source_type.value}:{source_key}: {message}")


@dataclass
class RateLimiter:
    """
    Simple token bucket rate limiter.

    Allows `rate` requests per minute with burst capacity.
    """

    rate: int  # requests per minute
    _tokens: float = field(init=False)
    _last_update: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.rate)
        self._last_update = time.monotonic()

    async def acquire(self) -> None:
        """
        Wait until a token is available, then consume it.

        Tokens refill continuously rather than in bursts.
        """
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._last_update = now

            self._tokens = min(
                float(self.rate),
                self._tokens + elapsed * (self.rate / 60.0),
            )

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * 60.0 / self.rate
                logger.debug(f"Rate limited, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 0
            else:
                self._tokens -= 1


@dataclass(frozen=True)
class CollectorLimits:
    """Per-fetch limits handed to a collector."""

    max_items: int = 50
    min_text_length: int = 0


@dataclass
class CollectorStats:
    """Statistics for one key fetch."""

    items_fetched: int = 0
    items_dropped: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.start_time


class BaseCollector(ABC):
    """
    Abstract base class for source collectors.

    Subclasses must implement:
        - source_type: SourceType enum value
        - _fetch_raw(): Async generator yielding raw origin data for one key
        - _transform(): Convert raw data to ContentItem

    The base class handles:
        - Rate limiting (via RateLimiter)
        - Wrapping failures in CollectorError
        - Enforcing CollectorLimits
        - Logging
    """

    def __init__(self, rate_limit: int = 60):
        """
        Initialize collector with rate limiting.

        Args:
            rate_limit: Maximum requests per minute
        """
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._stats = CollectorStats()

    @property
    @abstractmethod
    def source_type(self) -> SourceType:
        """Return the source type this collector handles."""
        ...

    @property
    def name(self) -> str:
        """Human-readable collector name."""
        return f"{self.source_type.value}_collector"

    @abstractmethod
    async def _fetch_raw(
        self, key: str, limits: CollectorLimits
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Fetch raw data for one SourceKey from the origin.

        Subclasses MUST call `await self._rate_limiter.acquire()` before
        each outbound request, not per yielded item.
        """
        ...

    @abstractmethod
    def _transform(self, raw: dict[str, Any], key: str) -> ContentItem | None:
        """
        Transform raw origin data to a ContentItem.

        Returns None for data that should be dropped. Should not raise.
        """
        ...

    async def fetch(
        self, key: str, limits: CollectorLimits | None = None
    ) -> list[ContentItem]:
        """
        Fetch and transform all items for one SourceKey.

        The batch is accumulated locally and returned whole; if anything
        fails the caller receives a CollectorError and no items.

        Raises:
            CollectorError: the key could not be collected
        """
        limits = limits or CollectorLimits()
        self._stats = CollectorStats()
        items: list[ContentItem] = []

        try:
            async for raw in self._fetch_raw(key, limits):
                item = self._transform(raw, key)
                if item is None or len(item.text) < limits.min_text_length:
                    self._stats.items_dropped += 1
                    continue

                items.append(item)
                self._stats.items_fetched += 1
                if len(items) >= limits.max_items:
                    break

        except CollectorError:
            raise
        except Exception as e:
            logger.error(f"Error in {self.name} fetch for {key}: {e}")
            raise CollectorError(self.source_type, key, str(e)) from e

        logger.info(
            f"{self.name} fetched {key}: "
            f"items={self._stats.items_fetched}, "
            f"dropped={self._stats.items_dropped}, "
            f"elapsed={self._stats.elapsed_seconds:.2f}s"
        )
        return items

    @property
    def stats(self) -> CollectorStats:
        """Statistics of the most recent fetch."""
        return self._stats

    async def health_check(self) -> bool:
        """
        Check if the collector can reach its origin.

        Override in subclasses for source-specific health checks.
        """
        return True


def clean_text(text: str) -> str:
    """
    Clean text content by removing excessive whitespace and control characters.

    Args:
        text: Raw text content

    Returns:
        Cleaned text
    """
    text = " ".join(text.split())
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def stable_hash(value: str) -> str:
    """
    Generate a stable, deterministic hash from a string.

    SHA256 truncated to 16 hex characters. Unlike the built-in hash(),
    this is stable across process restarts.

    Args:
        value: String to hash (typically a URL or identifier)

    Returns:
        16-character hex string
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]
