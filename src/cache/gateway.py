"""Cache gateway contract and in-memory implementation.

One gateway per source type. The orchestrator asks ``is_fresh`` before
deciding between ``read`` (cached) and a collector fetch followed by
``write``. Freshness depends only on the record's age, never on how
many items it holds.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from src.cache.config import CacheConfig
from src.ingestion.schemas import CacheRecord, ContentItem, SourceType

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_items(items: list[ContentItem]) -> list[ContentItem]:
    """
    Collapse items sharing a ``dedup_key``; the last occurrence wins.

    Output is ordered newest first by item timestamp.
    """
    by_key: dict[str, ContentItem] = {}
    for item in items:
        by_key[item.dedup_key] = item
    return sorted(by_key.values(), key=lambda i: i.timestamp, reverse=True)


class CacheGateway(ABC):
    """Abstract cache for one source type."""

    def __init__(
        self,
        source_type: SourceType,
        config: CacheConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._source_type = source_type
        self._config = config or CacheConfig()
        self._clock = clock or _utc_now

    @property
    def source_type(self) -> SourceType:
        return self._source_type

    def threshold_for(self, key: str) -> timedelta:
        return self._config.threshold_for(self._source_type, key)

    @property
    def retention(self) -> timedelta:
        return self._config.retention_for(self._source_type)

    def _is_record_fresh(self, record: CacheRecord | None, key: str) -> bool:
        if record is None:
            return False
        return record.age(self._clock()) <= self.threshold_for(key)

    @abstractmethod
    async def is_fresh(self, key: str) -> bool:
        """True if the record for ``key`` exists and is within its threshold."""

    @abstractmethod
    async def read(self, key: str) -> list[ContentItem]:
        """Cached items for ``key``, newest first; empty if nothing cached."""

    @abstractmethod
    async def write(self, key: str, items: list[ContentItem]) -> None:
        """Replace the record for ``key`` with a de-duplicated batch."""

    @abstractmethod
    async def sweep(self, retention: timedelta | None = None) -> int:
        """Delete records older than the retention window. Returns the count."""


class InMemoryCacheGateway(CacheGateway):
    """
    Process-local cache gateway.

    Writes take a lock so concurrent writers on the same key resolve
    last-write-wins.
    """

    def __init__(
        self,
        source_type: SourceType,
        config: CacheConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(source_type, config, clock)
        self._records: dict[str, CacheRecord] = {}
        self._lock = asyncio.Lock()

    async def is_fresh(self, key: str) -> bool:
        fresh = self._is_record_fresh(self._records.get(key), key)
        logger.debug(
            "Cache check for %s:%s: %s",
            self._source_type.value, key, "fresh" if fresh else "stale",
        )
        return fresh

    async def read(self, key: str) -> list[ContentItem]:
        record = self._records.get(key)
        if record is None:
            return []
        return list(record.items)

    async def write(self, key: str, items: list[ContentItem]) -> None:
        record = CacheRecord(
            source_type=self._source_type,
            source_key=key,
            items=dedupe_items(items),
            fetched_at=self._clock(),
        )
        async with self._lock:
            self._records[key] = record
        logger.info(
            "Stored %d %s items in cache for %s",
            len(record.items), self._source_type.value, key,
        )

    async def sweep(self, retention: timedelta | None = None) -> int:
        retention = retention or self.retention
        now = self._clock()
        async with self._lock:
            expired = [
                key for key, record in self._records.items()
                if record.age(now) > retention
            ]
            for key in expired:
                del self._records[key]

        logger.info(
            "Swept %d %s cache records older than %s",
            len(expired), self._source_type.value, retention,
        )
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
