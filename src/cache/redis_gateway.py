"""
Redis-backed cache gateway.

Stores one JSON-encoded CacheRecord per SourceKey under
``{prefix}:{source_type}:{source_key}``. Each write is a single SET, so
concurrent writers on the same key resolve last-write-wins. Keys also
carry a TTL equal to the retention window, which makes the explicit
sweep a backstop rather than the only eviction path.
"""

import logging
from datetime import timedelta
from types import TracebackType

import redis.asyncio as redis
from pydantic import ValidationError

from src.cache.config import CacheConfig
from src.cache.gateway import CacheGateway, Clock, dedupe_items
from src.config.settings import get_settings
from src.ingestion.schemas import CacheRecord, ContentItem, SourceType

logger = logging.getLogger(__name__)


class RedisCacheGateway(CacheGateway):
    """
    Cache gateway for one source type backed by Redis.

    Usage:
        async with RedisCacheGateway(SourceType.RSS) as cache:
            if not await cache.is_fresh(url):
                await cache.write(url, items)
    """

    def __init__(
        self,
        source_type: SourceType,
        config: CacheConfig | None = None,
        redis_url: str | None = None,
        prefix: str | None = None,
        client: redis.Redis | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(source_type, config, clock)
        settings = get_settings()

        self._redis_url = redis_url or str(settings.redis_url)
        self._prefix = prefix or settings.redis_cache_prefix
        self._redis: redis.Redis | None = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Establish the Redis connection (no-op with an injected client)."""
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info(f"Cache gateway {self._source_type.value} connected to Redis")

    async def close(self) -> None:
        """Close Redis connection if this gateway created it."""
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None

    async def __aenter__(self) -> "RedisCacheGateway":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    def _key(self, source_key: str) -> str:
        return f"{self._prefix}:{self._source_type.value}:{source_key}"

    async def _load(self, source_key: str) -> CacheRecord | None:
        raw = await self.redis.get(self._key(source_key))
        if raw is None:
            return None
        try:
            return CacheRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache record %s", self._key(source_key))
            return None

    async def is_fresh(self, key: str) -> bool:
        fresh = self._is_record_fresh(await self._load(key), key)
        logger.debug(
            "Cache check for %s:%s: %s",
            self._source_type.value, key, "fresh" if fresh else "stale",
        )
        return fresh

    async def read(self, key: str) -> list[ContentItem]:
        record = await self._load(key)
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
        await self.redis.set(
            self._key(key),
            record.model_dump_json(),
            ex=int(self.retention.total_seconds()),
        )
        logger.info(
            "Stored %d %s items in cache for %s",
            len(record.items), self._source_type.value, key,
        )

    async def sweep(self, retention: timedelta | None = None) -> int:
        retention = retention or self.retention
        now = self._clock()
        pattern = f"{self._prefix}:{self._source_type.value}:*"

        deleted = 0
        cursor = 0
        while True:
            cursor, keys = await self.redis.scan(cursor=cursor, match=pattern, count=100)
            for redis_key in keys:
                raw = await self.redis.get(redis_key)
                if raw is None:
                    continue
                try:
                    record = CacheRecord.model_validate_json(raw)
                except ValidationError:
                    await self.redis.delete(redis_key)
                    deleted += 1
                    continue
                if record.age(now) > retention:
                    await self.redis.delete(redis_key)
                    deleted += 1
            if cursor == 0:
                break

        logger.info(
            "Swept %d %s cache records older than %s",
            deleted, self._source_type.value, retention,
        )
        return deleted

    async def health_check(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False
