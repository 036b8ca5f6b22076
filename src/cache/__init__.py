"""Cache gateways: per-source-type freshness cache for collected items."""

from src.cache.config import CacheConfig
from src.cache.gateway import CacheGateway, InMemoryCacheGateway, dedupe_items
from src.cache.redis_gateway import RedisCacheGateway
from src.cache.sweeper import CacheSweepError, CacheSweepTask

__all__ = [
    "CacheConfig",
    "CacheGateway",
    "CacheSweepError",
    "CacheSweepTask",
    "InMemoryCacheGateway",
    "RedisCacheGateway",
    "dedupe_items",
]
