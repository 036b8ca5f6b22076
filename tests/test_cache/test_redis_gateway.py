"""Tests for the Redis-backed cache gateway."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.cache.config import CacheConfig
from src.cache.redis_gateway import RedisCacheGateway
from src.ingestion.schemas import CacheRecord, SourceType


class FakeRedis:
    """Minimal async stand-in for the redis client commands the gateway uses."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.ping = AsyncMock(return_value=True)

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)

    async def scan(self, cursor=0, match=None, count=None):
        prefix = match.rstrip("*")
        return 0, [k for k in list(self.data) if k.startswith(prefix)]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def gateway(fake_redis, clock):
    return RedisCacheGateway(
        SourceType.RSS,
        CacheConfig(),
        prefix="test_cache",
        client=fake_redis,
        clock=clock,
    )


class TestRedisCacheGateway:
    """Tests for RedisCacheGateway."""

    @pytest.mark.asyncio
    async def test_write_stores_json_record_with_ttl(self, gateway, fake_redis, make_item):
        item = make_item(source_type=SourceType.RSS, source_key="feed", url="https://x.example/a")

        await gateway.write("feed", [item])

        raw = fake_redis.data["test_cache:rss:feed"]
        record = CacheRecord.model_validate_json(raw)
        assert record.source_key == "feed"
        assert [i.id for i in record.items] == [item.id]
        assert fake_redis.expiry["test_cache:rss:feed"] == int(timedelta(days=30).total_seconds())

    @pytest.mark.asyncio
    async def test_read_round_trips_items(self, gateway, make_item):
        item = make_item(source_type=SourceType.RSS, source_key="feed", url="https://x.example/a")
        await gateway.write("feed", [item])

        assert await gateway.read("feed") == [item]

    @pytest.mark.asyncio
    async def test_freshness_follows_clock(self, gateway, clock, make_item):
        assert await gateway.is_fresh("feed") is False

        await gateway.write("feed", [])
        assert await gateway.is_fresh("feed") is True

        clock.advance(hours=6, seconds=1)
        assert await gateway.is_fresh("feed") is False

    @pytest.mark.asyncio
    async def test_corrupt_record_is_treated_as_missing(self, gateway, fake_redis):
        fake_redis.data["test_cache:rss:feed"] = "{not json"

        assert await gateway.is_fresh("feed") is False
        assert await gateway.read("feed") == []

    @pytest.mark.asyncio
    async def test_sweep_deletes_expired_and_corrupt(self, gateway, fake_redis, clock):
        await gateway.write("old", [])
        clock.advance(days=31)
        await gateway.write("new", [])
        fake_redis.data["test_cache:rss:broken"] = "garbage"
        fake_redis.data["test_cache:twitter:other"] = "untouched"

        deleted = await gateway.sweep()

        assert deleted == 2
        assert set(fake_redis.data) == {"test_cache:rss:new", "test_cache:twitter:other"}

    @pytest.mark.asyncio
    async def test_health_check(self, gateway, fake_redis):
        assert await gateway.health_check() is True

        fake_redis.ping.side_effect = ConnectionError("down")
        assert await gateway.health_check() is False

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, gateway, fake_redis):
        fake_redis.aclose = AsyncMock()

        await gateway.close()

        fake_redis.aclose.assert_not_called()

    def test_unconnected_gateway_raises(self):
        gateway = RedisCacheGateway(SourceType.RSS, CacheConfig())
        with pytest.raises(RuntimeError, match="Not connected"):
            _ = gateway.redis
