"""Tests for the cache sweep task."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.cache.sweeper import CacheSweepError, CacheSweepTask
from src.ingestion.schemas import SourceType


def _gateway(source_type: SourceType, deleted: int = 0, error: Exception | None = None):
    gateway = MagicMock()
    gateway.source_type = source_type
    gateway.sweep = AsyncMock(return_value=deleted, side_effect=error)
    return gateway


class TestCacheSweepTask:
    """Tests for CacheSweepTask."""

    def test_task_labels(self):
        task = CacheSweepTask([])
        assert task.name == "cache-sweep"
        assert task.estimated_duration_seconds == 30.0

    @pytest.mark.asyncio
    async def test_sweeps_every_gateway(self):
        gateways = [
            _gateway(SourceType.TWITTER, 3),
            _gateway(SourceType.TELEGRAM, 0),
            _gateway(SourceType.RSS, 5),
        ]
        task = CacheSweepTask(gateways)

        await task.execute()

        assert task.last_deleted == {"twitter": 3, "telegram": 0, "rss": 5}
        for gateway in gateways:
            gateway.sweep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_other_gateways(self):
        failing = _gateway(SourceType.TWITTER, error=ConnectionError("redis down"))
        healthy = _gateway(SourceType.RSS, 2)
        task = CacheSweepTask([failing, healthy])

        with pytest.raises(CacheSweepError, match="twitter: redis down"):
            await task.execute()

        healthy.sweep.assert_awaited_once()
        assert task.last_deleted == {"rss": 2}
