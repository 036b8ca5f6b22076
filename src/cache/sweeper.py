"""Scheduled retention sweep over all cache gateways.

Runs independently of the pipeline's hot path. Every gateway is swept
even if an earlier one fails; the task then raises so the scheduler
records the failure and can retry.
"""

import logging
from collections.abc import Iterable

from src.cache.gateway import CacheGateway
from src.scheduler.schemas import ScheduledTask

logger = logging.getLogger(__name__)


class CacheSweepError(Exception):
    """One or more gateways failed to sweep."""


class CacheSweepTask(ScheduledTask):
    """Delete cache records older than each gateway's retention window."""

    def __init__(self, gateways: Iterable[CacheGateway]) -> None:
        self._gateways = list(gateways)
        self.last_deleted: dict[str, int] = {}

    @property
    def name(self) -> str:
        return "cache-sweep"

    @property
    def estimated_duration_seconds(self) -> float:
        return 30.0

    async def execute(self) -> None:
        deleted: dict[str, int] = {}
        failures: list[str] = []

        for gateway in self._gateways:
            source = gateway.source_type.value
            try:
                deleted[source] = await gateway.sweep()
            except Exception as e:
                logger.error("Cache sweep failed for %s: %s", source, e, exc_info=True)
                failures.append(f"{source}: {e}")

        self.last_deleted = deleted
        logger.info("Cache sweep finished: %s", deleted)

        if failures:
            raise CacheSweepError("; ".join(failures))
