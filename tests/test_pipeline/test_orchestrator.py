"""Tests for the digest pipeline orchestrator."""

import asyncio
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.cache.config import CacheConfig
from src.cache.gateway import InMemoryCacheGateway
from src.distribution.notifier import NotificationOutcome
from src.distribution.schemas import DistributionResult
from src.ingestion.base_collector import BaseCollector, CollectorLimits
from src.ingestion.schemas import ContentItem, SourceType
from src.pipeline.config import PipelineRunConfig
from src.pipeline.errors import CollectionError, PersistenceError, SynthesisError
from src.pipeline.orchestrator import (
    DigestPipeline,
    PipelineOutcome,
    PipelinePhase,
    SourceBinding,
)
from src.pipeline.synthesis import MockSynthesisAdapter
from src.storage.repository import InMemoryDigestRepository


class StaticCollector(BaseCollector):
    """Collector serving fixed items per key; keys in ``failing`` raise."""

    def __init__(self, source_type: SourceType, items: dict[str, list[ContentItem]],
                 failing: set[str] | None = None):
        super().__init__(rate_limit=600)
        self._source_type = source_type
        self._items = items
        self._failing = failing or set()
        self.fetched: list[str] = []

    @property
    def source_type(self) -> SourceType:
        return self._source_type

    async def _fetch_raw(
        self, key: str, limits: CollectorLimits
    ) -> AsyncIterator[dict[str, Any]]:
        self.fetched.append(key)
        if key in self._failing:
            raise ConnectionError(f"{key} unreachable")
        for item in self._items.get(key, []):
            yield {"item": item}

    def _transform(self, raw: dict[str, Any], key: str) -> ContentItem | None:
        return raw["item"]


def _channel(name: str, success: bool = True, error: Exception | None = None):
    channel = MagicMock()
    channel.name = name
    channel.send = AsyncMock(
        return_value=DistributionResult(
            platform=name,
            success=success,
            url=f"https://{name}.example/1" if success else None,
            error=None if success else "HTTP 500",
        ),
        side_effect=error,
    )
    return channel


def _notifier():
    notifier = MagicMock()
    notifier.notify_complete = AsyncMock()
    notifier.notify_failure = AsyncMock()
    return notifier


@pytest.fixture
def twitter_items(make_item):
    return {
        "openai": [make_item(item_id="t1"), make_item(item_id="t2", quality=0.2)],
        "anthropicai": [make_item(item_id="t3", source_key="anthropicai")],
    }


@pytest.fixture
def rss_items(make_item):
    feed = "https://techcrunch.com/feed/"
    return {
        feed: [
            make_item(
                source_type=SourceType.RSS, source_key=feed, item_id="r1",
                url="https://techcrunch.com/a", text="Funding round for inference startups",
            ),
        ],
    }


@pytest.fixture
def build(clock, mock_metrics, twitter_items, rss_items):
    """Factory for a pipeline over static collectors and in-memory stores."""

    def _build(
        config: PipelineRunConfig | None = None,
        twitter_failing: set[str] | None = None,
        rss_failing: set[str] | None = None,
        twitter: dict[str, list[ContentItem]] | None = None,
        rss: dict[str, list[ContentItem]] | None = None,
        synthesizer=None,
        repository=None,
        channels=None,
        notifier=None,
        notification_timeout: float = 1.0,
    ):
        twitter = twitter_items if twitter is None else twitter
        rss = rss_items if rss is None else rss
        twitter_collector = StaticCollector(SourceType.TWITTER, twitter, twitter_failing)
        rss_collector = StaticCollector(SourceType.RSS, rss, rss_failing)
        caches = {
            source_type: InMemoryCacheGateway(source_type, CacheConfig(), clock=clock)
            for source_type in (SourceType.TWITTER, SourceType.RSS)
        }
        pipeline = DigestPipeline(
            config=config or PipelineRunConfig(min_quality_threshold=0.5),
            sources=[
                SourceBinding(SourceType.TWITTER, twitter_collector,
                              caches[SourceType.TWITTER], list(twitter)),
                SourceBinding(SourceType.RSS, rss_collector,
                              caches[SourceType.RSS], list(rss)),
            ],
            synthesizer=synthesizer or MockSynthesisAdapter(),
            repository=repository if repository is not None else InMemoryDigestRepository(),
            channels=channels,
            notifier=notifier,
            notification_timeout=notification_timeout,
            metrics=mock_metrics,
            clock=clock,
        )
        pipeline.collectors = {
            SourceType.TWITTER: twitter_collector,
            SourceType.RSS: rss_collector,
        }
        pipeline.caches = caches
        return pipeline

    return _build


# ── Happy path ──────────────────────────────────────────


class TestCompletedRun:
    """Tests for a run that reaches done."""

    @pytest.mark.asyncio
    async def test_full_cycle(self, build, mock_metrics):
        repository = InMemoryDigestRepository()
        synthesizer = MockSynthesisAdapter()
        notifier = _notifier()
        pipeline = build(
            config=PipelineRunConfig(min_quality_threshold=0.5, post_to_slack=True),
            synthesizer=synthesizer,
            repository=repository,
            channels={"slack": _channel("slack")},
            notifier=notifier,
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        assert result.success
        assert result.phase == PipelinePhase.DONE
        assert pipeline.phase == PipelinePhase.DONE
        assert result.collected == {"twitter": 3, "rss": 1}
        assert result.retained == {"twitter": 2, "rss": 1}
        assert result.key_failures == []
        assert result.notification == NotificationOutcome.SENT
        assert result.finished_at is not None
        assert pipeline.last_result is result

        digest = await repository.get(result.digest_id)
        assert digest is not None
        assert digest.ai_provider == "anthropic"
        assert digest.content["metadata"]["source_breakdown"] == {"twitter": 2, "rss": 1}
        assert digest.distribution_status == {"slack": True}
        assert digest.distribution_urls == {"slack": "https://slack.example/1"}

        request = synthesizer.requests[0]
        assert request.total_items == 3
        assert request.analysis_type == "digest"

        notifier.notify_complete.assert_awaited_once()
        args = notifier.notify_complete.call_args.args
        assert args[1] == result.digest_id
        assert args[2] == result.distribution_results
        mock_metrics.record_pipeline_run.assert_called_once()
        assert mock_metrics.record_pipeline_run.call_args.args[0] == "completed"

    @pytest.mark.asyncio
    async def test_phases_run_in_order(self, build, mock_metrics):
        pipeline = build(notifier=_notifier())

        await pipeline.run()

        recorded = [call.args[0] for call in mock_metrics.record_phase.call_args_list]
        assert recorded == [
            "init", "collecting", "filtering", "synthesizing",
            "persisting", "distributing", "notifying",
        ]

    @pytest.mark.asyncio
    async def test_execute_does_not_raise_on_success(self, build):
        pipeline = build()
        await pipeline.execute()
        assert pipeline.last_result.outcome == PipelineOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_without_notifier_notification_is_skipped(self, build):
        result = await build().run()
        assert result.notification == NotificationOutcome.SKIPPED

    @pytest.mark.asyncio
    async def test_to_dict(self, build):
        result = await build().run()

        data = result.to_dict()

        assert data["outcome"] == "completed"
        assert data["phase"] == "done"
        assert data["digest_id"] == result.digest_id
        assert data["error"] is None
        assert data["elapsed_seconds"] == 0.0

    @pytest.mark.asyncio
    async def test_disabled_source_not_collected(self, build):
        pipeline = build(config=PipelineRunConfig(enable_rss=False))

        result = await pipeline.run()

        assert "rss" not in result.collected
        assert pipeline.collectors[SourceType.RSS].fetched == []


# ── Collection ──────────────────────────────────────────


class TestCollection:
    """Tests for per-key isolation and caching."""

    @pytest.mark.asyncio
    async def test_partial_key_failure_continues(self, build):
        synthesizer = MockSynthesisAdapter()
        pipeline = build(twitter_failing={"openai"}, synthesizer=synthesizer)

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        assert len(result.key_failures) == 1
        failure = result.key_failures[0]
        assert failure.source_type == SourceType.TWITTER
        assert failure.source_key == "openai"
        assert "unreachable" in failure.error
        assert result.collected["twitter"] == 1

        request = synthesizer.requests[0]
        ids = {i.id for items in request.content.values() for i in items}
        assert ids == {"t3", "r1"}

    @pytest.mark.asyncio
    async def test_every_key_failing_is_fatal(self, build):
        notifier = _notifier()
        synthesizer = MockSynthesisAdapter()
        pipeline = build(
            twitter_failing={"openai", "anthropicai"},
            rss_failing={"https://techcrunch.com/feed/"},
            synthesizer=synthesizer,
            notifier=notifier,
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.FAILED
        assert isinstance(result.error, CollectionError)
        assert result.phase == PipelinePhase.COLLECTING
        assert pipeline.phase == PipelinePhase.FAILED
        assert len(result.key_failures) == 3
        assert synthesizer.requests == []
        notifier.notify_failure.assert_awaited_once()
        assert notifier.notify_failure.call_args.args[1] == "collecting"

    @pytest.mark.asyncio
    async def test_execute_raises_fatal_error(self, build):
        pipeline = build(
            twitter_failing={"openai", "anthropicai"},
            rss_failing={"https://techcrunch.com/feed/"},
        )

        with pytest.raises(CollectionError):
            await pipeline.execute()

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_collector(self, build, twitter_items):
        pipeline = build()
        cache = pipeline.caches[SourceType.TWITTER]
        for key, items in twitter_items.items():
            await cache.write(key, items)

        result = await pipeline.run()

        assert pipeline.collectors[SourceType.TWITTER].fetched == []
        assert result.cache_hits == 2
        assert result.collected["twitter"] == 3

    @pytest.mark.asyncio
    async def test_stale_cache_is_refetched_and_written(self, build, clock):
        pipeline = build()
        cache = pipeline.caches[SourceType.TWITTER]
        await cache.write("openai", [])
        clock.advance(hours=5)

        await pipeline.run()

        assert "openai" in pipeline.collectors[SourceType.TWITTER].fetched
        assert {i.id for i in await cache.read("openai")} == {"t1", "t2"}
        assert await cache.is_fresh("openai")

    @pytest.mark.asyncio
    async def test_failed_key_does_not_overwrite_cache(self, build, make_item, clock):
        pipeline = build(twitter_failing={"openai"})
        cache = pipeline.caches[SourceType.TWITTER]
        await cache.write("openai", [make_item(item_id="cached")])
        clock.advance(hours=5)

        await pipeline.run()

        assert [i.id for i in await cache.read("openai")] == ["cached"]


# ── No content ──────────────────────────────────────────


class TestNoContent:
    """Empty collection or filtering ends the run successfully."""

    @pytest.mark.asyncio
    async def test_nothing_collected(self, build):
        synthesizer = MockSynthesisAdapter()
        notifier = _notifier()
        pipeline = build(twitter={"openai": []}, rss={}, synthesizer=synthesizer,
                         notifier=notifier)

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.NO_CONTENT
        assert result.success
        assert result.phase == PipelinePhase.DONE
        assert result.digest_id is None
        assert result.notification == NotificationOutcome.SKIPPED
        assert synthesizer.requests == []
        notifier.notify_complete.assert_not_called()
        await pipeline.execute()

    @pytest.mark.asyncio
    async def test_nothing_passes_filter(self, build):
        synthesizer = MockSynthesisAdapter()
        pipeline = build(
            config=PipelineRunConfig(min_quality_threshold=0.99),
            synthesizer=synthesizer,
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.NO_CONTENT
        assert result.total_collected == 4
        assert result.total_retained == 0
        assert synthesizer.requests == []

    @pytest.mark.asyncio
    async def test_all_sources_disabled(self, build):
        pipeline = build(
            config=PipelineRunConfig(enable_twitter=False, enable_telegram=False,
                                     enable_rss=False),
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.NO_CONTENT
        assert result.error is None


# ── Fatal phases ────────────────────────────────────────


class TestFatalFailures:
    """Synthesis and persistence failures end the run."""

    @pytest.mark.asyncio
    async def test_synthesis_failure(self, build):
        repository = InMemoryDigestRepository()
        notifier = _notifier()
        pipeline = build(
            synthesizer=MockSynthesisAdapter(fail_with=TimeoutError("model timed out")),
            repository=repository,
            notifier=notifier,
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.FAILED
        assert isinstance(result.error, SynthesisError)
        assert result.error.phase == "synthesizing"
        assert result.phase == PipelinePhase.SYNTHESIZING
        assert len(repository) == 0
        assert result.notification == NotificationOutcome.SENT

    @pytest.mark.asyncio
    async def test_persistence_failure(self, build):
        repository = MagicMock()
        repository.insert = AsyncMock(side_effect=ConnectionError("db down"))
        channel = _channel("slack")
        pipeline = build(
            config=PipelineRunConfig(post_to_slack=True),
            repository=repository,
            channels={"slack": channel},
        )

        result = await pipeline.run()

        assert isinstance(result.error, PersistenceError)
        assert "db down" in str(result.error)
        assert result.phase == PipelinePhase.PERSISTING
        channel.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_notification_timeout_does_not_mask_error(self, build):
        notifier = _notifier()

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        notifier.notify_failure = hang
        pipeline = build(
            synthesizer=MockSynthesisAdapter(fail_with=RuntimeError("bad")),
            notifier=notifier,
            notification_timeout=0.05,
        )

        result = await pipeline.run()

        assert isinstance(result.error, SynthesisError)
        assert result.notification == NotificationOutcome.TIMED_OUT


# ── Distribution and notification ───────────────────────


class TestDistribution:
    """Channel failures are recorded and never fatal."""

    @pytest.mark.asyncio
    async def test_channel_failure_is_isolated(self, build):
        repository = InMemoryDigestRepository()
        pipeline = build(
            config=PipelineRunConfig(post_to_slack=True, post_to_twitter=True),
            repository=repository,
            channels={
                "slack": _channel("slack", error=RuntimeError("webhook exploded")),
                "twitter": _channel("twitter"),
            },
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        by_platform = {r.platform: r for r in result.distribution_results}
        assert by_platform["slack"].success is False
        assert "webhook exploded" in by_platform["slack"].error
        assert by_platform["twitter"].success is True

        digest = await repository.get(result.digest_id)
        assert digest.distribution_status == {"twitter": True}
        assert digest.distribution_urls == {"twitter": "https://twitter.example/1"}

    @pytest.mark.asyncio
    async def test_only_successful_channels_are_recorded(self, build):
        repository = InMemoryDigestRepository()
        pipeline = build(
            config=PipelineRunConfig(post_to_slack=True, post_to_twitter=True),
            repository=repository,
            channels={
                "slack": _channel("slack"),
                "twitter": _channel("twitter", success=False),
            },
        )

        result = await pipeline.run()

        digest = await repository.get(result.digest_id)
        assert "twitter" not in digest.distribution_status
        assert digest.distribution_status == {"slack": True}

    @pytest.mark.asyncio
    async def test_all_channels_failing_leaves_digest_untouched(self, build):
        repository = InMemoryDigestRepository()
        pipeline = build(
            config=PipelineRunConfig(post_to_slack=True),
            repository=repository,
            channels={"slack": _channel("slack", success=False)},
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        assert result.distribution_results[0].success is False
        digest = await repository.get(result.digest_id)
        assert digest.distribution_status == {}

    @pytest.mark.asyncio
    async def test_enabled_channel_without_client_is_skipped(self, build):
        pipeline = build(config=PipelineRunConfig(post_to_twitter=True), channels={})

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        assert result.distribution_results == []

    @pytest.mark.asyncio
    async def test_disabled_channel_not_called(self, build):
        channel = _channel("slack")
        pipeline = build(config=PipelineRunConfig(post_to_slack=False),
                         channels={"slack": channel})

        await pipeline.run()

        channel.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_update_failure_is_not_fatal(self, build):
        repository = InMemoryDigestRepository()
        repository.update = AsyncMock(side_effect=ConnectionError("db down"))
        pipeline = build(
            config=PipelineRunConfig(post_to_slack=True),
            repository=repository,
            channels={"slack": _channel("slack")},
        )

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        repository.update.assert_awaited_once()


class TestNotification:
    """Completion notification is bounded and best-effort."""

    @pytest.mark.asyncio
    async def test_slow_notification_times_out(self, build):
        notifier = _notifier()

        async def slow(*args, **kwargs):
            await asyncio.sleep(10)

        notifier.notify_complete = slow
        pipeline = build(notifier=notifier, notification_timeout=0.05)

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        assert result.phase == PipelinePhase.DONE
        assert result.notification == NotificationOutcome.TIMED_OUT

    @pytest.mark.asyncio
    async def test_failing_notification_is_recorded(self, build, mock_metrics):
        notifier = _notifier()
        notifier.notify_complete = AsyncMock(side_effect=RuntimeError("slack down"))
        pipeline = build(notifier=notifier)

        result = await pipeline.run()

        assert result.outcome == PipelineOutcome.COMPLETED
        assert result.notification == NotificationOutcome.FAILED
        mock_metrics.record_notification.assert_called_with("failed")
