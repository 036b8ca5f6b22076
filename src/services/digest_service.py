"""
Digest service - composition root for the pipeline, scheduler, and backends.

Wires settings and the configuration store into concrete collaborators
and runs the scheduler until stopped.

Features:
- Backend selection (memory/Redis cache, memory/PostgreSQL storage)
- Mock fallback for sources and synthesis without credentials
- Schedules loaded from the configuration store
- Pipeline config re-read from the store on every run
- Graceful shutdown
"""

import asyncio
from collections.abc import Mapping
from typing import Any

import redis.asyncio as redis
import structlog

from src.cache.config import CacheConfig
from src.cache.gateway import CacheGateway, InMemoryCacheGateway
from src.cache.redis_gateway import RedisCacheGateway
from src.cache.sweeper import CacheSweepTask
from src.config.settings import Settings, get_settings
from src.config.sources import DEFAULT_LIMITS
from src.config.store import (
    CACHE_SWEEP_TASK,
    DIGEST_TASK,
    ConfigStore,
    PipelineConfigDocument,
)
from src.distribution.channels import (
    CircuitBreaker,
    DistributionChannel,
    SlackDigestChannel,
    TwitterDigestChannel,
)
from src.distribution.notifier import LogOpsNotifier, OpsNotifier, SlackOpsNotifier
from src.ingestion.base_collector import BaseCollector, CollectorLimits
from src.ingestion.mock_collector import MockCollector, create_mock_collectors
from src.ingestion.rss_collector import RssCollector
from src.ingestion.schemas import SourceType
from src.ingestion.telegram_collector import TelegramCollector
from src.ingestion.twitter_collector import TwitterCollector
from src.pipeline.config import PipelineRunConfig
from src.pipeline.orchestrator import DigestPipeline, PipelineRunResult, SourceBinding
from src.pipeline.synthesis import (
    HttpSynthesisAdapter,
    MockSynthesisAdapter,
    SynthesisAdapter,
)
from src.scheduler.scheduler import TaskScheduler
from src.scheduler.schemas import ScheduledTask
from src.storage.database import Database
from src.storage.repository import (
    DigestRepository,
    InMemoryDigestRepository,
    PostgresDigestRepository,
)

logger = structlog.get_logger(__name__)

# Twitter, then Telegram, then RSS
SOURCE_ORDER = (SourceType.TWITTER, SourceType.TELEGRAM, SourceType.RSS)


def build_collectors(
    settings: Settings, use_mock: bool = False
) -> dict[SourceType, BaseCollector]:
    """Create collectors based on available configuration."""
    if use_mock:
        return create_mock_collectors()

    collectors: dict[SourceType, BaseCollector] = {}

    if settings.twitter_configured:
        collectors[SourceType.TWITTER] = TwitterCollector(
            bearer_token=settings.twitter_bearer_token,
            rate_limit=settings.twitter_rate_limit,
        )
        logger.info("Twitter collector enabled")
    else:
        logger.warning("No Twitter bearer token configured, using mock Twitter collector")
        collectors[SourceType.TWITTER] = MockCollector(source_type=SourceType.TWITTER)

    # Telegram and RSS read public pages, no credentials needed
    collectors[SourceType.TELEGRAM] = TelegramCollector(rate_limit=settings.telegram_rate_limit)
    collectors[SourceType.RSS] = RssCollector(rate_limit=settings.rss_rate_limit)

    return collectors


def build_cache_gateways(
    settings: Settings,
    cache_config: CacheConfig | None = None,
    redis_client: redis.Redis | None = None,
) -> dict[SourceType, CacheGateway]:
    """One cache gateway per source type on the configured backend."""
    cache_config = cache_config or CacheConfig()
    if settings.cache_backend == "redis":
        return {
            source: RedisCacheGateway(
                source,
                config=cache_config,
                prefix=settings.redis_cache_prefix,
                client=redis_client,
            )
            for source in SOURCE_ORDER
        }
    return {source: InMemoryCacheGateway(source, config=cache_config) for source in SOURCE_ORDER}


def build_synthesizer(settings: Settings, use_mock: bool = False) -> SynthesisAdapter:
    if not use_mock and settings.synthesis_configured:
        return HttpSynthesisAdapter(
            url=settings.synthesis_url,
            api_key=settings.synthesis_api_key,
            timeout=settings.synthesis_timeout_seconds,
        )
    if not use_mock:
        logger.warning("No synthesis endpoint configured, using mock synthesis")
    return MockSynthesisAdapter()


def build_twitter_channel(settings: Settings, tweet_format: str) -> DistributionChannel:
    return CircuitBreaker(
        TwitterDigestChannel(settings.twitter_post_token, tweet_format=tweet_format)
    )


def build_channels(
    settings: Settings, config: PipelineRunConfig
) -> dict[str, DistributionChannel]:
    """Distribution channels that have credentials, each behind a circuit breaker."""
    channels: dict[str, DistributionChannel] = {}
    if settings.slack_configured:
        channels["slack"] = CircuitBreaker(
            SlackDigestChannel(settings.slack_webhook_url, channel=settings.slack_channel)
        )
    if settings.twitter_posting_configured:
        channels["twitter"] = build_twitter_channel(settings, config.tweet_format)

    for name in config.enabled_channels:
        if name not in channels:
            logger.warning("Distribution enabled without credentials", channel=name)
    return channels


def build_notifier(settings: Settings) -> OpsNotifier:
    if settings.ops_slack_webhook_url:
        return SlackOpsNotifier(
            settings.ops_slack_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LogOpsNotifier()


def build_pipeline(
    config: PipelineRunConfig,
    source_keys: Mapping[SourceType, list[str]],
    collectors: Mapping[SourceType, BaseCollector],
    gateways: Mapping[SourceType, CacheGateway],
    synthesizer: SynthesisAdapter,
    repository: DigestRepository,
    channels: Mapping[str, DistributionChannel] | None = None,
    notifier: OpsNotifier | None = None,
    notification_timeout: float = 10.0,
    limits: Mapping[SourceType, CollectorLimits] | None = None,
) -> DigestPipeline:
    """
    Assemble a DigestPipeline from its collaborators.

    Source types without a collector, a gateway, or any keys are left
    out of the run.
    """
    limits = DEFAULT_LIMITS if limits is None else limits
    bindings = [
        SourceBinding(
            source_type=source,
            collector=collectors[source],
            cache=gateways[source],
            keys=list(source_keys[source]),
            limits=limits.get(source, CollectorLimits()),
        )
        for source in SOURCE_ORDER
        if source in collectors and source in gateways and source_keys.get(source)
    ]
    return DigestPipeline(
        config=config,
        sources=bindings,
        synthesizer=synthesizer,
        repository=repository,
        channels=channels,
        notifier=notifier,
        notification_timeout=notification_timeout,
    )


class ConfiguredDigestTask(ScheduledTask):
    """
    Scheduled digest task that rebuilds its pipeline on every run.

    Picks up pipeline config and source key edits made in the
    configuration store while the service is running.
    """

    def __init__(self, service: "DigestService"):
        self._service = service
        self.last_result: PipelineRunResult | None = None

    @property
    def name(self) -> str:
        return DIGEST_TASK

    @property
    def estimated_duration_seconds(self) -> float:
        return 300.0

    async def execute(self) -> None:
        pipeline = self._service.create_pipeline(await self._service.load_document())
        try:
            await pipeline.execute()
        finally:
            self.last_result = pipeline.last_result


class DigestService:
    """
    Long-running service that runs the digest pipeline on a schedule.

    Usage:
        service = DigestService()
        await service.start()  # Runs until stopped

        # or, for a single cycle
        async with DigestService(use_mock=True) as service:
            result = await service.run_once()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: ConfigStore | None = None,
        use_mock: bool = False,
        repository: DigestRepository | None = None,
        gateways: dict[SourceType, CacheGateway] | None = None,
        collectors: dict[SourceType, BaseCollector] | None = None,
        synthesizer: SynthesisAdapter | None = None,
        scheduler: TaskScheduler | None = None,
    ):
        """
        Initialize digest service.

        Args:
            settings: Application settings (default: from environment)
            store: Configuration store (default: settings.config_store_path)
            use_mock: Use mock collectors and synthesis
            repository: Digest repository (or create from settings)
            gateways: Cache gateways (or create from settings)
            collectors: Source collectors (or create from settings)
            synthesizer: Synthesis adapter (or create from settings)
            scheduler: Task scheduler (or create a new one)
        """
        self._settings = settings or get_settings()
        self._store = store or ConfigStore(self._settings.config_store_path)
        self._use_mock = use_mock
        # Mock items are shorter than the per-source minimum text lengths
        self._limits = {} if use_mock else dict(DEFAULT_LIMITS)

        self._redis: redis.Redis | None = None
        self._database: Database | None = None
        self._postgres: PostgresDigestRepository | None = None
        if self._settings.cache_backend == "redis" and gateways is None:
            self._redis = redis.from_url(
                str(self._settings.redis_url),
                encoding="utf-8",
                decode_responses=True,
            )
        if self._settings.storage_backend == "postgres" and repository is None:
            self._database = Database()
            self._postgres = PostgresDigestRepository(self._database)
            repository = self._postgres

        self._repository = repository or InMemoryDigestRepository()
        self._gateways = gateways or build_cache_gateways(
            self._settings, redis_client=self._redis
        )
        self._collectors = collectors or build_collectors(self._settings, use_mock)
        self._synthesizer = synthesizer or build_synthesizer(self._settings, use_mock)
        self._notifier = build_notifier(self._settings)

        # Shared across runs so circuit breaker state carries over
        default_config = PipelineRunConfig()
        self._channels = build_channels(self._settings, default_config)
        self._tweet_format = default_config.tweet_format

        self._scheduler = scheduler or TaskScheduler()
        self._digest_task = ConfiguredDigestTask(self)
        self._sweep_task = CacheSweepTask(self._gateways.values())
        self._stop_event = asyncio.Event()
        self._connected = False
        self._running = False

        logger.info(
            "Digest service initialized",
            cache_backend=self._settings.cache_backend,
            storage_backend=self._settings.storage_backend,
            collectors=[s.value for s in self._collectors],
            mock=use_mock,
        )

    @property
    def repository(self) -> DigestRepository:
        return self._repository

    @property
    def scheduler(self) -> TaskScheduler:
        return self._scheduler

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def is_running(self) -> bool:
        return self._running

    async def connect(self) -> None:
        """Connect storage backends. Idempotent."""
        if self._connected:
            return
        if self._database is not None:
            await self._database.connect()
            await self._postgres.create_tables()
        self._connected = True

    async def close(self) -> None:
        """Release backend connections."""
        if self._database is not None:
            await self._database.close()
        if self._redis is not None:
            await self._redis.aclose()
        self._connected = False
        logger.info("Digest service closed")

    async def __aenter__(self) -> "DigestService":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def load_document(self) -> PipelineConfigDocument:
        """Read the configuration store off the event loop."""
        return await asyncio.to_thread(self._store.load)

    def channels_for(self, config: PipelineRunConfig) -> dict[str, DistributionChannel]:
        """
        The service's distribution channels for a run with config.

        Only the Twitter channel is rebuilt, and only when tweet_format
        changes; every other breaker keeps its state.
        """
        if config.tweet_format != self._tweet_format:
            if "twitter" in self._channels:
                self._channels["twitter"] = build_twitter_channel(
                    self._settings, config.tweet_format
                )
            self._tweet_format = config.tweet_format
        return self._channels

    def create_pipeline(self, document: PipelineConfigDocument | None = None) -> DigestPipeline:
        """Build a pipeline from document, or the current store contents."""
        if document is None:
            document = self._store.load()
        config = document.pipeline
        return build_pipeline(
            config=config,
            source_keys=document.sources,
            collectors=self._collectors,
            gateways=self._gateways,
            synthesizer=self._synthesizer,
            repository=self._repository,
            channels=self.channels_for(config),
            notifier=self._notifier,
            notification_timeout=self._settings.notification_timeout_seconds,
            limits=self._limits,
        )

    async def run_once(self) -> PipelineRunResult:
        """
        Run one pipeline cycle outside the scheduler.

        Useful for testing or manual triggers.
        """
        await self.connect()
        pipeline = self.create_pipeline(await self.load_document())
        return await pipeline.run()

    async def sweep_cache(self) -> dict[str, int]:
        """Run the retention sweep once. Raises if any gateway failed."""
        await self.connect()
        await self._sweep_task.execute()
        return dict(self._sweep_task.last_deleted)

    def register_schedules(self) -> list[str]:
        """Register every schedule in the configuration store with the scheduler."""
        tasks: dict[str, ScheduledTask] = {
            DIGEST_TASK: self._digest_task,
            CACHE_SWEEP_TASK: self._sweep_task,
        }
        registered = []
        for schedule in self._store.get_schedules():
            task = tasks.get(schedule.name)
            if task is None:
                logger.warning("Schedule for unknown task ignored", task=schedule.name)
                continue
            self._scheduler.schedule_task(schedule, task)
            if self._scheduler.is_scheduled(schedule.name):
                registered.append(schedule.name)
        return registered

    async def start(self) -> None:
        """
        Start the service.

        Runs until stop() is called or the task is cancelled.
        """
        self._running = True
        self._stop_event.clear()
        logger.info("Starting digest service")

        await self.connect()
        try:
            registered = self.register_schedules()
            logger.info("Schedules registered", tasks=registered)
            await self._stop_event.wait()
        except asyncio.CancelledError:
            logger.info("Digest service cancelled")
        finally:
            await self._scheduler.shutdown()
            await self.close()
            self._running = False

    async def stop(self) -> None:
        """Stop the service gracefully."""
        logger.info("Stopping digest service")
        self._stop_event.set()

    async def health_check(self) -> dict[str, Any]:
        """
        Check health of the digest service.

        Returns:
            Dictionary with health status
        """
        collector_health = {}
        for source, collector in self._collectors.items():
            try:
                collector_health[source.value] = await collector.health_check()
            except Exception:
                collector_health[source.value] = False

        cache_health = {}
        for source, gateway in self._gateways.items():
            check = getattr(gateway, "health_check", None)
            try:
                cache_health[source.value] = await check() if check else True
            except Exception:
                cache_health[source.value] = False

        database_healthy = (
            await self._database.health_check() if self._database is not None else True
        )

        return {
            "running": self._running,
            "scheduled_tasks": self._scheduler.scheduled_tasks,
            "running_tasks": [e.to_dict() for e in self._scheduler.get_running_tasks()],
            "success_rate": {
                name: self._scheduler.get_task_stats(name).success_rate
                for name in (DIGEST_TASK, CACHE_SWEEP_TASK)
            },
            "database_healthy": database_healthy,
            "cache": cache_health,
            "collectors": collector_health,
        }
