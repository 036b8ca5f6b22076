"""
Digest pipeline orchestrator.

Runs one collect → filter → synthesize → persist → distribute → notify
cycle. The pipeline is a ScheduledTask, so the TaskScheduler drives it
on a cron trigger; it can also be run directly (CLI ``run-once``).

Failure policy:
- A failing SourceKey contributes zero items; the run continues
- Every attempted key failing, synthesis failing, or persistence
  failing is fatal (PipelineError)
- Distribution and notification failures are recorded, never fatal
"""

import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from src.cache.gateway import CacheGateway
from src.distribution.channels import DistributionChannel
from src.distribution.notifier import NotificationOutcome, OpsNotifier, send_bounded
from src.distribution.schemas import DigestView, DistributionResult
from src.ingestion.base_collector import BaseCollector, CollectorLimits
from src.ingestion.filters import filter_items
from src.ingestion.schemas import ContentItem, SourceType
from src.observability.metrics import MetricsCollector, get_metrics
from src.pipeline.config import PipelineRunConfig
from src.pipeline.errors import (
    CollectionError,
    PersistenceError,
    PipelineError,
    SynthesisError,
)
from src.pipeline.schemas import AnalysisRequest, AnalysisResult, AnalysisTimeframe
from src.pipeline.synthesis import SynthesisAdapter
from src.scheduler.schemas import ScheduledTask
from src.storage.repository import DigestRepository
from src.storage.schemas import Digest

logger = structlog.get_logger(__name__)


class PipelinePhase(str, Enum):
    INIT = "init"
    COLLECTING = "collecting"
    FILTERING = "filtering"
    SYNTHESIZING = "synthesizing"
    PERSISTING = "persisting"
    DISTRIBUTING = "distributing"
    NOTIFYING = "notifying"
    DONE = "done"
    FAILED = "failed"


class PipelineOutcome(str, Enum):
    COMPLETED = "completed"
    NO_CONTENT = "no_content"
    FAILED = "failed"


@dataclass
class SourceBinding:
    """Everything the pipeline needs to collect one source type."""

    source_type: SourceType
    collector: BaseCollector
    cache: CacheGateway
    keys: list[str]
    limits: CollectorLimits = field(default_factory=CollectorLimits)


@dataclass
class KeyFailure:
    source_type: SourceType
    source_key: str
    error: str


@dataclass
class PipelineRunResult:
    """
    Outcome of one pipeline run.

    ``outcome`` reports content-pipeline health; ``distribution_results``
    report distribution health separately.
    """

    run_id: str
    started_at: datetime
    outcome: PipelineOutcome = PipelineOutcome.FAILED
    phase: PipelinePhase = PipelinePhase.INIT
    finished_at: datetime | None = None
    collected: dict[str, int] = field(default_factory=dict)
    retained: dict[str, int] = field(default_factory=dict)
    cache_hits: int = 0
    key_failures: list[KeyFailure] = field(default_factory=list)
    digest_id: str | None = None
    distribution_results: list[DistributionResult] = field(default_factory=list)
    notification: NotificationOutcome = NotificationOutcome.SKIPPED
    error: PipelineError | None = None

    @property
    def success(self) -> bool:
        return self.outcome != PipelineOutcome.FAILED

    @property
    def total_collected(self) -> int:
        return sum(self.collected.values())

    @property
    def total_retained(self) -> int:
        return sum(self.retained.values())

    @property
    def elapsed_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "outcome": self.outcome.value,
            "phase": self.phase.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "elapsed_seconds": self.elapsed_seconds,
            "collected": self.collected,
            "retained": self.retained,
            "cache_hits": self.cache_hits,
            "key_failures": [
                {"source_type": f.source_type.value, "source_key": f.source_key, "error": f.error}
                for f in self.key_failures
            ],
            "digest_id": self.digest_id,
            "distribution": [r.model_dump() for r in self.distribution_results],
            "notification": self.notification.value,
            "error": str(self.error) if self.error else None,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DigestPipeline(ScheduledTask):
    """
    Orchestrates one digest cycle over injected collaborators.

    The run config is read, never modified. Phases run strictly in
    sequence; only the notification step is time-bounded.

    Usage:
        pipeline = DigestPipeline(
            config=PipelineRunConfig(post_to_slack=True),
            sources=[SourceBinding(SourceType.RSS, collector, cache, ["https://..."])],
            synthesizer=MockSynthesisAdapter(),
            repository=InMemoryDigestRepository(),
            channels={"slack": SlackDigestChannel(webhook_url)},
        )
        result = await pipeline.run()
    """

    def __init__(
        self,
        config: PipelineRunConfig,
        sources: Sequence[SourceBinding],
        synthesizer: SynthesisAdapter,
        repository: DigestRepository,
        channels: Mapping[str, DistributionChannel] | None = None,
        notifier: OpsNotifier | None = None,
        notification_timeout: float = 10.0,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._config = config
        self._sources = list(sources)
        self._synthesizer = synthesizer
        self._repository = repository
        self._channels = dict(channels or {})
        self._notifier = notifier
        self._notification_timeout = notification_timeout
        self._metrics = metrics or get_metrics()
        self._clock = clock or _utc_now

        self._phase = PipelinePhase.INIT
        self._phase_started = time.monotonic()
        self._last_result: PipelineRunResult | None = None

    @property
    def name(self) -> str:
        return "digest-pipeline"

    @property
    def estimated_duration_seconds(self) -> float:
        return 300.0

    @property
    def config(self) -> PipelineRunConfig:
        return self._config

    @property
    def phase(self) -> PipelinePhase:
        return self._phase

    @property
    def last_result(self) -> PipelineRunResult | None:
        return self._last_result

    async def execute(self) -> None:
        """Run one cycle; raise only if it ended in a fatal failure."""
        result = await self.run()
        if result.error is not None:
            raise result.error

    async def run(self) -> PipelineRunResult:
        """Run one cycle and report what happened. Fatal errors are captured."""
        result = PipelineRunResult(
            run_id=f"run_{uuid.uuid4().hex[:12]}",
            started_at=self._clock(),
        )
        self._last_result = result
        self._phase = PipelinePhase.INIT
        self._phase_started = time.monotonic()
        start = time.monotonic()
        log = logger.bind(run_id=result.run_id)
        log.info("Pipeline run started", sources=[s.source_type.value for s in self._sources])

        try:
            await self._run_phases(result, log)
        except PipelineError as e:
            result.phase = self._phase
            result.error = e
            result.outcome = PipelineOutcome.FAILED
            self._enter(PipelinePhase.FAILED)
            log.error("Pipeline run failed", phase=e.phase, error=str(e), exc_info=True)
            result.notification = await self._notify(
                self._notifier.notify_failure(str(e), e.phase) if self._notifier else None,
                log,
            )
        except Exception:
            result.phase = self._phase
            result.outcome = PipelineOutcome.FAILED
            self._enter(PipelinePhase.FAILED)
            log.exception("Pipeline run crashed")
            raise
        finally:
            result.finished_at = self._clock()
            self._metrics.record_pipeline_run(result.outcome.value, time.monotonic() - start)

        if result.success:
            result.phase = self._phase
            log.info(
                "Pipeline run finished",
                outcome=result.outcome.value,
                collected=result.total_collected,
                retained=result.total_retained,
                digest_id=result.digest_id,
                elapsed=round(time.monotonic() - start, 2),
            )
        return result

    # ── Phases ──────────────────────────────────────────────────

    def _enter(self, phase: PipelinePhase) -> None:
        now = time.monotonic()
        self._metrics.record_phase(self._phase.value, now - self._phase_started)
        self._phase = phase
        self._phase_started = now

    async def _run_phases(self, result: PipelineRunResult, log: Any) -> None:
        self._enter(PipelinePhase.COLLECTING)
        collected = await self._collect(result, log)
        if result.total_collected == 0:
            log.info("No content collected, skipping synthesis")
            result.outcome = PipelineOutcome.NO_CONTENT
            self._enter(PipelinePhase.DONE)
            return

        self._enter(PipelinePhase.FILTERING)
        now = self._clock()
        retained = self._filter(collected, result, now)
        if result.total_retained == 0:
            log.info(
                "No content passed quality filter",
                min_quality=self._config.min_quality_threshold,
                max_age_hours=self._config.max_content_age_hours,
            )
            result.outcome = PipelineOutcome.NO_CONTENT
            self._enter(PipelinePhase.DONE)
            return

        self._enter(PipelinePhase.SYNTHESIZING)
        request = AnalysisRequest(
            content=retained,
            timeframe=AnalysisTimeframe(from_=now - self._config.max_content_age, to=now),
            analysis_type=self._config.analysis_type,
            ai_provider=self._config.ai_provider,
            ai_model_name=self._config.ai_model_name,
        )
        analysis = await self._synthesize(request, log)

        self._enter(PipelinePhase.PERSISTING)
        digest = await self._persist(request, analysis, result, log)

        self._enter(PipelinePhase.DISTRIBUTING)
        await self._distribute(digest, result, log)

        self._enter(PipelinePhase.NOTIFYING)
        result.outcome = PipelineOutcome.COMPLETED
        result.notification = await self._notify(
            self._notifier.notify_complete(
                digest.title,
                result.digest_id,
                result.distribution_results,
                {
                    "sources_count": result.total_retained,
                    "tokens": analysis.token_usage.total_tokens,
                },
            ) if self._notifier else None,
            log,
        )
        self._enter(PipelinePhase.DONE)

    async def _collect(
        self, result: PipelineRunResult, log: Any
    ) -> dict[SourceType, list[ContentItem]]:
        collected: dict[SourceType, list[ContentItem]] = {}
        attempted = 0

        for binding in self._sources:
            if not self._config.is_enabled(binding.source_type):
                log.debug("Source type disabled", source_type=binding.source_type.value)
                continue

            items: list[ContentItem] = []
            for key in binding.keys:
                attempted += 1
                try:
                    items.extend(await self._collect_key(binding, key, result))
                except Exception as e:
                    log.warning(
                        "Source key failed",
                        source_type=binding.source_type.value,
                        source_key=key,
                        error=str(e),
                    )
                    self._metrics.record_source_error(binding.source_type, type(e).__name__)
                    result.key_failures.append(
                        KeyFailure(binding.source_type, key, str(e))
                    )

            collected[binding.source_type] = items
            result.collected[binding.source_type.value] = len(items)
            self._metrics.record_collection(binding.source_type, len(items))

        if attempted and len(result.key_failures) == attempted:
            raise CollectionError(f"All {attempted} source keys failed")
        return collected

    async def _collect_key(
        self, binding: SourceBinding, key: str, result: PipelineRunResult
    ) -> list[ContentItem]:
        fresh = await binding.cache.is_fresh(key)
        self._metrics.record_cache_lookup(binding.source_type, fresh)
        if fresh:
            result.cache_hits += 1
            return await binding.cache.read(key)

        items = await binding.collector.fetch(key, binding.limits)
        await binding.cache.write(key, items)
        return items

    def _filter(
        self,
        collected: dict[SourceType, list[ContentItem]],
        result: PipelineRunResult,
        now: datetime,
    ) -> dict[SourceType, list[ContentItem]]:
        retained: dict[SourceType, list[ContentItem]] = {}
        for source_type, items in collected.items():
            kept = filter_items(
                items,
                self._config.min_quality_threshold,
                self._config.max_content_age,
                now,
            )
            retained[source_type] = kept
            result.retained[source_type.value] = len(kept)
            self._metrics.record_retained(source_type, len(kept))
        return retained

    async def _synthesize(self, request: AnalysisRequest, log: Any) -> AnalysisResult:
        log.info(
            "Synthesizing digest",
            items=request.total_items,
            analysis_type=self._config.analysis_type,
            provider=self._config.ai_provider,
        )
        try:
            analysis = await self._synthesizer.analyze(request, self._config.analysis_type)
        except Exception as e:
            raise SynthesisError(f"Synthesis failed: {e}") from e

        self._metrics.record_synthesis_tokens(
            analysis.model_info.model, analysis.token_usage.total_tokens
        )
        return analysis

    async def _persist(
        self,
        request: AnalysisRequest,
        analysis: AnalysisResult,
        result: PipelineRunResult,
        log: Any,
    ) -> Digest:
        try:
            digest = Digest(
                title=analysis.analysis.title,
                summary=analysis.analysis.executive_summary,
                content={
                    **analysis.analysis.model_dump(),
                    "metadata": {
                        "total_items": request.total_items,
                        "source_breakdown": request.source_breakdown,
                        "processing_time_ms": analysis.processing_time_ms,
                    },
                },
                ai_model=analysis.model_info.model,
                ai_provider=analysis.model_info.provider,
                token_usage=analysis.token_usage,
                data_from=request.timeframe.from_,
                data_to=request.timeframe.to,
            )
            digest_id = await self._repository.insert(digest)
        except Exception as e:
            raise PersistenceError(f"Failed to store digest: {e}") from e

        result.digest_id = digest_id
        log.info("Digest stored", digest_id=digest_id, title=digest.title)
        return digest.model_copy(update={"id": digest_id})

    async def _distribute(self, digest: Digest, result: PipelineRunResult, log: Any) -> None:
        view = DigestView.from_digest(digest, sources_count=result.total_retained)

        for name in self._config.enabled_channels:
            channel = self._channels.get(name)
            if channel is None:
                log.warning("Distribution channel enabled but not configured", channel=name)
                continue

            try:
                outcome = await channel.send(view)
            except Exception as e:
                log.warning("Distribution raised", channel=name, error=str(e), exc_info=True)
                outcome = DistributionResult(platform=name, success=False, error=str(e))

            result.distribution_results.append(outcome)
            self._metrics.record_distribution(name, outcome.success)

        succeeded = [r for r in result.distribution_results if r.success]
        if not succeeded:
            return

        fields = {
            "distribution_status": {r.platform: True for r in succeeded},
            "distribution_urls": {r.platform: r.url for r in succeeded if r.url},
        }
        try:
            await self._repository.update(digest.id, fields)
        except Exception as e:
            log.warning(
                "Failed to record distribution status",
                digest_id=digest.id,
                error=str(e),
            )

    async def _notify(self, notification: Any, log: Any) -> NotificationOutcome:
        outcome = await send_bounded(notification, self._notification_timeout)
        self._metrics.record_notification(outcome.value)
        log.debug("Notification finished", outcome=outcome.value)
        return outcome
