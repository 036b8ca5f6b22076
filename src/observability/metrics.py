"""
Prometheus metrics for monitoring the digest pipeline and scheduler.

Defines and exposes metrics for:
- Pipeline runs and phase latency
- Per-source collection, cache hits, and key failures
- Synthesis token usage
- Distribution and notification outcomes
- Scheduler executions and skipped ticks

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings
from src.ingestion.schemas import SourceType

logger = logging.getLogger(__name__)

# Buckets for phase latency histograms (in seconds)
LATENCY_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)


def _label(source_type: SourceType | str) -> str:
    return source_type.value if isinstance(source_type, SourceType) else source_type


class MetricsCollector:
    """
    Prometheus metrics collector for the digest pipeline.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_pipeline_run("completed", latency=42.0)
        metrics.record_cache_lookup(SourceType.RSS, hit=True)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Pipeline
        self.pipeline_runs = Counter(
            "digest_pipeline_runs_total",
            "Total pipeline runs by terminal outcome",
            ["outcome"],  # completed, no_content, failed
        )

        self.pipeline_latency = Histogram(
            "digest_pipeline_run_latency_seconds",
            "End-to-end pipeline run duration",
            buckets=LATENCY_BUCKETS,
        )

        self.phase_latency = Histogram(
            "digest_pipeline_phase_latency_seconds",
            "Duration of individual pipeline phases",
            ["phase"],
            buckets=LATENCY_BUCKETS,
        )

        # Collection
        self.items_collected = Counter(
            "digest_pipeline_items_collected_total",
            "Items collected per source type (cached or fetched)",
            ["source_type"],
        )

        self.items_retained = Counter(
            "digest_pipeline_items_retained_total",
            "Items retained after the quality/age filter",
            ["source_type"],
        )

        self.cache_lookups = Counter(
            "digest_pipeline_cache_lookups_total",
            "Cache freshness lookups",
            ["source_type", "result"],  # hit, miss
        )

        self.source_errors = Counter(
            "digest_pipeline_source_errors_total",
            "Per-key collection failures",
            ["source_type", "error_type"],
        )

        # Synthesis
        self.synthesis_tokens = Counter(
            "digest_pipeline_synthesis_tokens_total",
            "Tokens consumed by synthesis calls",
            ["model"],
        )

        # Distribution / notification
        self.distribution_attempts = Counter(
            "digest_pipeline_distribution_attempts_total",
            "Distribution attempts by channel",
            ["channel", "status"],  # success, failure
        )

        self.notifications = Counter(
            "digest_pipeline_notifications_total",
            "Operational notifications by outcome",
            ["outcome"],  # sent, failed, timed_out, skipped
        )

        # Scheduler
        self.task_executions = Counter(
            "digest_scheduler_task_executions_total",
            "Scheduled task attempts by final status",
            ["task", "status"],  # completed, failed, retrying
        )

        self.skipped_ticks = Counter(
            "digest_scheduler_skipped_ticks_total",
            "Cron ticks skipped by the concurrency guard",
            ["task"],
        )

        self.task_duration = Histogram(
            "digest_scheduler_task_duration_seconds",
            "Scheduled task execution duration",
            ["task"],
            buckets=LATENCY_BUCKETS,
        )

        self.tasks_running = Gauge(
            "digest_scheduler_tasks_running",
            "Executions currently in flight",
            ["task"],
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_pipeline_run(self, outcome: str, latency: float | None = None) -> None:
        """
        Record a finished pipeline run.

        Args:
            outcome: Terminal outcome
            latency: Run duration in seconds
        """
        self.pipeline_runs.labels(outcome=outcome).inc()
        if latency is not None:
            self.pipeline_latency.observe(latency)

    def record_phase(self, phase: str, latency: float) -> None:
        self.phase_latency.labels(phase=phase).observe(latency)

    def record_collection(self, source_type: SourceType | str, count: int) -> None:
        self.items_collected.labels(source_type=_label(source_type)).inc(count)

    def record_retained(self, source_type: SourceType | str, count: int) -> None:
        self.items_retained.labels(source_type=_label(source_type)).inc(count)

    def record_cache_lookup(self, source_type: SourceType | str, hit: bool) -> None:
        """
        Record a cache freshness check.

        Args:
            source_type: Source type of the gateway
            hit: True if cached data was fresh
        """
        self.cache_lookups.labels(
            source_type=_label(source_type),
            result="hit" if hit else "miss",
        ).inc()

    def record_source_error(self, source_type: SourceType | str, error_type: str) -> None:
        self.source_errors.labels(
            source_type=_label(source_type),
            error_type=error_type,
        ).inc()

    def record_synthesis_tokens(self, model: str, tokens: int) -> None:
        if tokens > 0:
            self.synthesis_tokens.labels(model=model).inc(tokens)

    def record_distribution(self, channel: str, success: bool) -> None:
        self.distribution_attempts.labels(
            channel=channel,
            status="success" if success else "failure",
        ).inc()

    def record_notification(self, outcome: str) -> None:
        self.notifications.labels(outcome=outcome).inc()

    def record_task_execution(
        self,
        task: str,
        status: str,
        duration: float | None = None,
    ) -> None:
        """
        Record a scheduler attempt outcome.

        Args:
            task: Task name
            status: completed, failed, or retrying
            duration: Execution duration in seconds (final outcomes only)
        """
        self.task_executions.labels(task=task, status=status).inc()
        if duration is not None:
            self.task_duration.labels(task=task).observe(duration)

    def record_skipped_tick(self, task: str) -> None:
        self.skipped_ticks.labels(task=task).inc()

    def set_tasks_running(self, task: str, count: int) -> None:
        self.tasks_running.labels(task=task).set(count)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
