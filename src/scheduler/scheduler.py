"""
In-process cron scheduler for pipeline tasks.

Runs every registered task on its own cron trigger inside one asyncio
event loop:
- Concurrency guard: a tick is skipped (not queued) while the task
  already has ``max_concurrent_runs`` executions in flight
- Retries: failed executions are re-run after a delay on a separate
  asyncio task, so trigger loops never wait on a retry
- History: bounded, most-recent-first record of finished executions

Task exceptions stop at this boundary. They are visible only through
TaskExecution state, logs, and metrics.
"""

import asyncio
import uuid
from collections import deque
from collections.abc import Coroutine
from datetime import datetime, timezone
from typing import Any

import structlog
from croniter import croniter

from src.observability.logging import bind_execution_context
from src.observability.metrics import MetricsCollector, get_metrics
from src.scheduler.backoff import retry_delay
from src.scheduler.config import SchedulerConfig
from src.scheduler.schemas import (
    ScheduleConfig,
    ScheduledTask,
    TaskExecution,
    TaskStats,
    TaskStatus,
)

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _generate_execution_id() -> str:
    return f"exec_{int(_utc_now().timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


def next_fire_time(config: ScheduleConfig, after: datetime | None = None) -> datetime:
    """
    Next cron fire time strictly after ``after``, in the config's timezone.

    Args:
        config: Schedule to evaluate
        after: Reference time (defaults to now)

    Returns:
        Timezone-aware datetime of the next tick
    """
    tz = config.tzinfo
    start = (after or _utc_now()).astimezone(tz)
    return croniter(config.cron_pattern, start).get_next(datetime)


class TaskScheduler:
    """
    Cron-driven task scheduler with concurrency guard, retries, and history.

    One instance is created by the composition root and shared by
    reference; it is not a module-level singleton.

    Usage:
        scheduler = TaskScheduler()
        scheduler.schedule_task(
            ScheduleConfig(name="digest-pipeline", cron_pattern="0 * * * *"),
            pipeline,
        )
        ...
        await scheduler.shutdown()
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._config = config or SchedulerConfig()
        self._metrics = metrics or get_metrics()

        self._jobs: dict[str, asyncio.Task] = {}
        self._schedules: dict[str, tuple[ScheduleConfig, ScheduledTask]] = {}
        self._running: dict[str, dict[str, TaskExecution]] = {}
        self._history: deque[TaskExecution] = deque(maxlen=self._config.history_size)

        self._inflight: set[asyncio.Task] = set()
        self._retry_tasks: set[asyncio.Task] = set()

    # ── Registration ────────────────────────────────────────────

    def schedule_task(self, config: ScheduleConfig, task: ScheduledTask) -> None:
        """
        Register or replace the cron trigger for ``config.name``.

        Disabled configs install no trigger. Must be called with a
        running event loop.
        """
        if config.name in self._jobs:
            logger.warning("Task already scheduled, replacing", task=config.name)
            self.unschedule_task(config.name)

        if not config.enabled:
            logger.info("Task disabled, skipping schedule", task=config.name)
            return

        self._schedules[config.name] = (config, task)
        self._jobs[config.name] = asyncio.create_task(
            self._trigger_loop(config, task),
            name=f"cron_{config.name}",
        )
        logger.info(
            "Scheduled task",
            task=config.name,
            cron=config.cron_pattern,
            timezone=config.timezone,
            next_run=next_fire_time(config).isoformat(),
        )

    def unschedule_task(self, name: str) -> None:
        """Tear down the trigger for ``name``. Safe on unknown names."""
        self._schedules.pop(name, None)
        job = self._jobs.pop(name, None)
        if job is not None:
            job.cancel()
            logger.info("Unscheduled task", task=name)

    def is_scheduled(self, name: str) -> bool:
        return name in self._jobs

    @property
    def scheduled_tasks(self) -> list[str]:
        return list(self._jobs)

    def stop_all(self) -> None:
        """Cancel every cron trigger. In-flight executions keep running."""
        for name in list(self._jobs):
            self.unschedule_task(name)

    async def shutdown(self, timeout: float | None = None) -> None:
        """
        Stop triggers, cancel pending retries, and wait for in-flight runs.

        Executions still running after ``timeout`` are cancelled.
        """
        self.stop_all()

        for retry in list(self._retry_tasks):
            retry.cancel()

        timeout = self._config.shutdown_timeout_seconds if timeout is None else timeout
        pending = list(self._inflight)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for t in still_running:
                t.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        logger.info("Scheduler stopped")

    async def join(self) -> None:
        """Wait until no executions or retries are in flight."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ── Triggering ──────────────────────────────────────────────

    async def _trigger_loop(self, config: ScheduleConfig, task: ScheduledTask) -> None:
        last_fire: datetime | None = None
        while True:
            now = _utc_now()
            after = max(now, last_fire) if last_fire else now
            fire_at = next_fire_time(config, after)

            delay = (fire_at - _utc_now()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)

            last_fire = fire_at
            self._on_tick(config, task)

    def run_now(self, name: str) -> TaskExecution | None:
        """
        Trigger a scheduled task immediately, outside its cron cadence.

        Subject to the same concurrency guard as a cron tick.

        Raises:
            KeyError: no enabled schedule is registered under ``name``
        """
        if name not in self._schedules:
            raise KeyError(f"Task not scheduled: {name}")
        config, task = self._schedules[name]
        return self._on_tick(config, task)

    def _on_tick(self, config: ScheduleConfig, task: ScheduledTask) -> TaskExecution | None:
        running = self._running.setdefault(config.name, {})
        if len(running) >= config.max_concurrent_runs:
            logger.warning(
                "Task already running, skipping execution",
                task=config.name,
                in_flight=len(running),
                max_concurrent_runs=config.max_concurrent_runs,
            )
            self._metrics.record_skipped_tick(config.name)
            return None

        execution = TaskExecution(
            task_name=config.name,
            execution_id=_generate_execution_id(),
            start_time=_utc_now(),
        )
        running[execution.execution_id] = execution
        self._metrics.set_tasks_running(config.name, len(running))

        self._spawn(
            self._execute(config, task, execution),
            name=f"exec_{config.name}_{execution.execution_id}",
        )
        return execution

    def _spawn(
        self,
        coro: Coroutine[Any, Any, None],
        name: str,
        retry: bool = False,
    ) -> asyncio.Task:
        t = asyncio.create_task(coro, name=name)
        self._inflight.add(t)
        t.add_done_callback(self._inflight.discard)
        if retry:
            self._retry_tasks.add(t)
            t.add_done_callback(self._retry_tasks.discard)
        return t

    # ── Execution ───────────────────────────────────────────────

    async def _execute(
        self,
        config: ScheduleConfig,
        task: ScheduledTask,
        execution: TaskExecution,
    ) -> None:
        execution.status = TaskStatus.RUNNING
        bind_execution_context(config.name, execution.execution_id)
        logger.info(
            "Starting task execution",
            task=config.name,
            execution_id=execution.execution_id,
            attempt=execution.retry_count + 1,
        )

        try:
            await task.execute()

        except asyncio.CancelledError:
            execution.status = TaskStatus.FAILED
            execution.error = "cancelled"
            execution.end_time = _utc_now()
            self._finish(config, execution)
            raise

        except Exception as e:
            execution.error = str(e) or type(e).__name__
            logger.error(
                "Task failed",
                task=config.name,
                execution_id=execution.execution_id,
                error=execution.error,
                exc_info=True,
            )

            if execution.retry_count < config.retry_attempts:
                execution.status = TaskStatus.RETRYING
                execution.retry_count += 1
                delay = self._retry_delay(config, execution)

                logger.info(
                    "Retrying task",
                    task=config.name,
                    execution_id=execution.execution_id,
                    delay_seconds=round(delay, 2),
                    attempt=execution.retry_count,
                    max_retries=config.retry_attempts,
                )
                self._metrics.record_task_execution(config.name, TaskStatus.RETRYING.value)
                self._spawn(
                    self._retry_after(delay, config, task, execution),
                    name=f"retry_{config.name}_{execution.execution_id}",
                    retry=True,
                )
                return

            execution.status = TaskStatus.FAILED

        else:
            execution.status = TaskStatus.COMPLETED

        execution.end_time = _utc_now()
        self._finish(config, execution)

    async def _retry_after(
        self,
        delay: float,
        config: ScheduleConfig,
        task: ScheduledTask,
        execution: TaskExecution,
    ) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            execution.status = TaskStatus.FAILED
            execution.error = f"{execution.error} (retry cancelled)"
            execution.end_time = _utc_now()
            self._finish(config, execution)
            raise

        await self._execute(config, task, execution)

    def _retry_delay(self, config: ScheduleConfig, execution: TaskExecution) -> float:
        return retry_delay(
            execution.retry_count,
            base_delay=config.retry_delay_seconds,
            multiplier=config.retry_backoff_multiplier,
            max_delay=config.max_retry_delay_seconds,
        )

    def _finish(self, config: ScheduleConfig, execution: TaskExecution) -> None:
        running = self._running.get(config.name, {})
        running.pop(execution.execution_id, None)
        self._metrics.set_tasks_running(config.name, len(running))

        # deque(maxlen) evicts from the right, i.e. the oldest entry
        self._history.appendleft(execution)

        self._metrics.record_task_execution(
            config.name,
            execution.status.value,
            duration=execution.duration_seconds,
        )

        log = logger.info if execution.status == TaskStatus.COMPLETED else logger.error
        log(
            "Task execution finished",
            task=config.name,
            execution_id=execution.execution_id,
            status=execution.status.value,
            retries=execution.retry_count,
            duration_seconds=round(execution.duration_seconds or 0.0, 2),
        )

    # ── Introspection ───────────────────────────────────────────

    def get_running_tasks(self) -> list[TaskExecution]:
        """Executions currently running or waiting for a retry."""
        return [e for running in self._running.values() for e in running.values()]

    def get_task_history(self, limit: int | None = None) -> list[TaskExecution]:
        """Finished executions, most recent first."""
        history = list(self._history)
        return history[:limit] if limit else history

    def get_task_stats(self, name: str | None = None) -> TaskStats:
        """
        Success rate and mean duration over the retained history.

        Args:
            name: Restrict to one task name
        """
        history = [e for e in self._history if name is None or e.task_name == name]
        if not history:
            return TaskStats()

        completed = [e for e in history if e.status == TaskStatus.COMPLETED]
        failed = [e for e in history if e.status == TaskStatus.FAILED]
        durations = [
            e.duration_seconds for e in completed if e.duration_seconds is not None
        ]

        return TaskStats(
            total_executions=len(history),
            completed=len(completed),
            failed=len(failed),
            success_rate=len(completed) / len(history),
            average_duration_seconds=sum(durations) / len(durations) if durations else 0.0,
            last_execution=history[0],
        )
