"""
Cron scheduler for pipeline tasks.

Classes:
    TaskScheduler: cron triggers, concurrency guard, retries, history
    ScheduleConfig: cadence and retry policy for one task
    ScheduledTask: contract every schedulable task implements
    TaskExecution: one execution (including its retries)

Example:
    from src.scheduler import ScheduleConfig, TaskScheduler

    scheduler = TaskScheduler()
    scheduler.schedule_task(
        ScheduleConfig(name="digest-pipeline", cron_pattern="0 * * * *", retry_attempts=2),
        pipeline,
    )
"""

from src.scheduler.config import SchedulerConfig
from src.scheduler.scheduler import TaskScheduler, next_fire_time
from src.scheduler.schemas import (
    ScheduleConfig,
    ScheduledTask,
    TaskExecution,
    TaskStats,
    TaskStatus,
)

__all__ = [
    "ScheduleConfig",
    "ScheduledTask",
    "SchedulerConfig",
    "TaskExecution",
    "TaskScheduler",
    "TaskStats",
    "TaskStatus",
    "next_fire_time",
]
