"""Data models for the task scheduler."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import BaseModel, Field, field_validator, model_validator


class TaskStatus(str, Enum):
    """Lifecycle of a single task execution."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class ScheduleConfig(BaseModel):
    """
    Cron cadence and failure policy for one registered task.

    Keyed by ``name``; registering a config with an existing name
    replaces the previous schedule.
    """

    name: str = Field(..., min_length=1)
    cron_pattern: str = Field(..., description="Five-field cron expression")
    enabled: bool = True
    timezone: str = "UTC"
    max_concurrent_runs: int = Field(default=1, ge=1)
    retry_attempts: int = Field(default=0, ge=0, le=20)
    retry_delay_seconds: float = Field(default=60.0, ge=0.0)
    retry_backoff_multiplier: float = Field(
        default=1.0,
        ge=1.0,
        description="1.0 keeps the retry delay fixed; >1 grows it per retry",
    )
    max_retry_delay_seconds: float = Field(default=3600.0, ge=0.0)

    @field_validator("cron_pattern")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        v = " ".join(v.split())
        if not croniter.is_valid(v):
            raise ValueError(f"Invalid cron pattern: {v!r}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "ScheduleConfig":
        if self.max_retry_delay_seconds < self.retry_delay_seconds:
            self.max_retry_delay_seconds = self.retry_delay_seconds
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class TaskExecution:
    """
    One scheduler-invoked execution of a task, including its retries.

    Mutated only by the scheduler. Retries reuse the same execution
    (same ``execution_id``) and bump ``retry_count``.
    """

    task_name: str
    execution_id: str
    start_time: datetime
    status: TaskStatus = TaskStatus.RUNNING
    retry_count: int = 0
    end_time: datetime | None = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    @property
    def is_in_flight(self) -> bool:
        return self.status in (TaskStatus.RUNNING, TaskStatus.RETRYING)

    def to_dict(self) -> dict:
        return {
            "task_name": self.task_name,
            "execution_id": self.execution_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class TaskStats:
    """Aggregates over the execution history."""

    total_executions: int = 0
    completed: int = 0
    failed: int = 0
    success_rate: float = 0.0
    average_duration_seconds: float = 0.0
    last_execution: TaskExecution | None = None


class ScheduledTask(ABC):
    """
    Contract for anything the scheduler can run.

    ``name`` and ``estimated_duration_seconds`` are labels only; the
    scheduler never uses them for timing decisions.
    """

    @abstractmethod
    async def execute(self) -> None:
        """Run the task once. Raise to signal failure."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable task name."""

    @property
    def estimated_duration_seconds(self) -> float:
        return 60.0
