"""Scheduler configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """Settings for the in-process cron scheduler."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        case_sensitive=False,
        extra="ignore",
    )

    history_size: int = Field(
        default=100,
        ge=1,
        description="Maximum finished executions kept in history (oldest evicted first)",
    )
    shutdown_timeout_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="How long shutdown() waits for in-flight executions",
    )
