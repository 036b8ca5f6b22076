"""Per-run pipeline configuration.

Supplied externally (configuration store or CLI) and frozen for the
lifetime of a run; the orchestrator only reads it.
"""

from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from src.ingestion.schemas import SourceType


class PipelineRunConfig(BaseModel):
    """What to collect, how to filter it, and where to send the result."""

    model_config = ConfigDict(frozen=True)

    # Data collection
    enable_twitter: bool = True
    enable_telegram: bool = True
    enable_rss: bool = True

    # Quality
    min_quality_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_content_age_hours: float = Field(default=24.0, gt=0)

    # Synthesis hints
    analysis_type: Literal["digest", "summary", "market_intelligence"] = "digest"
    ai_provider: Literal["anthropic", "openai"] = "anthropic"
    ai_model_name: str | None = None

    # Distribution
    post_to_slack: bool = False
    post_to_twitter: bool = False
    tweet_format: Literal["summary", "thread"] = "thread"

    @property
    def max_content_age(self) -> timedelta:
        return timedelta(hours=self.max_content_age_hours)

    def is_enabled(self, source_type: SourceType) -> bool:
        return {
            SourceType.TWITTER: self.enable_twitter,
            SourceType.TELEGRAM: self.enable_telegram,
            SourceType.RSS: self.enable_rss,
        }[source_type]

    @property
    def enabled_channels(self) -> list[str]:
        """Distribution channel names switched on for this run."""
        channels = []
        if self.post_to_slack:
            channels.append("slack")
        if self.post_to_twitter:
            channels.append("twitter")
        return channels
