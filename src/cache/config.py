"""Cache gateway configuration.

Freshness thresholds are set per source type and can be overridden per
SourceKey. Retention windows drive the periodic sweep. All settings can
be overridden via ``CACHE_*`` environment variables.
"""

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.sources import DEFAULT_CACHE_OVERRIDES
from src.ingestion.schemas import SourceType


class CacheConfig(BaseSettings):
    """Freshness and retention settings for all cache gateways."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Freshness thresholds (hours before cached data is refetched)
    twitter_cache_hours: float = Field(default=4.0, gt=0, le=24)
    telegram_cache_hours: float = Field(default=4.0, gt=0, le=24)
    rss_cache_hours: float = Field(default=6.0, gt=0, le=24)

    # Per-key overrides, keyed "{source_type}:{source_key}" -> hours
    key_overrides: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_CACHE_OVERRIDES)
    )

    # Retention windows for the sweep task
    twitter_retention_days: int = Field(default=7, ge=1)
    telegram_retention_days: int = Field(default=7, ge=1)
    rss_retention_days: int = Field(default=30, ge=1)

    def threshold_for(self, source_type: SourceType, key: str) -> timedelta:
        """Freshness threshold for one key, honoring overrides."""
        override = self.key_overrides.get(f"{source_type.value}:{key}")
        if override is not None:
            return timedelta(hours=override)
        hours = {
            SourceType.TWITTER: self.twitter_cache_hours,
            SourceType.TELEGRAM: self.telegram_cache_hours,
            SourceType.RSS: self.rss_cache_hours,
        }[source_type]
        return timedelta(hours=hours)

    def retention_for(self, source_type: SourceType) -> timedelta:
        days = {
            SourceType.TWITTER: self.twitter_retention_days,
            SourceType.TELEGRAM: self.telegram_retention_days,
            SourceType.RSS: self.rss_retention_days,
        }[source_type]
        return timedelta(days=days)
