"""
Canonical content schema for the digest pipeline.

Every collector outputs ContentItem instances; the cache gateways store
them, the quality/age filter consumes them, and the synthesis request is
built from them. Keep field names stable across all of those layers.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SourceType(str, Enum):
    """Supported source categories."""

    TWITTER = "twitter"  # social posts
    TELEGRAM = "telegram"  # channel messages
    RSS = "rss"  # feed articles


class EngagementMetrics(BaseModel):
    """
    Source-normalized engagement signals.

    Twitter fills likes/shares/comments, Telegram fills views,
    feed articles usually carry nothing.
    """

    model_config = ConfigDict(frozen=True)

    likes: int = Field(default=0, ge=0, description="Likes or reactions")
    shares: int = Field(default=0, ge=0, description="Retweets, quotes, forwards")
    comments: int = Field(default=0, ge=0, description="Replies or comments")
    views: int | None = Field(default=None, ge=0, description="View count if available")

    @property
    def engagement_score(self) -> float:
        """Simple weighted engagement heuristic."""
        return float(self.likes + (self.shares * 2) + self.comments)


class ContentItem(BaseModel):
    """
    CANONICAL CONTENT ITEM

    Immutable once produced by a collector. ``quality_score`` is computed
    by source-specific heuristics upstream and consumed uniformly by the
    quality/age filter.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    # Identity
    id: str = Field(..., min_length=1, description="Source-native item identifier")
    source_type: SourceType = Field(..., description="Source category")
    source_key: str = Field(
        ...,
        min_length=1,
        description="Account handle, channel name, or feed URL the item came from",
    )
    url: str | None = Field(default=None, description="Original content URL")

    # Timestamps
    timestamp: datetime = Field(..., description="UTC creation/publication time")
    fetched_at: datetime = Field(
        default_factory=_utc_now,
        description="UTC time the collector fetched the item",
    )

    # Content
    text: str = Field(..., min_length=1, description="Cleaned text content")
    title: str | None = Field(default=None, description="Article title, if any")
    author: str | None = Field(default=None, description="Author display name or handle")

    # Signals
    quality_score: float = Field(..., ge=0.0, le=1.0)
    engagement: EngagementMetrics = Field(default_factory=EngagementMetrics)

    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp", "fetched_at")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        """Interpret naive datetimes as UTC."""
        return _ensure_utc(v)

    @field_validator("text", mode="before")
    @classmethod
    def normalize_text(cls, v: Any) -> Any:
        """Collapse whitespace before the length check runs."""
        if isinstance(v, str):
            return " ".join(v.split())
        return v

    @property
    def dedup_key(self) -> str:
        """
        Natural de-duplication key.

        Feed articles are keyed by link (the same article can be served
        under different GUIDs); everything else by a composite id.
        """
        if self.source_type == SourceType.RSS and self.url:
            return self.url
        return f"{self.source_type.value}_{self.id}"

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed since the item was created."""
        return (now or _utc_now()) - self.timestamp


class CacheRecord(BaseModel):
    """
    Cached fetch result for one SourceKey.

    Overwritten wholesale on every collector write-back.
    """

    source_type: SourceType
    source_key: str
    items: list[ContentItem] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=_utc_now)

    @field_validator("fetched_at")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or _utc_now()) - self.fetched_at
