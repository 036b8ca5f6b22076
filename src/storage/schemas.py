"""Persisted digest model."""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from src.pipeline.schemas import TokenUsage

# Only these fields may change after a digest is stored.
MUTABLE_DIGEST_FIELDS = frozenset({"distribution_status", "distribution_urls"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_digest_id() -> str:
    return f"digest_{uuid.uuid4().hex}"


class Digest(BaseModel):
    """
    A synthesized, persisted summary of one pipeline run.

    Append-only: after insert only the distribution fields (and
    ``updated_at``) are ever written.
    """

    id: str | None = None
    title: str
    summary: str = ""
    content: dict[str, Any] = Field(default_factory=dict)
    ai_model: str
    ai_provider: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    data_from: datetime
    data_to: datetime
    distribution_status: dict[str, bool] = Field(default_factory=dict)
    distribution_urls: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def key_insights(self) -> list[str]:
        return list(self.content.get("key_insights", []))

    @property
    def trending_topics(self) -> list[str]:
        return list(self.content.get("trending_topics", []))
