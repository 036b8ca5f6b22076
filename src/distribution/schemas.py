"""Schemas handed to and returned by distribution channels."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.storage.schemas import Digest


class DigestView(BaseModel):
    """Minimal, channel-agnostic rendering input for one stored digest."""

    digest_id: str
    title: str
    summary: str = ""
    key_insights: list[str] = Field(default_factory=list)
    trending_topics: list[str] = Field(default_factory=list)
    confidence_score: float = 0.0
    sources_count: int = 0
    data_from: datetime
    data_to: datetime

    @classmethod
    def from_digest(cls, digest: Digest, sources_count: int = 0) -> "DigestView":
        if digest.id is None:
            raise ValueError("Digest must be persisted before it is distributed")
        return cls(
            digest_id=digest.id,
            title=digest.title,
            summary=digest.summary,
            key_insights=digest.key_insights,
            trending_topics=digest.trending_topics,
            confidence_score=float(digest.content.get("confidence_score", 0.0)),
            sources_count=sources_count,
            data_from=digest.data_from,
            data_to=digest.data_to,
        )


class DistributionResult(BaseModel):
    """Outcome of publishing a digest to one channel."""

    platform: str
    success: bool
    url: str | None = None
    error: str | None = None
