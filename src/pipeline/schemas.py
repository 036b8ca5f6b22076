"""Synthesis request/response models.

The synthesis adapter is opaque: it receives an AnalysisRequest and
must return something that validates as an AnalysisResult.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.ingestion.schemas import ContentItem, SourceType


class AnalysisTimeframe(BaseModel):
    """Provenance window of the content handed to synthesis."""

    from_: datetime = Field(..., alias="from")
    to: datetime

    model_config = ConfigDict(populate_by_name=True)


class AnalysisRequest(BaseModel):
    """Normalized content plus hints for one synthesis call."""

    content: dict[SourceType, list[ContentItem]] = Field(default_factory=dict)
    timeframe: AnalysisTimeframe
    analysis_type: str = "digest"
    ai_provider: str | None = None
    ai_model_name: str | None = None

    @property
    def total_items(self) -> int:
        return sum(len(items) for items in self.content.values())

    @property
    def source_breakdown(self) -> dict[str, int]:
        return {source.value: len(items) for source, items in self.content.items()}

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready body for remote analysis endpoints."""
        return {
            "analysis_type": self.analysis_type,
            "ai_provider": self.ai_provider,
            "ai_model_name": self.ai_model_name,
            "timeframe": self.timeframe.model_dump(mode="json", by_alias=True),
            "content": {
                source.value: [item.model_dump(mode="json") for item in items]
                for source, items in self.content.items()
            },
            "metadata": {
                "total_items": self.total_items,
                "source_breakdown": self.source_breakdown,
            },
        }


class DigestAnalysis(BaseModel):
    """Structured synthesis output. Unknown fields are preserved."""

    model_config = ConfigDict(extra="allow")

    title: str = Field(..., min_length=1)
    executive_summary: str = ""
    key_insights: list[str] = Field(default_factory=list)
    trending_topics: list[str] = Field(default_factory=list)
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)


class TokenUsage(BaseModel):
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0.0)


class ModelInfo(BaseModel):
    provider: str
    model: str


class AnalysisResult(BaseModel):
    """Synthesis output with token/cost accounting and model identity."""

    analysis: DigestAnalysis
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_info: ModelInfo
    processing_time_ms: int = Field(default=0, ge=0)
