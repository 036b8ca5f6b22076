"""Synthesis adapters.

The analysis model is an external collaborator. The pipeline only knows
the ``SynthesisAdapter`` contract: hand over an AnalysisRequest, get an
AnalysisResult back or an exception.
"""

import logging
import time
from abc import ABC, abstractmethod

import httpx
from pydantic import ValidationError

from src.pipeline.schemas import (
    AnalysisRequest,
    AnalysisResult,
    DigestAnalysis,
    ModelInfo,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "anthropic": "claude-3-5-sonnet-latest",
    "openai": "gpt-4o",
}


class SynthesisAdapter(ABC):
    """Abstract synthesis backend."""

    @abstractmethod
    async def analyze(
        self, request: AnalysisRequest, analysis_type: str
    ) -> AnalysisResult:
        """Synthesize a digest analysis from the request content.

        Raises:
            Any exception on failure; the pipeline treats it as fatal.
        """


class HttpSynthesisAdapter(SynthesisAdapter):
    """Posts the analysis request to a remote analysis endpoint.

    The endpoint receives the request payload as JSON and must answer
    with a body that validates as ``AnalysisResult``. Creates a new
    ``httpx.AsyncClient`` per call.
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def analyze(
        self, request: AnalysisRequest, analysis_type: str
    ) -> AnalysisResult:
        payload = request.to_payload()
        payload["analysis_type"] = analysis_type

        logger.info(
            "Requesting %s analysis of %d items from %s",
            analysis_type, request.total_items, self._url,
        )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(self._url, json=payload, headers=self._headers())
            resp.raise_for_status()

        try:
            return AnalysisResult.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise ValueError(f"Invalid analysis response from {self._url}: {e}") from e


class MockSynthesisAdapter(SynthesisAdapter):
    """Deterministic synthesis for tests and ``--mock`` runs.

    Builds the digest from the request itself: the most engaging item
    texts become key insights, and token usage scales with input size.
    """

    def __init__(self, fail_with: Exception | None = None) -> None:
        self._fail_with = fail_with
        self.requests: list[AnalysisRequest] = []

    async def analyze(
        self, request: AnalysisRequest, analysis_type: str
    ) -> AnalysisResult:
        self.requests.append(request)
        if self._fail_with is not None:
            raise self._fail_with

        start = time.monotonic()
        items = [item for batch in request.content.values() for item in batch]
        items.sort(key=lambda i: i.engagement.engagement_score, reverse=True)

        insights = [item.title or item.text[:140] for item in items[:5]]
        topics = sorted({
            word.lstrip("#$").lower()
            for item in items
            for word in item.text.split()
            if word.startswith(("#", "$")) and len(word) > 1
        })[:10]

        provider = request.ai_provider or "anthropic"
        model = request.ai_model_name or DEFAULT_MODELS.get(provider, "mock")
        input_tokens = sum(len(item.text.split()) for item in items)
        output_tokens = sum(len(text.split()) for text in insights)

        breakdown = ", ".join(
            f"{count} {source}" for source, count in request.source_breakdown.items()
        )
        analysis = DigestAnalysis(
            title=f"{analysis_type.replace('_', ' ').title()}: {request.total_items} items",
            executive_summary=f"Synthesized from {breakdown}.",
            key_insights=insights,
            trending_topics=topics,
            confidence_score=min(1.0, 0.5 + 0.05 * len(items)),
        )
        return AnalysisResult(
            analysis=analysis,
            token_usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            model_info=ModelInfo(provider=provider, model=model),
            processing_time_ms=int((time.monotonic() - start) * 1000),
        )
