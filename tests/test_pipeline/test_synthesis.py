"""Tests for synthesis adapters and request models."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import ValidationError

from src.ingestion.schemas import SourceType
from src.pipeline.schemas import AnalysisRequest, AnalysisResult, AnalysisTimeframe, DigestAnalysis
from src.pipeline.synthesis import HttpSynthesisAdapter, MockSynthesisAdapter

TO = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

RESULT_BODY = {
    "analysis": {
        "title": "AI Daily",
        "executive_summary": "Open weights everywhere.",
        "key_insights": ["Prices fell", "New models"],
        "trending_topics": ["gpu"],
        "confidence_score": 0.8,
        "sentiment": "positive",
    },
    "token_usage": {"input_tokens": 1000, "output_tokens": 200, "total_tokens": 1200},
    "model_info": {"provider": "anthropic", "model": "claude-3-5-sonnet-latest"},
    "processing_time_ms": 4200,
}


@pytest.fixture
def analysis_request(make_item):
    return AnalysisRequest(
        content={
            SourceType.TWITTER: [
                make_item(item_id="a", text="Big launch today #AI $NVDA", likes=500),
                make_item(item_id="b", text="Quiet update to the docs", likes=1),
            ],
            SourceType.RSS: [
                make_item(
                    source_type=SourceType.RSS, source_key="feed", item_id="c",
                    text="Analysis of inference pricing trends", likes=50,
                ),
            ],
        },
        timeframe=AnalysisTimeframe(from_=TO - timedelta(hours=24), to=TO),
        ai_provider="openai",
    )


def _response(status: int, json: dict | None = None, text: str = "") -> httpx.Response:
    request = httpx.Request("POST", "https://synth.example/analyze")
    if json is not None:
        return httpx.Response(status, json=json, request=request)
    return httpx.Response(status, text=text, request=request)


def _patch_client(mock_client_cls, response: httpx.Response) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.post.return_value = response
    mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_client


# ── Request models ──────────────────────────────────────


class TestAnalysisRequest:
    def test_counts(self, analysis_request):
        assert analysis_request.total_items == 3
        assert analysis_request.source_breakdown == {"twitter": 2, "rss": 1}

    def test_payload_uses_wire_names(self, analysis_request):
        payload = analysis_request.to_payload()

        assert set(payload["timeframe"]) == {"from", "to"}
        assert set(payload["content"]) == {"twitter", "rss"}
        assert payload["content"]["twitter"][0]["id"] == "a"
        assert payload["metadata"]["total_items"] == 3

    def test_timeframe_accepts_alias(self):
        timeframe = AnalysisTimeframe.model_validate({"from": TO, "to": TO})
        assert timeframe.from_ == TO

    def test_analysis_keeps_unknown_fields(self):
        result = AnalysisResult.model_validate(RESULT_BODY)
        assert result.analysis.model_dump()["sentiment"] == "positive"

    def test_analysis_requires_title(self):
        with pytest.raises(ValidationError):
            DigestAnalysis(title="")


# ── Mock adapter ────────────────────────────────────────


class TestMockSynthesisAdapter:
    @pytest.mark.asyncio
    async def test_builds_digest_from_request(self, analysis_request):
        adapter = MockSynthesisAdapter()

        result = await adapter.analyze(analysis_request, "digest")

        assert adapter.requests == [analysis_request]
        assert result.analysis.title == "Digest: 3 items"
        assert result.analysis.key_insights[0] == "Big launch today #AI $NVDA"
        assert result.analysis.trending_topics == ["ai", "nvda"]
        assert result.model_info.provider == "openai"
        assert result.model_info.model == "gpt-4o"
        usage = result.token_usage
        assert usage.total_tokens == usage.input_tokens + usage.output_tokens
        assert usage.input_tokens > 0

    @pytest.mark.asyncio
    async def test_explicit_model_name(self, analysis_request):
        request = analysis_request.model_copy(update={"ai_model_name": "custom-model"})

        result = await MockSynthesisAdapter().analyze(request, "summary")

        assert result.model_info.model == "custom-model"
        assert result.analysis.title.startswith("Summary")

    @pytest.mark.asyncio
    async def test_fail_with(self, analysis_request):
        adapter = MockSynthesisAdapter(fail_with=RuntimeError("quota exceeded"))

        with pytest.raises(RuntimeError, match="quota exceeded"):
            await adapter.analyze(analysis_request, "digest")

        assert len(adapter.requests) == 1


# ── HTTP adapter ────────────────────────────────────────


class TestHttpSynthesisAdapter:
    @pytest.mark.asyncio
    async def test_posts_payload_and_parses_result(self, analysis_request):
        adapter = HttpSynthesisAdapter("https://synth.example/analyze", api_key="secret")

        with patch("src.pipeline.synthesis.httpx.AsyncClient") as mock_client_cls:
            mock_client = _patch_client(mock_client_cls, _response(200, json=RESULT_BODY))
            result = await adapter.analyze(analysis_request, "market_intelligence")

        assert result.analysis.title == "AI Daily"
        assert result.token_usage.total_tokens == 1200
        call = mock_client.post.call_args
        assert call.args[0] == "https://synth.example/analyze"
        assert call.kwargs["json"]["analysis_type"] == "market_intelligence"
        assert call.kwargs["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_no_api_key_sends_no_auth_header(self, analysis_request):
        adapter = HttpSynthesisAdapter("https://synth.example/analyze")

        with patch("src.pipeline.synthesis.httpx.AsyncClient") as mock_client_cls:
            mock_client = _patch_client(mock_client_cls, _response(200, json=RESULT_BODY))
            await adapter.analyze(analysis_request, "digest")

        assert "Authorization" not in mock_client.post.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_http_error_raises(self, analysis_request):
        adapter = HttpSynthesisAdapter("https://synth.example/analyze")

        with patch("src.pipeline.synthesis.httpx.AsyncClient") as mock_client_cls:
            _patch_client(mock_client_cls, _response(502, text="bad gateway"))
            with pytest.raises(httpx.HTTPStatusError):
                await adapter.analyze(analysis_request, "digest")

    @pytest.mark.asyncio
    async def test_invalid_body_raises_value_error(self, analysis_request):
        adapter = HttpSynthesisAdapter("https://synth.example/analyze")

        with patch("src.pipeline.synthesis.httpx.AsyncClient") as mock_client_cls:
            _patch_client(mock_client_cls, _response(200, json={"analysis": {}}))
            with pytest.raises(ValueError, match="Invalid analysis response"):
                await adapter.analyze(analysis_request, "digest")
