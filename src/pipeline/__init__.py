"""Digest pipeline: run configuration, synthesis contract, and errors.

The orchestrator is not re-exported here; import it from
``src.pipeline.orchestrator``.
"""

from src.pipeline.config import PipelineRunConfig
from src.pipeline.errors import (
    CollectionError,
    PersistenceError,
    PipelineError,
    SynthesisError,
)
from src.pipeline.schemas import (
    AnalysisRequest,
    AnalysisResult,
    AnalysisTimeframe,
    DigestAnalysis,
    ModelInfo,
    TokenUsage,
)
from src.pipeline.synthesis import (
    HttpSynthesisAdapter,
    MockSynthesisAdapter,
    SynthesisAdapter,
)

__all__ = [
    "AnalysisRequest",
    "AnalysisResult",
    "AnalysisTimeframe",
    "CollectionError",
    "DigestAnalysis",
    "HttpSynthesisAdapter",
    "MockSynthesisAdapter",
    "ModelInfo",
    "PersistenceError",
    "PipelineError",
    "PipelineRunConfig",
    "SynthesisAdapter",
    "SynthesisError",
    "TokenUsage",
]
