"""LLM access for pipeline steps: handler contract, providers, usage and cost."""

from docflow.llm.handler import (
    CostEstimate,
    JSONResult,
    LLMContext,
    LLMHandler,
    LLMRequest,
    LLMResponse,
    ModelInfo,
    parse_json_response,
)

__all__ = [
    "CostEstimate",
    "JSONResult",
    "LLMContext",
    "LLMHandler",
    "LLMRequest",
    "LLMResponse",
    "ModelInfo",
    "parse_json_response",
]
