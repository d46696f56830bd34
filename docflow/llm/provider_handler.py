"""LLMHandler backed by an LLMProvider. Sync facade over the async provider call."""
import asyncio
import logging

from docflow.config import Settings, get_settings
from docflow.llm.cost_model import DEFAULT_MODEL_INFO, FALLBACK_RATES, MODEL_INFO, compute_cost, get_rates
from docflow.llm.handler import (
    CostEstimate,
    JSONResult,
    LLMContext,
    LLMHandler,
    LLMRequest,
    LLMResponse,
    ModelInfo,
    T,
    parse_json_response,
)
from docflow.llm.providers import LLMProvider, create_provider
from docflow.llm.usage import total_tokens
from docflow.trace_log import trace_entered

logger = logging.getLogger(__name__)


def _format_history(history: list[dict[str, str]]) -> str:
    lines = [f"{(h.get('role') or 'user').capitalize()}: {h.get('content') or ''}" for h in history]
    return "\n\n".join(lines)


class ProviderLLMHandler(LLMHandler):
    def __init__(self, provider: LLMProvider):
        self.provider = provider
        self.name = provider.name or "provider"

    def _generate(self, request: LLMRequest, context: LLMContext) -> LLMResponse:
        trace_entered("llm.provider_handler.generate", purpose=context.purpose, model=request.model)
        prompt = request.user_prompt
        if request.history:
            prompt = f"{_format_history(request.history)}\n\n{prompt}"
        text, usage = asyncio.run(
            self.provider.generate_with_usage(
                prompt,
                system=request.system_prompt or None,
                model=request.model,
                temperature=request.temperature,
                max_output_tokens=request.max_tokens,
            )
        )
        logger.info(
            "[llm] %s instance=%s batch=%s model=%s tokens=%d",
            context.purpose, context.instance_id, context.batch_id, usage.get("model") or request.model, total_tokens(usage),
        )
        return LLMResponse(
            text=text,
            model=usage.get("model") or request.model,
            tokens_used=total_tokens(usage),
            finish_reason="stop",
            usage=usage,
            cost_usd=compute_cost(usage),
        )

    def request_json(self, request: LLMRequest, schema: type[T], context: LLMContext) -> JSONResult[T]:
        response = self._generate(request, context)
        return JSONResult(data=parse_json_response(response.text, schema), response=response)

    def request_text(self, request: LLMRequest, context: LLMContext) -> LLMResponse:
        return self._generate(request, context)

    def get_model_info(self, model: str) -> ModelInfo:
        max_in, max_out, json_mode, streaming = MODEL_INFO.get(model, DEFAULT_MODEL_INFO)
        return ModelInfo(
            name=model,
            max_input_tokens=max_in,
            max_output_tokens=max_out,
            supports_json=json_mode,
            supports_streaming=streaming,
        )

    def estimate_cost(self, request: LLMRequest) -> CostEstimate:
        """Rough pre-call estimate: 4 characters per input token, max_tokens (default 2048) output tokens."""
        input_tokens = (len(request.system_prompt) + len(request.user_prompt)) // 4
        output_tokens = request.max_tokens or 2048
        in_rate, out_rate = get_rates(self.name, request.model, FALLBACK_RATES)
        cost = (input_tokens / 1000.0) * in_rate + (output_tokens / 1000.0) * out_rate
        return CostEstimate(input_tokens=input_tokens, output_tokens=output_tokens, estimated_cost_usd=cost)


def get_llm_handler(settings: Settings | None = None) -> LLMHandler:
    """Handler for the provider named by LLM_PROVIDER."""
    s = settings or get_settings()
    if s.llm_provider == "vertex":
        cfg = {
            "project_id": s.vertex_project_id,
            "location": s.vertex_location,
            "model": s.vertex_model,
            "timeout_seconds": s.llm_timeout_seconds,
        }
    else:
        cfg = {
            "base_url": s.ollama_base_url,
            "model": s.ollama_model,
            "num_predict": s.ollama_num_predict,
            "timeout_seconds": s.llm_timeout_seconds,
        }
    return ProviderLLMHandler(create_provider(s.llm_provider, cfg))
