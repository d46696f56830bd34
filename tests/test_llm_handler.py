"""Unit tests for LLM response parsing, the provider-backed handler and cost helpers."""
from unittest.mock import patch

import pytest

from docflow.config import Settings
from docflow.errors import SchemaValidationError
from docflow.llm.cost_model import compute_cost, get_rates, register_rate
from docflow.llm.handler import LLMContext, LLMRequest, parse_json_response, strip_code_fence
from docflow.llm.provider_handler import ProviderLLMHandler, get_llm_handler
from docflow.llm.providers import LLMProvider, OllamaProvider, create_provider
from docflow.llm.usage import usage_dict
from docflow.pipeline.schemas import CamelModel


class Answer(CamelModel):
    page_name: str
    score: int


class ScriptedProvider(LLMProvider):
    name = "vertex"

    def __init__(self, text: str, input_tokens: int = 1000, output_tokens: int = 500):
        self.text = text
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls: list[dict] = []

    async def generate_with_usage(self, prompt, *, system=None, model=None, temperature=None, max_output_tokens=None):
        self.calls.append(
            {"prompt": prompt, "system": system, "model": model, "temperature": temperature, "max_output_tokens": max_output_tokens}
        )
        return self.text, usage_dict("vertex", model or "gemini-2.5-flash", self.input_tokens, self.output_tokens)


CTX = LLMContext(instance_id="acme", purpose="test", batch_id="b1")


def test_strip_code_fence():
    """A surrounding ```json fence is removed."""
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'


def test_parse_json_response_camel_case():
    """camelCase JSON validates into the snake_case model."""
    data = parse_json_response('{"pageName": "docs/a.md", "score": 3}', Answer)
    assert data.page_name == "docs/a.md"
    assert data.score == 3


def test_parse_json_response_repairs_malformed_json():
    """Trailing commas and similar damage are repaired before validation."""
    data = parse_json_response('{"pageName": "docs/a.md", "score": 3,}', Answer)
    assert data.score == 3


def test_parse_json_response_schema_mismatch():
    """Valid JSON that does not fit the schema raises SchemaValidationError with the raw text."""
    with pytest.raises(SchemaValidationError) as exc:
        parse_json_response('{"pageName": "docs/a.md"}', Answer)
    assert '"pageName"' in exc.value.raw_text


def test_parse_json_response_empty():
    """Empty output raises SchemaValidationError."""
    with pytest.raises(SchemaValidationError):
        parse_json_response("   ", Answer)


def test_provider_handler_request_json():
    """request_json passes prompts and options to the provider and reports usage and cost."""
    provider = ScriptedProvider('```json\n{"pageName": "docs/x.md", "score": 9}\n```')
    handler = ProviderLLMHandler(provider)
    request = LLMRequest(model="gemini-2.5-pro", system_prompt="sys", user_prompt="user", temperature=0.4, max_tokens=100)
    result = handler.request_json(request, Answer, CTX)
    assert result.data.page_name == "docs/x.md"
    assert result.response.tokens_used == 1500
    assert result.response.cost_usd == pytest.approx(1.0 * 0.00125 + 0.5 * 0.005)
    call = provider.calls[0]
    assert call["system"] == "sys"
    assert call["model"] == "gemini-2.5-pro"
    assert call["temperature"] == 0.4
    assert call["max_output_tokens"] == 100


def test_provider_handler_history_prepended():
    """Conversation history is prepended to the user prompt."""
    provider = ScriptedProvider("plain text")
    handler = ProviderLLMHandler(provider)
    request = LLMRequest(model="m", user_prompt="now?", history=[{"role": "user", "content": "before"}])
    response = handler.request_text(request, CTX)
    assert response.text == "plain text"
    assert provider.calls[0]["prompt"] == "User: before\n\nnow?"


def test_provider_handler_schema_failure_propagates():
    """Output that fails the schema raises SchemaValidationError."""
    handler = ProviderLLMHandler(ScriptedProvider('{"nothing": true}'))
    with pytest.raises(SchemaValidationError):
        handler.request_json(LLMRequest(model="m", user_prompt="u"), Answer, CTX)


def test_model_info_and_estimate():
    """Known models report their limits; estimates use chars/4 input and max_tokens output."""
    handler = ProviderLLMHandler(ScriptedProvider(""))
    info = handler.get_model_info("gemini-2.5-pro")
    assert info.supports_json is True
    assert info.max_input_tokens == 2097152
    estimate = handler.estimate_cost(LLMRequest(model="gemini-2.5-flash", user_prompt="x" * 4000))
    assert estimate.input_tokens == 1000
    assert estimate.output_tokens == 2048
    assert estimate.estimated_cost_usd == pytest.approx(1.0 * 0.000075 + 2.048 * 0.0003)


def test_cost_rates():
    """Unknown models cost nothing unless a rate is registered."""
    usage = usage_dict("vertex", "custom-model", 2000, 1000)
    assert compute_cost(usage) == 0.0
    register_rate("vertex", "custom-model", 0.01, 0.02)
    assert get_rates("vertex", "custom-model") == (0.01, 0.02)
    assert compute_cost(usage) == pytest.approx(0.04)


def test_create_provider_unknown():
    """An unknown provider name is rejected."""
    with pytest.raises(ValueError):
        create_provider("nope", {})


def test_get_llm_handler_ollama():
    """Settings with the ollama provider build an Ollama-backed handler."""
    handler = get_llm_handler(Settings(llm_provider="ollama", ollama_model="llama3.1:8b"))
    assert isinstance(handler.provider, OllamaProvider)
    assert handler.provider.model_name == "llama3.1:8b"


def test_ollama_provider_payload():
    """The Ollama provider sends its local model, system prompt and options."""
    provider = OllamaProvider(model="llama3.1:8b", num_predict=256)
    body = {"response": '{"ok": true}', "prompt_eval_count": 12, "eval_count": 8}
    with patch("docflow.llm.providers._ollama_request", return_value=(None, body)) as req:
        handler = ProviderLLMHandler(provider)
        response = handler.request_text(LLMRequest(model="gemini-2.5-flash", user_prompt="hi", system_prompt="sys"), CTX)
    payload = req.call_args[0][1]
    assert payload["model"] == "llama3.1:8b"
    assert payload["system"] == "sys"
    assert payload["options"]["num_predict"] == 256
    assert response.tokens_used == 20
    assert response.cost_usd == 0.0


def test_ollama_provider_error():
    """Transport errors from Ollama propagate."""
    provider = OllamaProvider()
    with patch("docflow.llm.providers._ollama_request", return_value=("connection refused", None)):
        with pytest.raises(Exception, match="connection refused"):
            ProviderLLMHandler(provider).request_text(LLMRequest(model="m", user_prompt="hi"), CTX)
