"""LLM providers (Vertex AI Gemini, Ollama) behind one async interface, selected by name from a registry."""
import asyncio
import json
import logging
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict

from docflow.llm.usage import LLMUsageDict, usage_dict, zero_usage
from docflow.trace_log import trace_entered

logger = logging.getLogger(__name__)

_PROVIDER_REGISTRY: Dict[str, Callable[[Dict[str, Any]], "LLMProvider"]] = {}


def register_provider(name: str, factory: Callable[[Dict[str, Any]], "LLMProvider"]) -> None:
    name = (name or "").lower().strip()
    if name:
        _PROVIDER_REGISTRY[name] = factory


class LLMProvider(ABC):
    name: str = ""
    model_name: str = ""

    @abstractmethod
    async def generate_with_usage(
        self,
        prompt: str,
        *,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> tuple[str, LLMUsageDict]:
        """Generate and return (text, usage)."""

    async def generate(self, prompt: str, **kwargs) -> str:
        text, _ = await self.generate_with_usage(prompt, **kwargs)
        return text


def _ollama_request(base_url: str, payload: dict[str, Any], timeout: float) -> tuple[str | None, dict | None]:
    """Returns (error, body)."""
    req = urllib.request.Request(
        f"{base_url.rstrip('/')}/api/generate",
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return (None, json.loads(resp.read().decode("utf-8")))
    except urllib.error.HTTPError as e:
        try:
            err_body = e.read().decode("utf-8")
        except Exception:
            err_body = ""
        return (f"Ollama API error: {e.code} - {err_body}", None)
    except Exception as e:
        return (str(e), None)


class OllamaProvider(LLMProvider):
    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1:8b",
        num_predict: int = 8192,
        timeout_seconds: float = 120.0,
    ):
        self.base_url = base_url
        self.model_name = model
        self.num_predict = num_predict
        self.timeout_seconds = timeout_seconds

    async def generate_with_usage(
        self,
        prompt: str,
        *,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> tuple[str, LLMUsageDict]:
        # Pipeline model ids name Gemini models; Ollama always serves its configured local model.
        options: dict[str, Any] = {"num_predict": max_output_tokens or self.num_predict}
        if temperature is not None:
            options["temperature"] = temperature
        payload: dict[str, Any] = {"model": self.model_name, "prompt": prompt, "stream": False, "options": options}
        if system:
            payload["system"] = system
        err, body = await asyncio.to_thread(_ollama_request, self.base_url, payload, self.timeout_seconds)
        if err:
            raise Exception(err)
        body = body or {}
        usage = usage_dict(
            provider="ollama",
            model=self.model_name,
            input_tokens=int(body.get("prompt_eval_count", 0) or 0),
            output_tokens=int(body.get("eval_count", 0) or 0),
        )
        return (body.get("response", "") or "", usage)


def _vertex_generate_sync(model_name: str, prompt: str, system: str | None, gen_config: dict) -> tuple[str, LLMUsageDict]:
    t0 = time.perf_counter()
    logger.info("[vertex] calling generate_content model=%s prompt_len=%d", model_name, len(prompt))
    from vertexai.generative_models import GenerativeModel
    model = GenerativeModel(model_name, system_instruction=system) if system else GenerativeModel(model_name)
    try:
        response = model.generate_content(prompt, generation_config=gen_config)
    except Exception as e:
        logger.error("[vertex] generate_content raised: %s (elapsed=%.1fs)", e, time.perf_counter() - t0)
        raise
    logger.info("[vertex] generate_content returned (elapsed=%.1fs)", time.perf_counter() - t0)
    text = response.text or ""
    usage = zero_usage("vertex", model_name)
    if getattr(response, "usage_metadata", None) is not None:
        um = response.usage_metadata
        usage = usage_dict(
            provider="vertex",
            model=model_name,
            input_tokens=int(getattr(um, "prompt_token_count", 0) or 0),
            output_tokens=int(getattr(um, "candidates_token_count", 0) or 0),
        )
    return (text, usage)


class VertexAIProvider(LLMProvider):
    name = "vertex"

    def __init__(
        self,
        project_id: str,
        location: str = "us-central1",
        model: str = "gemini-2.5-flash",
        timeout_seconds: float = 120.0,
    ):
        trace_entered("llm.providers.VertexAIProvider.__init__", project_id=(project_id or "")[:20] or "(empty)")
        if not (project_id or "").strip():
            raise ValueError("Vertex AI requires VERTEX_PROJECT_ID")
        try:
            import vertexai
            vertexai.init(project=project_id.strip(), location=location)
        except ImportError:
            raise ImportError("Vertex AI requires: pip install google-cloud-aiplatform") from None
        except Exception as e:
            raise Exception(f"Failed to initialize Vertex AI: {e}") from e
        self.model_name = model
        self.timeout_seconds = timeout_seconds

    async def generate_with_usage(
        self,
        prompt: str,
        *,
        system: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> tuple[str, LLMUsageDict]:
        gen_config: dict[str, Any] = {"temperature": 0.1 if temperature is None else temperature}
        if max_output_tokens:
            gen_config["max_output_tokens"] = max_output_tokens
        return await asyncio.wait_for(
            asyncio.to_thread(_vertex_generate_sync, model or self.model_name, prompt, system, gen_config),
            timeout=self.timeout_seconds,
        )


def _ollama_factory(config: Dict[str, Any]) -> LLMProvider:
    return OllamaProvider(
        base_url=config.get("base_url") or "http://localhost:11434",
        model=config.get("model") or "llama3.1:8b",
        num_predict=int(config.get("num_predict") or 8192),
        timeout_seconds=float(config.get("timeout_seconds") or 120),
    )


def _vertex_factory(config: Dict[str, Any]) -> LLMProvider:
    return VertexAIProvider(
        project_id=config.get("project_id") or "",
        location=config.get("location") or "us-central1",
        model=config.get("model") or "gemini-2.5-flash",
        timeout_seconds=float(config.get("timeout_seconds") or 120),
    )


register_provider("ollama", _ollama_factory)
register_provider("vertex", _vertex_factory)


def create_provider(name: str, config: Dict[str, Any]) -> LLMProvider:
    factory = _PROVIDER_REGISTRY.get((name or "").lower().strip())
    if factory is None:
        raise ValueError(f"Unknown LLM provider: {name}. Use {' or '.join(sorted(_PROVIDER_REGISTRY))}.")
    return factory(config)
