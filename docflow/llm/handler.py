"""
LLM handler contract used by pipeline steps.

Steps never talk to a provider SDK directly. They build an LLMRequest and call
request_json (schema-validated structured output) or request_text.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import json_repair
from pydantic import BaseModel, ValidationError

from docflow.errors import SchemaValidationError
from docflow.llm.usage import LLMUsageDict

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_START = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_END = re.compile(r"\s*```$")


@dataclass
class LLMRequest:
    model: str
    user_prompt: str
    system_prompt: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    history: list[dict[str, str]] = field(default_factory=list)
    """Prior turns as {role, content}."""


@dataclass
class LLMContext:
    """Who is asking and why. Used for logging and cost attribution."""
    instance_id: str
    purpose: str
    batch_id: str | None = None
    conversation_id: str | None = None


@dataclass
class LLMResponse:
    text: str
    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None
    cached: bool = False
    usage: LLMUsageDict | None = None
    cost_usd: float = 0.0


@dataclass
class ModelInfo:
    name: str
    max_input_tokens: int
    max_output_tokens: int
    supports_json: bool
    supports_streaming: bool


@dataclass
class CostEstimate:
    input_tokens: int
    output_tokens: int
    estimated_cost_usd: float


@dataclass
class JSONResult(Generic[T]):
    data: T
    response: LLMResponse


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if present."""
    s = (text or "").strip()
    if s.startswith("```"):
        s = _FENCE_END.sub("", _FENCE_START.sub("", s, count=1))
    return s.strip()


def parse_json_response(text: str, schema: type[T]) -> T:
    """
    Parse LLM output into `schema`. Tries stdlib json first, then json_repair for
    malformed output. Raises SchemaValidationError when neither yields a valid object.
    """
    raw = strip_code_fence(text)
    if not raw:
        raise SchemaValidationError("Empty LLM response", text or "")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("[llm] standard JSON parse failed; trying json_repair")
        try:
            data = json_repair.loads(raw)
        except Exception as e:
            raise SchemaValidationError(f"Unparseable LLM response: {e}", text) from e
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(
            f"LLM response does not match {schema.__name__}: {e.error_count()} validation error(s)", text
        ) from e


class LLMHandler(ABC):
    """Structured and free-text generation plus model/cost introspection."""

    name: str = "llm"

    @abstractmethod
    def request_json(self, request: LLMRequest, schema: type[T], context: LLMContext) -> JSONResult[T]:
        """Generate, parse and validate against `schema`. Raises SchemaValidationError."""

    @abstractmethod
    def request_text(self, request: LLMRequest, context: LLMContext) -> LLMResponse:
        pass

    @abstractmethod
    def get_model_info(self, model: str) -> ModelInfo:
        pass

    @abstractmethod
    def estimate_cost(self, request: LLMRequest) -> CostEstimate:
        pass
