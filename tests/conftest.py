"""Shared fakes and fixtures: scripted LLM handler, in-memory RAG service, messages, contexts."""
import json
from datetime import datetime, timedelta, timezone

import pytest

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
from docflow.persistence.memory import MemoryPersistence
from docflow.pipeline.config_schemas import DEFAULT_DOMAIN_CONFIG, DomainConfig, StepConfig
from docflow.pipeline.context import create_pipeline_context
from docflow.pipeline.schemas import ConversationThread, Message, Proposal, RagDocument, RagSearchCriteria
from docflow.prompts.registry import PromptRegistry
from docflow.rag.interface import RagService


class FakeLLMHandler(LLMHandler):
    """
    Scripted responses keyed by LLMContext.purpose. Each entry is a dict (sent as
    JSON), a raw string, or an exception to raise. Every request is recorded in `calls`.
    """

    name = "fake"

    def __init__(self, responses: dict[str, list] | None = None, tokens_per_call: int = 100):
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.tokens_per_call = tokens_per_call
        self.calls: list[tuple[LLMRequest, LLMContext]] = []

    def calls_for(self, purpose: str) -> list[LLMRequest]:
        return [req for req, ctx in self.calls if ctx.purpose == purpose]

    def _next(self, purpose: str):
        queue = self.responses.get(purpose) or []
        if not queue:
            raise RuntimeError(f"no scripted response for purpose {purpose!r}")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item if isinstance(item, str) else json.dumps(item)

    def request_json(self, request, schema, context):
        self.calls.append((request, context))
        text = self._next(context.purpose)
        data = parse_json_response(text, schema)
        return JSONResult(
            data=data,
            response=LLMResponse(text=text, model=request.model, tokens_used=self.tokens_per_call, cost_usd=0.001),
        )

    def request_text(self, request, context):
        self.calls.append((request, context))
        return LLMResponse(text=self._next(context.purpose), model=request.model, tokens_used=self.tokens_per_call)

    def get_model_info(self, model):
        return ModelInfo(name=model, max_input_tokens=1000000, max_output_tokens=8192, supports_json=True, supports_streaming=False)

    def estimate_cost(self, request):
        return CostEstimate(input_tokens=len(request.user_prompt) // 4, output_tokens=2048, estimated_cost_usd=0.0)


class FakeRagService(RagService):
    def __init__(self, docs: list[RagDocument] | None = None, error: Exception | None = None):
        self.docs = docs or []
        self.error = error
        self.queries: list[tuple[str, int]] = []

    def search_similar_docs(self, query, top_k):
        self.queries.append((query, top_k))
        if self.error is not None:
            raise self.error
        return list(self.docs)[:top_k]


_T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_message(idx: int, content: str, author: str | None = None) -> Message:
    return Message(
        id=idx,
        message_id=f"m{idx}",
        stream_id="community",
        timestamp=_T0 + timedelta(minutes=idx),
        author=author or f"user{idx % 3}",
        content=content,
    )


def make_proposal(page: str = "docs/setup.md", text: str | None = "Run the installer.", update_type: str = "UPDATE", **kw) -> Proposal:
    return Proposal(update_type=update_type, page=page, suggested_text=text, reasoning="test", **kw)


def make_thread(thread_id: str = "t1", category: str = "troubleshooting", message_ids=None, query: str = "") -> ConversationThread:
    return ConversationThread(
        id=thread_id,
        category=category,
        message_ids=list(message_ids or []),
        summary=f"summary of {thread_id}",
        doc_value_reason="useful",
        rag_search_criteria=RagSearchCriteria(keywords=[], semantic_query=query),
    )


def step_config(step_type: str, config: dict | None = None, step_id: str | None = None, enabled: bool = True) -> StepConfig:
    return StepConfig(step_id=step_id or f"{step_type}-step", step_type=step_type, enabled=enabled, config=config or {})


@pytest.fixture
def domain_config() -> DomainConfig:
    return DomainConfig.model_validate(DEFAULT_DOMAIN_CONFIG)


@pytest.fixture
def prompts() -> PromptRegistry:
    registry = PromptRegistry()
    registry.load()
    return registry


@pytest.fixture
def messages() -> list[Message]:
    return [
        make_message(0, "The server crashes on startup with EADDRINUSE", "alice"),
        make_message(1, "Port 8080 is taken by another process, change the port in config.yaml", "bob"),
        make_message(2, "That fixed it, thanks!", "alice"),
        make_message(3, "How do I enable debug logging?", "carol"),
        make_message(4, "Good morning everyone", "dave"),
    ]


@pytest.fixture
def persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest.fixture
def make_context(domain_config, prompts, messages):
    def _make(**kw):
        msgs = kw.pop("messages", messages)
        return create_pipeline_context(
            kw.pop("instance_id", "acme"),
            kw.pop("batch_id", "b1"),
            msgs,
            kw.pop("domain_config", domain_config),
            kw.pop("prompts", prompts),
            **kw,
        )

    return _make
