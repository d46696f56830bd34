"""Pipeline context: the per-batch state every step reads and mutates in place.

One context exists per `execute()` call. Steps run strictly one after another,
so the current step is the only writer; nothing here is locked.
"""
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from docflow.pipeline.config_schemas import DomainConfig
from docflow.pipeline.schemas import ConversationThread, Message, Proposal, RagDocument

if TYPE_CHECKING:
    from docflow.persistence.interface import PersistencePort
    from docflow.prompts.registry import PromptRegistry
    from docflow.rag.interface import RagService


@dataclass
class PipelineMetrics:
    """Counters accumulated across steps. Never reset mid-run."""

    total_duration_ms: int = 0
    step_durations: dict[str, int] = field(default_factory=dict)
    llm_calls: int = 0
    llm_tokens_used: int = 0
    llm_cost_usd: float = 0.0
    messages_processed: int = 0
    threads_created: int = 0
    proposals_generated: int = 0


@dataclass
class PipelineError:
    step_id: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None


@dataclass
class PromptLogEntry:
    """One audited LLM call or RAG query. `response` is backfilled once the call returns."""

    label: str
    entry_type: Literal["llm-call", "rag-query"] = "llm-call"
    prompt_id: str | None = None
    template: dict[str, str] | None = None
    """Unrendered {system, user} prompt."""
    resolved: dict[str, str] | None = None
    """Rendered {system, user} prompt as sent."""
    response: str | None = None
    query: str | None = None
    result_count: int | None = None
    results: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"label": self.label, "entryType": self.entry_type}
        if self.entry_type == "rag-query":
            out.update(query=self.query, resultCount=self.result_count, results=self.results or [])
        else:
            out.update(
                promptId=self.prompt_id,
                template=self.template,
                resolved=self.resolved,
                response=self.response,
            )
        return out


@dataclass
class PipelineContext:
    """Context passed through the pipeline. Steps read and update fields in place."""

    instance_id: str
    batch_id: str
    messages: list[Message]
    domain_config: DomainConfig
    prompts: "PromptRegistry"
    stream_id: str | None = None
    context_messages: list[Message] = field(default_factory=list)
    """Messages from the previous window, shown to the classifier for context only."""
    rag_service: "RagService | None" = None
    persistence: "PersistencePort | None" = None

    filtered_messages: list[Message] = field(default_factory=list)
    threads: list[ConversationThread] = field(default_factory=list)
    rag_results: dict[str, list[RagDocument]] = field(default_factory=dict)
    """threadId -> documents retrieved for that thread."""
    proposals: dict[str, list[Proposal]] = field(default_factory=dict)
    """threadId -> proposals, in generation order."""
    rejected_proposals: dict[str, list[Proposal]] = field(default_factory=dict)
    """threadId -> proposals removed by ruleset review, with their review_result."""
    step_prompt_logs: dict[str, list[PromptLogEntry]] = field(default_factory=dict)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    errors: list[PipelineError] = field(default_factory=list)

    def total_proposals(self) -> int:
        return sum(len(p) for p in self.proposals.values())

    def thread_by_id(self, thread_id: str) -> ConversationThread | None:
        for t in self.threads:
            if t.id == thread_id:
                return t
        return None


@dataclass
class PipelineResult:
    success: bool
    messages_processed: int
    threads_created: int
    proposals_generated: int
    metrics: PipelineMetrics
    errors: list[PipelineError]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "messagesProcessed": self.messages_processed,
            "threadsCreated": self.threads_created,
            "proposalsGenerated": self.proposals_generated,
            "metrics": serialize_metrics(self.metrics),
            "errors": [{"stepId": e.step_id, "message": e.message, "context": e.context} for e in self.errors],
        }


def create_pipeline_context(
    instance_id: str,
    batch_id: str,
    messages: list[Message],
    domain_config: DomainConfig,
    prompts: "PromptRegistry",
    *,
    stream_id: str | None = None,
    context_messages: list[Message] | None = None,
    rag_service: "RagService | None" = None,
    persistence: "PersistencePort | None" = None,
) -> PipelineContext:
    """Build a fresh context. filtered_messages starts as a copy of messages so a pipeline without a filter step still classifies everything."""
    return PipelineContext(
        instance_id=instance_id,
        batch_id=batch_id,
        messages=list(messages),
        domain_config=domain_config,
        prompts=prompts,
        stream_id=stream_id,
        context_messages=list(context_messages or []),
        rag_service=rag_service,
        persistence=persistence,
        filtered_messages=list(messages),
    )


def serialize_metrics(metrics: PipelineMetrics) -> dict[str, Any]:
    d = asdict(metrics)
    return {
        "totalDurationMs": d["total_duration_ms"],
        "stepDurations": d["step_durations"],
        "llmCalls": d["llm_calls"],
        "llmTokensUsed": d["llm_tokens_used"],
        "llmCostUSD": round(d["llm_cost_usd"], 6),
        "messagesProcessed": d["messages_processed"],
        "threadsCreated": d["threads_created"],
        "proposalsGenerated": d["proposals_generated"],
    }
