"""Batch classify: one LLM call groups the filtered messages into conversation threads."""
import time

from pydantic import Field

from docflow.pipeline import stages
from docflow.pipeline.config_schemas import CategoryDefinition
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import CamelModel, ConversationThread, Message, RagSearchCriteria
from docflow.pipeline.step_configs import BatchClassifyConfig
from docflow.steps.base import BasePipelineStep


class ClassifiedThread(CamelModel):
    category: str
    messages: list[int]
    summary: str = ""
    doc_value_reason: str = ""
    rag_search_criteria: RagSearchCriteria = Field(default_factory=RagSearchCriteria)


class ClassificationResponse(CamelModel):
    threads: list[ClassifiedThread]


def format_categories(categories: list[CategoryDefinition]) -> str:
    lines = []
    for c in categories:
        entry = f"- **{c.label}** ({c.id}): {c.description}"
        if c.examples:
            entry += f"\n  Examples: {', '.join(c.examples)}"
        lines.append(entry)
    return "\n".join(lines)


def format_messages(messages: list[Message]) -> str:
    if not messages:
        return "(No messages)"
    out = []
    for idx, m in enumerate(messages):
        reply = f" (reply to {m.reply_to_id})" if m.reply_to_id else ""
        out.append(f"[{idx}] [{m.timestamp.isoformat()}] {m.author}{reply}: {m.content}")
    return "\n\n".join(out)


class BatchClassifyStep(BasePipelineStep[BatchClassifyConfig]):
    step_type = stages.CLASSIFY
    name = "Batch Classify"
    description = "Groups messages into conversation threads with one LLM call"

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        if not context.filtered_messages:
            self.logger.info("No messages to classify, skipping")
            context.threads = []
            self.record_timing(context, started)
            return context

        domain = context.domain_config
        rendered = context.prompts.render(
            self.settings.prompt_id,
            {
                "projectName": domain.context.project_name,
                "domain": domain.context.domain,
                "categories": format_categories(domain.categories),
                "messagesToAnalyze": format_messages(context.filtered_messages),
                "contextText": format_messages(context.context_messages),
            },
        )
        # Schema failures propagate: a batch cannot be partially classified.
        result, _ = self.call_llm_json(
            context,
            label="Batch classification",
            prompt_id=self.settings.prompt_id,
            rendered=rendered,
            schema=ClassificationResponse,
            model=self.settings.model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            purpose="classification",
        )

        now_ms = int(time.time() * 1000)
        context.threads = [
            ConversationThread(
                id=f"thread_{context.batch_id}_{idx}_{now_ms}",
                category=t.category,
                message_ids=list(t.messages),
                summary=t.summary,
                doc_value_reason=t.doc_value_reason,
                rag_search_criteria=t.rag_search_criteria,
            )
            for idx, t in enumerate(result.data.threads)
        ]
        self.record_timing(context, started)
        self.logger.info(
            "Classified into %d threads (categories=%s, tokens=%s)",
            len(context.threads), sorted({t.category for t in context.threads}), result.response.tokens_used,
        )
        return context
