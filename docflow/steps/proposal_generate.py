"""Proposal generate: one LLM call per valuable thread yields documentation change proposals."""
import re
import time

from pydantic import Field

from docflow.pipeline import stages
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import CamelModel, ConversationThread, Proposal, RagDocument, UpdateType
from docflow.pipeline.step_configs import ProposalGenerateConfig
from docflow.postprocess import post_process_proposal
from docflow.ruleset import ParsedRuleset, load_tenant_ruleset
from docflow.steps.base import BasePipelineStep


class GeneratedProposal(CamelModel):
    update_type: UpdateType
    page: str
    section: str | None = None
    suggested_text: str | None = None
    reasoning: str = ""
    source_messages: list[int] | None = None


class ProposalResponse(CamelModel):
    proposals: list[GeneratedProposal] = Field(default_factory=list)
    proposals_rejected: bool | None = None
    rejection_reason: str | None = None


def format_rag_docs(docs: list[RagDocument]) -> str:
    if not docs:
        return "(No relevant documentation found)"
    return "\n\n---\n\n".join(
        f"[DOC {idx + 1}] {d.title}\nPath: {d.file_path}\nSimilarity: {d.similarity:.3f}\n\n{d.content}"
        for idx, d in enumerate(docs)
    )


def format_thread_messages(thread: ConversationThread, context: PipelineContext) -> str:
    messages = [context.filtered_messages[i] for i in thread.message_ids if 0 <= i < len(context.filtered_messages)]
    if not messages:
        return "(No messages)"
    return "\n\n".join(f"[{m.id}] [{m.timestamp.isoformat()}] {m.author}: {m.content}" for m in messages)


def tenant_guidelines(ruleset: ParsedRuleset) -> str:
    rules = "\n".join(f"- {rule}" for rule in ruleset.prompt_context)
    return (
        "\n\n## Tenant-Specific Guidelines\n\n"
        f"Follow these additional guidelines when generating proposals:\n{rules}"
    )


class ProposalGenerateStep(BasePipelineStep[ProposalGenerateConfig]):
    step_type = stages.GENERATE
    name = "Proposal Generation"
    description = "Generates documentation change proposals per conversation thread"

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        self.require_llm_handler()
        ruleset = load_tenant_ruleset(context.persistence, context.instance_id)
        if ruleset.prompt_context:
            self.logger.info("Loaded %d PROMPT_CONTEXT rules from ruleset", len(ruleset.prompt_context))

        skip = context.domain_config.no_value_category
        threads = [t for t in context.threads if t.category != skip]
        if not threads:
            self.logger.info("No valuable threads, skipping proposal generation")
            self.record_timing(context, started)
            return context

        max_batch = context.domain_config.max_proposals_per_batch
        security = context.domain_config.security
        block_patterns = security.compiled_block_patterns() if security else []
        total = 0
        self.logger.info("Generating proposals for %d threads", len(threads))
        for thread in threads:
            if total >= max_batch:
                self.logger.warning("Reached max proposals per batch (%d), stopping", max_batch)
                break
            try:
                proposals = self.generate_for_thread(context, thread, ruleset)
                self.apply_security_filters(proposals, block_patterns)
            except Exception as e:
                self.logger.error("Failed to generate proposals for thread %s: %s", thread.id, e)
                entries = context.step_prompt_logs.get(self.step_id) or []
                if entries and not entries[-1].response:
                    entries[-1].response = f"ERROR: {e}"
                context.proposals[thread.id] = []
                continue
            limited = proposals[: min(self.settings.max_proposals_per_thread, max_batch - total)]
            context.proposals[thread.id] = limited
            total += len(limited)
            self.logger.debug("Thread %s: generated %d proposals", thread.id, len(limited))

        self.record_timing(context, started)
        self.logger.info("Proposal generation complete: %d proposals", total)
        return context

    def generate_for_thread(
        self, context: PipelineContext, thread: ConversationThread, ruleset: ParsedRuleset
    ) -> list[Proposal]:
        dc = context.domain_config.context
        rendered = context.prompts.render(
            self.settings.prompt_id,
            {
                "projectName": dc.project_name,
                "domain": dc.domain,
                "targetAudience": dc.target_audience,
                "documentationPurpose": dc.documentation_purpose,
                "threadSummary": thread.summary,
                "threadCategory": thread.category,
                "docValueReason": thread.doc_value_reason,
                "ragContext": format_rag_docs(context.rag_results.get(thread.id, [])),
                "messages": format_thread_messages(thread, context),
            },
        )
        if ruleset.prompt_context:
            rendered.system += tenant_guidelines(ruleset)

        result, _ = self.call_llm_json(
            context,
            label=f"Generate: {(thread.summary or thread.id)[:60]}",
            prompt_id=self.settings.prompt_id,
            rendered=rendered,
            schema=ProposalResponse,
            model=self.settings.model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            purpose="proposal",
        )
        data = result.data
        if data.proposals_rejected:
            self.logger.debug("Thread %s: proposals rejected - %s", thread.id, data.rejection_reason)
            return []

        proposals: list[Proposal] = []
        for p in data.proposals:
            if p.update_type == "NONE":
                continue
            processed = post_process_proposal(p.suggested_text, p.page)
            if processed.was_modified:
                self.logger.info("Post-processing modified proposal for %s", p.page)
            proposals.append(
                Proposal(
                    update_type=p.update_type,
                    page=p.page,
                    section=p.section,
                    suggested_text=processed.text or p.suggested_text,
                    raw_suggested_text=p.suggested_text,
                    reasoning=p.reasoning,
                    source_messages=p.source_messages,
                    warnings=list(processed.warnings),
                )
            )
        return proposals

    def apply_security_filters(self, proposals: list[Proposal], block_patterns: list[re.Pattern]) -> None:
        """Flag, never drop, proposals whose text matches a block pattern."""
        for proposal in proposals:
            if not proposal.suggested_text:
                continue
            for pattern in block_patterns:
                if pattern.search(proposal.suggested_text):
                    proposal.warnings.append(f"Blocked pattern detected: {pattern.pattern}")
