"""Length reduction: condense over-long proposals, with per-category length limits."""
import time

from docflow.pipeline import stages
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import CamelModel, Proposal
from docflow.pipeline.step_configs import LengthReductionConfig, PriorityTier
from docflow.steps.base import BasePipelineStep

DEFAULT_PRIORITY = 50

_INLINE_SYSTEM = """You are a technical documentation editor. Condense the provided content to be as short as possible while preserving essential information.

CONSTRAINTS:
- MAXIMUM: {{maxLength}} characters (hard limit - do not exceed)
- TARGET: Aim for {{targetLength}} characters or less if possible
- Priority level: {{priority}}/100 (higher = more important, preserve more detail)

KEEP code examples, commands, error messages and their solutions, critical warnings and configuration values.
REMOVE verbose introductions, redundant explanations and background context.

Maintain markdown formatting. Return JSON with condensedContent."""

_INLINE_USER = """Condense this documentation update for {{page}}.

Current: {{currentLength}} chars | Max: {{maxLength}} chars | Target: <={{targetLength}} chars

---
{{content}}
---"""


class CondenseResponse(CamelModel):
    condensed_content: str


def resolve_lengths(
    priority: int, tiers: list[PriorityTier], default_max: int, default_target: int
) -> tuple[int, int]:
    """(max_length, target_length) from the first tier with min_priority <= priority, else the defaults."""
    for tier in tiers:
        if priority >= tier.min_priority:
            return tier.max_length, tier.target_length
    return default_max, default_target


class LengthReductionStep(BasePipelineStep[LengthReductionConfig]):
    step_type = stages.CONDENSE
    name = "Length Reducer"
    description = "Condenses overly long proposals using LLM (single attempt)"

    def validate_config(self, config) -> bool:
        if not super().validate_config(config):
            return False
        settings = LengthReductionConfig.model_validate(config.config)
        if settings.default_target_length >= settings.default_max_length:
            self.logger.error("defaultTargetLength must be less than defaultMaxLength")
            return False
        return True

    def lengths_for(self, priority: int) -> tuple[int, int]:
        s = self.settings
        return resolve_lengths(priority, s.priority_tiers, s.default_max_length, s.default_target_length)

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        self.require_llm_handler()
        checked = condensed = 0
        for thread_id, proposals in context.proposals.items():
            thread = context.thread_by_id(thread_id)
            category = thread.category if thread else "unknown"
            priority = context.domain_config.category_priority(category, DEFAULT_PRIORITY)
            max_length, target_length = self.lengths_for(priority)
            for proposal in proposals:
                if not proposal.suggested_text or proposal.update_type in ("DELETE", "NONE"):
                    continue
                checked += 1
                length = len(proposal.suggested_text)
                if length <= max_length:
                    continue
                self.logger.debug(
                    "Proposal for %s exceeds max (priority %d): %d > %d", proposal.page, priority, length, max_length
                )
                try:
                    self.condense(context, proposal, priority, max_length, target_length)
                except Exception as e:
                    self.logger.error("Failed to condense proposal for %s: %s", proposal.page, e)
                    proposal.warnings.append(f"Length reduction failed: {e}")
                    continue
                condensed += 1
        self.record_timing(context, started)
        self.logger.info("Length reduction complete: %d checked, %d condensed", checked, condensed)
        return context

    def condense(
        self, context: PipelineContext, proposal: Proposal, priority: int, max_length: int, target_length: int
    ) -> None:
        original = len(proposal.suggested_text or "")
        page = proposal.page + (f" (section: {proposal.section})" if proposal.section else "")
        rendered, prompt_id = self.render_prompt(
            context,
            self.settings.prompt_id,
            {
                "page": page,
                "section": proposal.section or "",
                "updateType": proposal.update_type,
                "priority": priority,
                "currentLength": original,
                "maxLength": max_length,
                "targetLength": target_length,
                "content": proposal.suggested_text,
            },
            fallback=(_INLINE_SYSTEM, _INLINE_USER),
        )
        result, _ = self.call_llm_json(
            context,
            label=f"Condense: {proposal.page}",
            prompt_id=prompt_id,
            rendered=rendered,
            schema=CondenseResponse,
            model=self.settings.model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            purpose="content-condense",
        )
        text = result.data.condensed_content
        proposal.suggested_text = text
        proposal.warnings.append(
            f"Condensed: {original} -> {len(text)} chars (priority {priority}, max {max_length})"
        )
        self.logger.info(
            "Condensed %s: %d -> %d chars (priority %d, max %d)", proposal.page, original, len(text), priority, max_length
        )
