"""
Ruleset review: apply the tenant's ruleset to every proposal.

Per proposal, in order: rejection (first matching rule removes the proposal),
modification (one LLM rewrite using the REVIEW_MODIFICATIONS rules), quality
gates (flags attached, proposal kept).
"""
import time

from pydantic import Field

from docflow.pipeline import stages
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import CamelModel, Proposal, ProposalEnrichment, QualityFlag, RulesetApplicationResult
from docflow.pipeline.step_configs import RulesetReviewConfig
from docflow.ruleset import CompiledRuleset, compile_ruleset, evaluate_quality_gates, find_rejection, has_rules, load_tenant_ruleset
from docflow.steps.base import BasePipelineStep

MODIFICATION_TEMPERATURE = 0.3

_INLINE_SYSTEM = """You are a technical documentation editor. Apply the following modification rules to improve the proposal content.

Modification Rules:
{{rules}}

{{enrichmentSummary}}

Guidelines:
- Only make modifications that align with the rules
- Preserve the core meaning and information
- If no modifications are needed, return the original content unchanged
- Return valid JSON with modified content"""

_INLINE_USER = """Apply the modification rules to this proposal content:

Target Page: {{page}}

Current Content:
{{content}}

Return JSON with:
- modified: boolean (true if any changes made)
- content: the modified content (or original if no changes)
- modificationsApplied: array of rule descriptions that were applied"""


class ModificationResponse(CamelModel):
    modified: bool
    content: str
    modifications_applied: list[str] = Field(default_factory=list)


def enrichment_summary(enrichment: ProposalEnrichment | None) -> str:
    if enrichment is None:
        return "No enrichment data available."
    dup = enrichment.duplication_warning
    style = enrichment.style_analysis
    return "\n".join([
        "Enrichment Analysis:",
        f"- Related docs found: {len(enrichment.related_docs)}",
        f"- Duplication warning: {f'Yes ({dup.overlap_percentage}% overlap)' if dup.detected else 'No'}",
        "- Style analysis:",
        f"  - Target page format: {style.target_page_style.format_pattern}",
        f"  - Proposal format: {style.proposal_style.format_pattern}",
        f"  - Target avg sentence length: {style.target_page_style.avg_sentence_length} words",
        f"  - Proposal avg sentence length: {style.proposal_style.avg_sentence_length} words",
        f"  - Target technical depth: {style.target_page_style.technical_depth}",
        f"  - Proposal technical depth: {style.proposal_style.technical_depth}",
        f"  - Consistency notes: {'; '.join(style.consistency_notes) or 'None'}",
        f"- Change impact: {enrichment.change_context.change_percentage}% change",
    ])


class RulesetReviewStep(BasePipelineStep[RulesetReviewConfig]):
    step_type = stages.RULESET_REVIEW
    name = "Ruleset Review"
    description = "Applies tenant rejection, modification and quality-gate rules to proposals"

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        parsed = load_tenant_ruleset(context.persistence, context.instance_id)
        if not has_rules(parsed):
            self.logger.info("No ruleset rules defined, skipping ruleset review")
            self.record_timing(context, started)
            return context
        total = context.total_proposals()
        if total == 0:
            self.logger.info("No proposals to review")
            self.record_timing(context, started)
            return context
        if self.settings.enable_modifications and parsed.review_modifications:
            self.require_llm_handler()

        ruleset = compile_ruleset(parsed)
        self.logger.info(
            "Applying ruleset to %d proposals (rejection=%d, modification=%d, gates=%d)",
            total, len(parsed.rejection_rules), len(parsed.review_modifications), len(parsed.quality_gates),
        )
        rejected = modified = flagged = 0
        for thread_id, proposals in context.proposals.items():
            kept: list[Proposal] = []
            for proposal in proposals:
                try:
                    result = self.review(context, ruleset, proposal)
                except Exception as e:
                    self.logger.error("Failed to apply ruleset to proposal for %s: %s", proposal.page, e)
                    kept.append(proposal)
                    continue
                proposal.review_result = result
                if result.rejected:
                    rejected += 1
                    context.rejected_proposals.setdefault(thread_id, []).append(proposal)
                    self.logger.debug("Proposal for %s rejected: %s", proposal.page, result.rejection_reason)
                    continue
                modified += 1 if result.modifications_applied else 0
                flagged += 1 if result.quality_flags else 0
                kept.append(proposal)
            context.proposals[thread_id] = kept

        self.record_timing(context, started)
        self.logger.info(
            "Ruleset review complete: %d proposals, %d rejected, %d modified, %d flagged",
            total, rejected, modified, flagged,
        )
        return context

    def review(self, context: PipelineContext, ruleset: CompiledRuleset, proposal: Proposal) -> RulesetApplicationResult:
        result = RulesetApplicationResult()
        if self.settings.enable_rejection and ruleset.rejection_rules:
            found = find_rejection(ruleset.rejection_rules, proposal)
            if found is not None:
                rule, reason = found
                result.rejected = True
                result.rejection_rule = rule.text
                result.rejection_reason = reason
                return result

        if self.settings.enable_modifications and ruleset.parsed.review_modifications and proposal.suggested_text:
            self.apply_modifications(context, ruleset.parsed.review_modifications, proposal, result)

        if self.settings.enable_quality_gates and ruleset.quality_gates:
            for gate, message in evaluate_quality_gates(ruleset.quality_gates, proposal):
                flag = QualityFlag(rule=gate.text, reason=message, severity="warning")
                result.quality_flags.append(flag)
                proposal.quality_flags.append(flag)
        return result

    def apply_modifications(
        self,
        context: PipelineContext,
        rules: list[str],
        proposal: Proposal,
        result: RulesetApplicationResult,
    ) -> None:
        """One LLM rewrite. On any failure the content is left as it was and a warning is attached."""
        rendered, prompt_id = self.render_prompt(
            context,
            self.settings.prompt_id,
            {
                "rules": "\n".join(f"{i + 1}. {r}" for i, r in enumerate(rules)),
                "enrichmentSummary": enrichment_summary(proposal.enrichment),
                "page": proposal.page + (f" (section: {proposal.section})" if proposal.section else ""),
                "content": proposal.suggested_text,
            },
            fallback=(_INLINE_SYSTEM, _INLINE_USER),
        )
        try:
            llm_result, _ = self.call_llm_json(
                context,
                label=f"Ruleset modification: {proposal.page}",
                prompt_id=prompt_id,
                rendered=rendered,
                schema=ModificationResponse,
                model=self.settings.modification_model,
                temperature=MODIFICATION_TEMPERATURE,
                max_tokens=self.settings.max_modification_tokens,
                purpose="ruleset-modification",
            )
        except Exception as e:
            self.logger.warning("Failed to apply modifications via LLM for %s: %s", proposal.page, e)
            proposal.warnings.append(f"Ruleset modifications not applied: {e}")
            return
        data = llm_result.data
        if data.modified and data.content.strip():
            proposal.suggested_text = data.content
            result.modifications_applied.extend(data.modifications_applied)
