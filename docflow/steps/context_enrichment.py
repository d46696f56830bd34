"""
Context enrichment: deterministic analysis attached to every proposal.

For each proposal: related docs, n-gram duplication against all retrieved docs,
style comparison with the target page, change size, and a summary of the
source conversation. No LLM calls. A failure on one proposal leaves it with a
zero-valued enrichment.
"""
import time

from docflow.enrichment import text_analysis
from docflow.pipeline import stages
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import (
    ChangeContext,
    DuplicationWarning,
    Message,
    Proposal,
    ProposalEnrichment,
    RagDocument,
    RelatedDoc,
    SourceAnalysis,
    StyleAnalysis,
    create_empty_enrichment,
)
from docflow.pipeline.step_configs import ContextEnrichmentConfig
from docflow.steps.base import BasePipelineStep

SEMANTIC_MATCH_THRESHOLD = 0.8
SNIPPET_LENGTH = 200


def _snippet(content: str, limit: int = SNIPPET_LENGTH) -> str:
    return content[:limit] + ("..." if len(content) > limit else "")


class ContextEnrichmentStep(BasePipelineStep[ContextEnrichmentConfig]):
    step_type = stages.CONTEXT_ENRICH
    name = "Context Enrichment"
    description = "Attaches related docs, duplication, style and change analysis to proposals"

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        total = context.total_proposals()
        if total == 0:
            self.logger.info("No proposals to enrich")
            self.record_timing(context, started)
            return context

        self.logger.info("Enriching %d proposals with context analysis", total)
        all_docs = [d for docs in context.rag_results.values() for d in docs]
        pending = self.pending_proposal_count(context)

        for thread_id, proposals in context.proposals.items():
            thread = context.thread_by_id(thread_id)
            messages: list[Message] = []
            if thread is not None:
                # message_ids index into filtered_messages
                messages = [
                    context.filtered_messages[i] for i in thread.message_ids if 0 <= i < len(context.filtered_messages)
                ]
            thread_docs = context.rag_results.get(thread_id, [])
            for proposal in proposals:
                try:
                    proposal.enrichment = self.enrich(proposal, thread_docs, all_docs, messages, pending)
                except Exception as e:
                    self.logger.error("Failed to enrich proposal for %s: %s", proposal.page, e)
                    proposal.enrichment = create_empty_enrichment()

        self.record_timing(context, started)
        self.logger.info("Context enrichment complete: %d proposals enriched", total)
        return context

    def pending_proposal_count(self, context: PipelineContext) -> int:
        if context.persistence is None:
            return 0
        try:
            return context.persistence.count_pending_proposals(context.instance_id)
        except Exception as e:
            self.logger.warning("Failed to count pending proposals: %s", e)
            return 0

    def enrich(
        self,
        proposal: Proposal,
        thread_docs: list[RagDocument],
        all_docs: list[RagDocument],
        messages: list[Message],
        pending: int,
    ) -> ProposalEnrichment:
        enrichment = create_empty_enrichment()
        enrichment.related_docs = self.find_related_docs(proposal, thread_docs, all_docs)
        if self.settings.enable_duplication_check and proposal.suggested_text:
            enrichment.duplication_warning = self.check_duplication(proposal, all_docs)
        target = next((d for d in thread_docs if d.file_path == proposal.page), None)
        target_content = target.content if target else ""
        enrichment.style_analysis = self.analyze_style(proposal, target_content)
        enrichment.change_context = self.change_context(proposal, target_content, pending)
        enrichment.source_analysis = self.analyze_source(messages)
        return enrichment

    def find_related_docs(
        self, proposal: Proposal, thread_docs: list[RagDocument], all_docs: list[RagDocument]
    ) -> list[RelatedDoc]:
        """Thread hits first, then global hits while under the cap; dedup by page, best first."""
        min_score = self.settings.min_similarity_score
        cap = self.settings.max_related_docs
        related: list[RelatedDoc] = []
        seen: set[str] = set()
        for doc in thread_docs:
            if doc.similarity < min_score or doc.file_path in seen:
                continue
            if doc.file_path == proposal.page:
                match_type = "same-section"
            elif doc.similarity >= SEMANTIC_MATCH_THRESHOLD:
                match_type = "semantic"
            else:
                match_type = "keyword"
            related.append(
                RelatedDoc(
                    page=doc.file_path,
                    section=doc.title,
                    similarity_score=doc.similarity,
                    match_type=match_type,
                    snippet=_snippet(doc.content),
                )
            )
            seen.add(doc.file_path)
        for doc in all_docs:
            if len(related) >= cap:
                break
            if doc.similarity < min_score or doc.file_path in seen:
                continue
            related.append(
                RelatedDoc(
                    page=doc.file_path,
                    section=doc.title,
                    similarity_score=doc.similarity,
                    match_type="semantic",
                    snippet=_snippet(doc.content),
                )
            )
            seen.add(doc.file_path)
        related.sort(key=lambda r: r.similarity_score, reverse=True)
        return related[:cap]

    def check_duplication(self, proposal: Proposal, docs: list[RagDocument]) -> DuplicationWarning:
        max_overlap = 0
        best: RagDocument | None = None
        for doc in docs:
            overlap = text_analysis.ngram_overlap(proposal.suggested_text or "", doc.content, self.settings.ngram_size)
            if overlap > max_overlap:
                max_overlap, best = overlap, doc
        detected = max_overlap >= self.settings.duplication_threshold
        return DuplicationWarning(
            detected=detected,
            matching_page=best.file_path if detected and best else None,
            matching_section=best.title if detected and best else None,
            overlap_percentage=max_overlap,
        )

    def analyze_style(self, proposal: Proposal, target_content: str) -> StyleAnalysis:
        target_style = text_analysis.analyze_style(target_content)
        proposal_style = text_analysis.analyze_style(proposal.suggested_text or "")
        notes = text_analysis.consistency_notes(target_style, proposal_style) if target_content else []
        return StyleAnalysis(target_page_style=target_style, proposal_style=proposal_style, consistency_notes=notes)

    def change_context(self, proposal: Proposal, target_content: str, pending: int) -> ChangeContext:
        target_len = len(target_content)
        proposal_len = len(proposal.suggested_text or "")
        if proposal.update_type in ("INSERT", "DELETE"):
            change = 100
        elif target_len > 0:
            change = round(abs(target_len - proposal_len) / target_len * 100)
        else:
            change = 0
        return ChangeContext(
            target_section_char_count=target_len,
            proposal_char_count=proposal_len,
            change_percentage=max(0, min(change, 100)),
            last_updated=None,
            other_pending_proposals=pending,
        )

    def analyze_source(self, messages: list[Message]) -> SourceAnalysis:
        if not messages:
            return SourceAnalysis()
        unique_authors = len({m.author for m in messages})
        content = " ".join(m.content for m in messages)
        return SourceAnalysis(
            message_count=len(messages),
            unique_authors=unique_authors,
            thread_had_consensus=unique_authors >= 2 and len(messages) >= 3,
            conversation_summary=_snippet(content) if content else "No conversation content",
        )
