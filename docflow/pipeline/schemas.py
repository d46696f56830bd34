"""
Records flowing through the pipeline: messages, threads, RAG documents, proposals
and the enrichment attached to proposals. camelCase aliases match the JSON the
LLM prompts, run log and persistence layer exchange.
"""
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


UpdateType = Literal["INSERT", "UPDATE", "DELETE", "NONE"]
FormatPattern = Literal["prose", "bullets", "mixed"]
TechnicalDepth = Literal["beginner", "intermediate", "advanced"]
MatchType = Literal["same-section", "semantic", "keyword"]


class Message(CamelModel):
    """One ingested community message."""

    id: int
    message_id: str = ""
    stream_id: str = ""
    timestamp: datetime
    author: str
    author_id: str | None = None
    content: str
    conversation_id: str | None = None
    reply_to_id: str | None = None
    processing_status: str = "pending"


class RagSearchCriteria(CamelModel):
    keywords: list[str] = Field(default_factory=list)
    semantic_query: str = ""


class ConversationThread(CamelModel):
    """Classifier-identified group of messages. message_ids index into filtered_messages."""

    id: str
    category: str
    message_ids: list[int] = Field(default_factory=list)
    summary: str = ""
    doc_value_reason: str = ""
    rag_search_criteria: RagSearchCriteria = Field(default_factory=RagSearchCriteria)


class RagDocument(CamelModel):
    """Documentation chunk returned by the similarity search collaborator."""

    id: int | str
    file_path: str
    title: str = ""
    content: str = ""
    similarity: float = Field(0.0, ge=0.0, le=1.0)


# --- enrichment ---


class RelatedDoc(CamelModel):
    page: str
    section: str | None = None
    similarity_score: float
    match_type: MatchType
    snippet: str = ""


class DuplicationWarning(CamelModel):
    detected: bool = False
    matching_page: str | None = None
    matching_section: str | None = None
    overlap_percentage: int | None = None


class StyleMetrics(CamelModel):
    avg_sentence_length: int = 0
    uses_code_examples: bool = False
    format_pattern: FormatPattern = "prose"
    technical_depth: TechnicalDepth = "intermediate"


class StyleAnalysis(CamelModel):
    target_page_style: StyleMetrics = Field(default_factory=StyleMetrics)
    proposal_style: StyleMetrics = Field(default_factory=StyleMetrics)
    consistency_notes: list[str] = Field(default_factory=list)


class ChangeContext(CamelModel):
    target_section_char_count: int = 0
    proposal_char_count: int = 0
    change_percentage: int = 0
    last_updated: datetime | None = None
    other_pending_proposals: int = 0


class SourceAnalysis(CamelModel):
    message_count: int = 0
    unique_authors: int = 0
    thread_had_consensus: bool = False
    conversation_summary: str = ""


class ProposalEnrichment(CamelModel):
    """Deterministic context computed once per proposal by the context-enrich step."""

    related_docs: list[RelatedDoc] = Field(default_factory=list)
    duplication_warning: DuplicationWarning = Field(default_factory=DuplicationWarning)
    style_analysis: StyleAnalysis = Field(default_factory=StyleAnalysis)
    change_context: ChangeContext = Field(default_factory=ChangeContext)
    source_analysis: SourceAnalysis = Field(default_factory=SourceAnalysis)
    enriched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    enrichment_version: str = "1.0.0"


def create_empty_enrichment() -> ProposalEnrichment:
    """Zero-valued enrichment used when computing the real one fails."""
    return ProposalEnrichment()


# --- review ---


class QualityFlag(CamelModel):
    rule: str
    reason: str
    severity: Literal["info", "warning", "critical"] = "warning"


class RulesetApplicationResult(CamelModel):
    """Outcome of ruleset review for one proposal."""

    rejected: bool = False
    rejection_reason: str | None = None
    rejection_rule: str | None = None
    modifications_applied: list[str] = Field(default_factory=list)
    quality_flags: list[QualityFlag] = Field(default_factory=list)


class Proposal(CamelModel):
    """One suggested documentation change. Mutated in place by later steps."""

    update_type: UpdateType
    page: str
    section: str | None = None
    suggested_text: str | None = None
    raw_suggested_text: str | None = None
    reasoning: str = ""
    source_messages: list[int] | None = None
    warnings: list[str] = Field(default_factory=list)
    enrichment: ProposalEnrichment | None = None
    quality_flags: list[QualityFlag] = Field(default_factory=list)
    review_result: RulesetApplicationResult | None = None
