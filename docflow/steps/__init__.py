"""Built-in pipeline steps, one module per stepType."""

from docflow.steps.base import BasePipelineStep, StepMetadata
from docflow.steps.batch_classify import BatchClassifyStep
from docflow.steps.content_validation import ContentValidationStep
from docflow.steps.context_enrichment import ContextEnrichmentStep
from docflow.steps.keyword_filter import KeywordFilterStep
from docflow.steps.length_reduction import LengthReductionStep
from docflow.steps.proposal_generate import ProposalGenerateStep
from docflow.steps.rag_enrich import RagEnrichStep
from docflow.steps.ruleset_review import RulesetReviewStep

__all__ = [
    "BasePipelineStep",
    "StepMetadata",
    "BatchClassifyStep",
    "ContentValidationStep",
    "ContextEnrichmentStep",
    "KeywordFilterStep",
    "LengthReductionStep",
    "ProposalGenerateStep",
    "RagEnrichStep",
    "RulesetReviewStep",
]
