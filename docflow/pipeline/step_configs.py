"""
Typed config for each built-in step type, keyed by stepType.

StepConfig.config arrives as a plain JSON object; the step's constructor
validates it against the model registered here, so a bad value fails when the
pipeline is built rather than halfway through a batch.
"""
from pydantic import BaseModel, Field, model_validator

from docflow.pipeline import stages
from docflow.pipeline.schemas import CamelModel


class KeywordFilterConfig(CamelModel):
    include_keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    case_sensitive: bool = False


class LLMStepConfig(CamelModel):
    prompt_id: str
    model: str = "gemini-2.5-flash"
    temperature: float = Field(0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(8192, ge=1)


class BatchClassifyConfig(LLMStepConfig):
    prompt_id: str = "thread-classification"
    max_tokens: int = Field(32768, ge=1)


class RagEnrichConfig(CamelModel):
    top_k: int = Field(5, ge=1)
    min_similarity: float = Field(0.7, ge=0.0, le=1.0)
    deduplicate_translations: bool = True


class ProposalGenerateConfig(LLMStepConfig):
    prompt_id: str = "changeset-generation"
    model: str = "gemini-2.5-pro"
    temperature: float = Field(0.4, ge=0.0, le=2.0)
    max_tokens: int = Field(32768, ge=1)
    max_proposals_per_thread: int = Field(5, ge=1)


class ContextEnrichmentConfig(CamelModel):
    min_similarity_score: float = Field(0.6, ge=0.0, le=1.0)
    max_related_docs: int = Field(5, ge=0)
    enable_duplication_check: bool = True
    ngram_size: int = Field(3, ge=1)
    duplication_threshold: int = Field(50, ge=0, le=100)


class RulesetReviewConfig(CamelModel):
    enable_rejection: bool = True
    enable_modifications: bool = True
    enable_quality_gates: bool = True
    prompt_id: str = "ruleset-review"
    modification_model: str = "gemini-2.5-flash"
    max_modification_tokens: int = Field(4096, ge=100)


class ContentValidationConfig(LLMStepConfig):
    prompt_id: str = "content-reformat"
    max_retries: int = Field(2, ge=0, le=5)
    skip_patterns: list[str] = Field(default_factory=list)


class PriorityTier(CamelModel):
    min_priority: int = Field(..., ge=0, le=100)
    max_length: int = Field(..., ge=1)
    target_length: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _target_below_max(self) -> "PriorityTier":
        if self.target_length >= self.max_length:
            raise ValueError(
                f"targetLength ({self.target_length}) must be less than maxLength ({self.max_length})"
            )
        return self


DEFAULT_PRIORITY_TIERS = [
    {"minPriority": 70, "maxLength": 5000, "targetLength": 3500},
    {"minPriority": 40, "maxLength": 3500, "targetLength": 2500},
    {"minPriority": 0, "maxLength": 2000, "targetLength": 1500},
]


class LengthReductionConfig(LLMStepConfig):
    prompt_id: str = "content-condense"
    temperature: float = Field(0.3, ge=0.0, le=2.0)
    default_max_length: int = Field(3000, ge=100)
    default_target_length: int = Field(2000, ge=1)
    priority_tiers: list[PriorityTier] = Field(
        default_factory=lambda: [PriorityTier.model_validate(t) for t in DEFAULT_PRIORITY_TIERS]
    )


STEP_CONFIG_MODELS: dict[str, type[BaseModel]] = {
    stages.FILTER: KeywordFilterConfig,
    stages.CLASSIFY: BatchClassifyConfig,
    stages.ENRICH: RagEnrichConfig,
    stages.GENERATE: ProposalGenerateConfig,
    stages.CONTEXT_ENRICH: ContextEnrichmentConfig,
    stages.RULESET_REVIEW: RulesetReviewConfig,
    stages.VALIDATE: ContentValidationConfig,
    stages.CONDENSE: LengthReductionConfig,
}
