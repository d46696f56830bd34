"""Pydantic models for the JSON pipeline and domain configs."""
import re
from typing import Any

from pydantic import Field, field_validator

from docflow.pipeline.schemas import CamelModel

NO_DOC_VALUE_CATEGORY = "no-doc-value"


class StepConfig(CamelModel):
    """One configured step. `config` is validated against the stepType's typed model at construction."""

    step_id: str = Field(..., min_length=1)
    step_type: str = Field(..., min_length=1)
    enabled: bool = True
    description: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class ErrorHandlingConfig(CamelModel):
    stop_on_error: bool = False
    retry_attempts: int = Field(3, ge=0, le=10)
    retry_delay_ms: int = Field(5000, ge=0)


class PerformanceConfig(CamelModel):
    max_concurrent_steps: int = Field(1, ge=1, le=10)
    timeout_ms: int = Field(300000, ge=1000)
    enable_caching: bool = True


class PipelineConfig(CamelModel):
    instance_id: str
    pipeline_id: str
    description: str | None = None
    steps: list[StepConfig] = Field(..., min_length=1)
    error_handling: ErrorHandlingConfig = Field(default_factory=ErrorHandlingConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)


class CategoryDefinition(CamelModel):
    id: str
    label: str
    description: str = ""
    priority: int = Field(50, ge=0, le=100)
    examples: list[str] | None = None


class RagPaths(CamelModel):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)


class SecurityConfig(CamelModel):
    block_patterns: list[str] = Field(default_factory=list)
    require_approval: bool = True
    max_proposals_per_batch: int = Field(100, ge=1)

    @field_validator("block_patterns")
    @classmethod
    def _patterns_compile(cls, patterns: list[str]) -> list[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid blockPattern {pattern!r}: {e}") from e
        return patterns

    def compiled_block_patterns(self) -> list[re.Pattern]:
        return [re.compile(p, re.IGNORECASE) for p in self.block_patterns]


class DomainContext(CamelModel):
    project_name: str = "Documentation"
    domain: str = "General"
    target_audience: str = "All users"
    documentation_purpose: str = "Provide helpful information"


class DomainConfig(CamelModel):
    domain_id: str
    name: str
    categories: list[CategoryDefinition] = Field(default_factory=list)
    keywords: dict[str, list[str]] | None = None
    rag_paths: RagPaths | None = None
    security: SecurityConfig | None = None
    context: DomainContext = Field(default_factory=DomainContext)
    no_value_category: str = NO_DOC_VALUE_CATEGORY

    def category_priority(self, category_id: str, default: int = 50) -> int:
        for c in self.categories:
            if c.id == category_id:
                return c.priority
        return default

    @property
    def max_proposals_per_batch(self) -> int:
        return self.security.max_proposals_per_batch if self.security else 100


DEFAULT_PIPELINE_CONFIG: dict[str, Any] = {
    "instanceId": "default",
    "pipelineId": "default",
    "description": "Default documentation proposal pipeline",
    "steps": [
        {"stepId": "keyword-filter", "stepType": "filter", "enabled": True,
         "config": {"includeKeywords": [], "excludeKeywords": [], "caseSensitive": False}},
        {"stepId": "batch-classify", "stepType": "classify", "enabled": True,
         "config": {"promptId": "thread-classification", "model": "gemini-2.5-flash", "temperature": 0.2, "maxTokens": 32768}},
        {"stepId": "rag-enrich", "stepType": "enrich", "enabled": True,
         "config": {"topK": 5, "minSimilarity": 0.7, "deduplicateTranslations": True}},
        {"stepId": "proposal-generate", "stepType": "generate", "enabled": True,
         "config": {"promptId": "changeset-generation", "model": "gemini-2.5-pro", "temperature": 0.4,
                    "maxTokens": 32768, "maxProposalsPerThread": 5}},
        {"stepId": "content-validate", "stepType": "validate", "enabled": False,
         "config": {"maxRetries": 2, "model": "gemini-2.5-flash"}},
        {"stepId": "length-reduce", "stepType": "condense", "enabled": False,
         "config": {"defaultMaxLength": 3000, "defaultTargetLength": 2000}},
    ],
    "errorHandling": {"stopOnError": False, "retryAttempts": 3, "retryDelayMs": 5000},
    "performance": {"maxConcurrentSteps": 1, "timeoutMs": 300000, "enableCaching": True},
}

DEFAULT_DOMAIN_CONFIG: dict[str, Any] = {
    "domainId": "generic",
    "name": "Generic Documentation",
    "categories": [
        {"id": "troubleshooting", "label": "Troubleshooting",
         "description": "Users reporting problems and the fixes that worked", "priority": 90},
        {"id": "question", "label": "Question",
         "description": "Questions the documentation should answer", "priority": 85},
        {"id": "information", "label": "Information",
         "description": "Explanations and facts worth documenting", "priority": 80},
        {"id": "update", "label": "Update",
         "description": "Changes, releases or deprecations", "priority": 75},
        {"id": NO_DOC_VALUE_CATEGORY, "label": "No Documentation Value",
         "description": "Chatter, greetings and off-topic messages", "priority": 0},
    ],
    "ragPaths": {"include": [], "exclude": ["i18n/**"]},
    "security": {
        "blockPatterns": [r"private[_\s]?key", r"secret[_\s]?token"],
        "requireApproval": True,
        "maxProposalsPerBatch": 100,
    },
    "context": {
        "projectName": "Documentation",
        "domain": "General",
        "targetAudience": "All users",
        "documentationPurpose": "Provide helpful information",
    },
}
