"""
Step factory: stepType -> constructor.

The built-in table is fixed at import time; custom step types are added with
register() on a factory instance, so two orchestrators never share registrations.
"""
import logging
from collections.abc import Callable

from pydantic import ValidationError

from docflow.errors import ConfigError, UnknownStepTypeError
from docflow.llm.handler import LLMHandler
from docflow.pipeline import stages
from docflow.pipeline.config_schemas import StepConfig
from docflow.steps.base import BasePipelineStep
from docflow.steps.batch_classify import BatchClassifyStep
from docflow.steps.content_validation import ContentValidationStep
from docflow.steps.context_enrichment import ContextEnrichmentStep
from docflow.steps.keyword_filter import KeywordFilterStep
from docflow.steps.length_reduction import LengthReductionStep
from docflow.steps.proposal_generate import ProposalGenerateStep
from docflow.steps.rag_enrich import RagEnrichStep
from docflow.steps.ruleset_review import RulesetReviewStep

logger = logging.getLogger(__name__)

StepConstructor = Callable[[StepConfig, LLMHandler | None], BasePipelineStep]

BUILTIN_STEPS: dict[str, StepConstructor] = {
    stages.FILTER: KeywordFilterStep,
    stages.CLASSIFY: BatchClassifyStep,
    stages.ENRICH: RagEnrichStep,
    stages.GENERATE: ProposalGenerateStep,
    stages.CONTEXT_ENRICH: ContextEnrichmentStep,
    stages.RULESET_REVIEW: RulesetReviewStep,
    stages.VALIDATE: ContentValidationStep,
    stages.CONDENSE: LengthReductionStep,
}


class StepFactory:
    def __init__(self) -> None:
        self._registry: dict[str, StepConstructor] = dict(BUILTIN_STEPS)

    def has_step_type(self, step_type: str) -> bool:
        return step_type in self._registry

    def get_registered_types(self) -> list[str]:
        return list(self._registry)

    def register(self, step_type: str, constructor: StepConstructor) -> None:
        if step_type in self._registry:
            logger.warning("[factory] overriding step type %s", step_type)
        self._registry[step_type] = constructor
        logger.debug("[factory] registered step type %s", step_type)

    def create(self, config: StepConfig, llm_handler: LLMHandler | None = None) -> BasePipelineStep:
        """Build one step. Raises ConfigError for an unknown type or invalid step config."""
        constructor = self._registry.get(config.step_type)
        if constructor is None:
            raise UnknownStepTypeError(config.step_type, self.get_registered_types())
        try:
            step = constructor(config, llm_handler)
        except ValidationError as e:
            raise ConfigError(f"Invalid config for step {config.step_id} ({config.step_type}): {e}") from e
        if not step.validate_config(config):
            raise ConfigError(f"Invalid config for step {config.step_id} ({config.step_type})")
        logger.debug("[factory] created %s step %s", config.step_type, config.step_id)
        return step
