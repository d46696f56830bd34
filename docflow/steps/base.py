"""
Base class for pipeline steps.

A step is constructed once per pipeline from its StepConfig (validated against
the step type's typed config model), then `execute(context)` is called once per
batch. Helpers here cover config access, timing, non-fatal error recording and
the prompt-audit trail every LLM call leaves in `context.step_prompt_logs`.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from docflow.errors import MissingConfigError, MissingDependencyError, PromptNotFoundError
from docflow.llm.handler import JSONResult, LLMContext, LLMHandler, LLMRequest
from docflow.pipeline.config_schemas import StepConfig
from docflow.pipeline.context import PipelineContext, PipelineError, PromptLogEntry
from docflow.pipeline.schemas import RagDocument
from docflow.pipeline.step_configs import STEP_CONFIG_MODELS
from docflow.prompts.registry import RenderedPrompt, interpolate

S = TypeVar("S", bound=BaseModel)
R = TypeVar("R", bound=BaseModel)

_MISSING = object()


@dataclass
class StepMetadata:
    name: str
    description: str
    version: str


class BasePipelineStep(ABC, Generic[S]):
    step_type: str = ""
    # Overrides the model registered for step_type in STEP_CONFIG_MODELS (custom steps).
    config_model: type[BaseModel] | None = None
    name: str = ""
    description: str = ""
    version: str = "1.0.0"

    def __init__(self, config: StepConfig, llm_handler: LLMHandler | None = None):
        self.config = config
        self.step_id = config.step_id
        self.llm_handler = llm_handler
        self.logger = logging.getLogger(f"docflow.steps.{config.step_id}")
        # Raises pydantic ValidationError on bad config; the factory turns it into ConfigError.
        model = self.typed_config_model()
        self.settings: S = model.model_validate(config.config) if model else None  # type: ignore[assignment]

    @classmethod
    def typed_config_model(cls) -> type[BaseModel] | None:
        return cls.config_model or STEP_CONFIG_MODELS.get(cls.step_type)

    @abstractmethod
    def execute(self, context: PipelineContext) -> PipelineContext:
        pass

    def validate_config(self, config: StepConfig) -> bool:
        """Extra checks beyond the typed model. Subclasses extend and call super()."""
        if not config.step_id or not config.step_type:
            self.logger.error("stepId and stepType are required")
            return False
        model = self.typed_config_model()
        if model is not None:
            try:
                model.model_validate(config.config)
            except ValidationError as e:
                self.logger.error("invalid config: %s", e)
                return False
        return True

    def get_metadata(self) -> StepMetadata:
        return StepMetadata(name=self.name or self.step_id, description=self.description, version=self.version)

    # --- config / dependencies ---

    def get_config_value(self, key: str, default: Any = _MISSING) -> Any:
        """Raw value from the step's JSON config. Raises MissingConfigError if absent and no default."""
        if key in self.config.config:
            return self.config.config[key]
        if default is _MISSING:
            raise MissingConfigError(self.step_id, key)
        return default

    def require_llm_handler(self) -> LLMHandler:
        if self.llm_handler is None:
            raise MissingDependencyError(self.step_id, "an LLM handler")
        return self.llm_handler

    def record_timing(self, context: PipelineContext, started: float) -> int:
        """Store elapsed ms since `started` (time.perf_counter()) for this step."""
        elapsed = int((time.perf_counter() - started) * 1000)
        context.metrics.step_durations[self.step_id] = elapsed
        return elapsed

    def add_error(
        self,
        context: PipelineContext,
        message: str,
        extra: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> None:
        """Record a non-fatal error on the context. Never raises."""
        try:
            context.errors.append(PipelineError(step_id=self.step_id, message=message, context=extra or {}, error=error))
            self.logger.warning("%s", message)
        except Exception as e:
            self.logger.error("could not record error %r: %s", message, e)

    # --- prompt audit ---

    def _prompt_log(self, context: PipelineContext) -> list[PromptLogEntry]:
        return context.step_prompt_logs.setdefault(self.step_id, [])

    def log_prompt(
        self,
        context: PipelineContext,
        label: str,
        prompt_id: str | None,
        template: dict[str, str] | None,
        resolved: dict[str, str],
    ) -> int:
        """Append an llm-call entry with an empty response. Returns its index for update_prompt_response()."""
        entries = self._prompt_log(context)
        entries.append(PromptLogEntry(label=label, prompt_id=prompt_id, template=template, resolved=resolved, response=""))
        return len(entries) - 1

    def update_prompt_response(self, context: PipelineContext, index: int, response: str) -> None:
        entries = self._prompt_log(context)
        if 0 <= index < len(entries):
            entries[index].response = response

    def log_rag_query(self, context: PipelineContext, label: str, query: str, results: list[RagDocument]) -> None:
        self._prompt_log(context).append(
            PromptLogEntry(
                label=label,
                entry_type="rag-query",
                query=query,
                result_count=len(results),
                results=[
                    {"filePath": d.file_path, "title": d.title, "similarity": d.similarity, "contentPreview": d.content[:200]}
                    for d in results
                ],
            )
        )

    def template_pair(self, context: PipelineContext, prompt_id: str) -> dict[str, str] | None:
        template = context.prompts.get(prompt_id) if context.prompts else None
        if template is None:
            return None
        return {"system": template.system, "user": template.user}

    def render_prompt(
        self,
        context: PipelineContext,
        prompt_id: str,
        variables: dict[str, Any],
        fallback: tuple[str, str] | None = None,
    ) -> tuple[RenderedPrompt, str | None]:
        """
        Render a registry template, or the inline (system, user) fallback when the
        registry has no such id. Returns (prompt, prompt id or None for the fallback).
        """
        if context.prompts is not None and context.prompts.get(prompt_id) is not None:
            return context.prompts.render(prompt_id, variables), prompt_id
        if fallback is None:
            raise PromptNotFoundError(prompt_id)
        self.logger.debug("Prompt %s not found, using inline prompt", prompt_id)
        system, _ = interpolate(fallback[0], variables)
        user, _ = interpolate(fallback[1], variables)
        return RenderedPrompt(system=system, user=user, variables=variables), None

    # --- LLM ---

    def llm_context(self, context: PipelineContext, purpose: str) -> LLMContext:
        return LLMContext(instance_id=context.instance_id, purpose=purpose, batch_id=context.batch_id)

    def call_llm_json(
        self,
        context: PipelineContext,
        *,
        label: str,
        prompt_id: str | None,
        rendered: RenderedPrompt,
        schema: type[R],
        model: str,
        temperature: float | None,
        max_tokens: int | None,
        purpose: str,
    ) -> tuple[JSONResult[R], int]:
        """
        Audited, schema-validated LLM call. The audit entry is written before the
        call and its response backfilled after, with "ERROR: ..." on failure.
        Returns (result, audit entry index). Exceptions propagate.
        """
        handler = self.require_llm_handler()
        index = self.log_prompt(
            context,
            label,
            prompt_id,
            self.template_pair(context, prompt_id) if prompt_id else None,
            {"system": rendered.system, "user": rendered.user},
        )
        request = LLMRequest(
            model=model,
            system_prompt=rendered.system,
            user_prompt=rendered.user,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        try:
            result = handler.request_json(request, schema, self.llm_context(context, purpose))
        except Exception as e:
            self.update_prompt_response(context, index, f"ERROR: {e}")
            raise
        self.update_prompt_response(context, index, result.response.text)
        context.metrics.llm_calls += 1
        context.metrics.llm_tokens_used += result.response.tokens_used or 0
        context.metrics.llm_cost_usd += result.response.cost_usd or 0.0
        return result, index
