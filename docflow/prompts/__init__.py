"""Prompt templates: loading, rendering and validation."""

from docflow.prompts.registry import (
    PromptRegistry,
    PromptTemplate,
    RenderedPrompt,
    TemplateValidation,
    create_prompt_registry,
)

__all__ = ["PromptRegistry", "PromptTemplate", "RenderedPrompt", "TemplateValidation", "create_prompt_registry"]
