"""Keyword filter: drop messages by exclude/include keyword lists."""
import time

from docflow.pipeline import stages
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import Message
from docflow.pipeline.step_configs import KeywordFilterConfig
from docflow.steps.base import BasePipelineStep


class KeywordFilterStep(BasePipelineStep[KeywordFilterConfig]):
    step_type = stages.FILTER
    name = "Keyword Filter"
    description = "Filters messages by include/exclude keyword lists"

    def _contains_any(self, text: str, keywords: list[str]) -> bool:
        if not self.settings.case_sensitive:
            text = text.lower()
            keywords = [k.lower() for k in keywords]
        return any(k in text for k in keywords if k)

    def matches(self, message: Message) -> bool:
        """Exclusion wins over inclusion. An empty include list keeps everything not excluded."""
        if self.settings.exclude_keywords and self._contains_any(message.content, self.settings.exclude_keywords):
            return False
        if self.settings.include_keywords:
            return self._contains_any(message.content, self.settings.include_keywords)
        return True

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        if not self.settings.include_keywords and not self.settings.exclude_keywords:
            context.filtered_messages = list(context.messages)
            self.logger.info("No keyword filters configured, passing all %d messages", len(context.messages))
        else:
            context.filtered_messages = [m for m in context.messages if self.matches(m)]
            self.logger.info("Filtered %d -> %d messages", len(context.messages), len(context.filtered_messages))
        self.record_timing(context, started)
        return context
