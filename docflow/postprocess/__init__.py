"""Post-processing of generated proposal text: code blocks, HTML -> Markdown, headings, lists."""
import logging

from docflow.postprocess.processors import (
    CodeBlockProcessor,
    HtmlToMarkdownProcessor,
    ListFormattingProcessor,
    MarkdownFormattingProcessor,
    PostProcessor,
    PostProcessResult,
    detect_complex_html,
)

logger = logging.getLogger(__name__)


class PostProcessorPipeline:
    def __init__(self, processors: list[PostProcessor]):
        self.processors = processors

    def process(self, text: str, page: str) -> PostProcessResult:
        warnings: list[str] = []
        result = text
        for processor in self.processors:
            if not processor.should_process(page):
                continue
            out = processor.process(result, page)
            if out.was_modified:
                logger.debug("[postprocess] %s modified proposal for %s", processor.name, page)
            result = out.text
            warnings.extend(w for w in out.warnings if w not in warnings)
        return PostProcessResult(result, warnings, result != text)


# Code blocks first (before masking), lists last.
default_pipeline = PostProcessorPipeline([
    CodeBlockProcessor(),
    HtmlToMarkdownProcessor(),
    MarkdownFormattingProcessor(),
    ListFormattingProcessor(),
])


def post_process_proposal(text: str | None, page: str) -> PostProcessResult:
    if not text:
        return PostProcessResult("", [], False)
    return default_pipeline.process(text, page)


__all__ = ["PostProcessorPipeline", "PostProcessResult", "default_pipeline", "detect_complex_html", "post_process_proposal"]
