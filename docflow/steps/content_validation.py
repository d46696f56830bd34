"""
Content validation: structural checks per target file type, with LLM-assisted
reformatting on failure.

Validators raise FormatValidationError; the step catches it, asks the LLM to fix
the reported problem, and re-validates. A proposal is never dropped here.
"""
import json
import re
import time

import yaml

from docflow.errors import ConfigError, FormatValidationError
from docflow.pipeline import stages
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.schemas import CamelModel, Proposal
from docflow.pipeline.step_configs import ContentValidationConfig
from docflow.steps.base import BasePipelineStep

MARKDOWN = "markdown"
YAML = "yaml"
JSON = "json"
HTML = "html"
XML = "xml"
TEXT = "text"

_EXTENSIONS = {
    "md": MARKDOWN,
    "mdx": MARKDOWN,
    "yaml": YAML,
    "yml": YAML,
    "json": JSON,
    "html": HTML,
    "htm": HTML,
    "xml": XML,
    "txt": TEXT,
}

MAX_HEADING_WORDS = 6

# Mixed-case product names allowed inside headings.
COMPOUND_NAMES = re.compile(
    r"\b(JavaScript|TypeScript|GitHub|GitLab|LinkedIn|YouTube|iOS|macOS|PostgreSQL|MongoDB|MySQL|NoSQL|"
    r"GraphQL|WebSocket|IntelliJ|PyCharm|DevOps|OAuth|FastAPI|NumPy|DataFrame)\b",
    re.IGNORECASE,
)

_FENCE = re.compile(r"```")
_FENCED_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_TICK = re.compile(r"(?<!\\)`(?!``)")
_ANY_TICK = re.compile(r"(?<!\\)`")
_TRUNCATED_LINK = re.compile(r"\]\([^)]*$", re.MULTILINE)
_EMPHASIS = re.compile(r"\*{1,3}[^*\n]{1,200}\*{1,3}")
_HEADING = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)
_SENTENCE_BREAK = re.compile(r"[.!?]\s+[A-Z]")
_CASE_JOIN = re.compile(r"[a-z][A-Z]")
_HEADING_WITH_LIST = re.compile(r"^(#{1,6})\s+[^\n]+[a-z]\s*[-*1-9]\.\s", re.MULTILINE)
_TABLE_ROW = re.compile(r"^\|[^|]+\|", re.MULTILINE)
_TABLE_SEPARATOR = re.compile(r"^\|[\s:-]+\|", re.MULTILINE)
_OPEN_TAG = re.compile(r"<[a-zA-Z][^>]*(?<!/)\s*>")
_CLOSE_TAG = re.compile(r"</[a-zA-Z][^>]*>")

_INLINE_SYSTEM = """You are a content formatter specializing in {{fileType}} files.
Your job is to fix formatting errors in the provided content while preserving the meaning and structure.
Only fix the specific validation error mentioned - do not make unnecessary changes.
Return JSON with reformattedContent (the corrected content) and an optional changesDescription."""

_INLINE_USER = """The following {{fileType}} content has a validation error:

**Validation Error:** {{validationError}}

**Content:**
{{content}}

Please fix the formatting error."""


class ReformatResponse(CamelModel):
    reformatted_content: str
    changes_description: str | None = None


def file_type_for(path: str) -> str:
    """File type from the path's extension. Unknown extensions are treated as markdown."""
    ext = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return _EXTENSIONS.get(ext, MARKDOWN)


def _heading_problem(heading: str) -> str | None:
    words = len(heading.split())
    if words > MAX_HEADING_WORDS:
        return f'Heading too long ({words} words) - may have paragraph text concatenated: "{heading[:50]}..."'
    if _SENTENCE_BREAK.search(heading):
        return f'Heading appears to contain paragraph text (sentence break detected): "{heading[:50]}..."'
    if _CASE_JOIN.search(COMPOUND_NAMES.sub("", heading)):
        return f'Heading contains possible concatenation (missing space before capital): "{heading[:50]}..."'
    return None


def markdown_errors(content: str) -> list[str]:
    errors: list[str] = []
    if len(_FENCE.findall(content)) % 2:
        errors.append("Unbalanced code blocks (odd number of ``` markers)")
    # Remaining checks apply to prose only.
    prose = _FENCED_BLOCK.sub("", content)
    if len(_INLINE_TICK.findall(content)) % 2:
        if len(_ANY_TICK.findall(prose)) % 2:
            errors.append("Unbalanced inline code markers")
    if _TRUNCATED_LINK.search(prose):
        errors.append("Incomplete markdown links detected")
    for match in _EMPHASIS.finditer(prose):
        text = match.group(0)
        if len(text) - len(text.lstrip("*")) != len(text) - len(text.rstrip("*")):
            errors.append("Unbalanced bold/italic markers")
            break
    for match in _HEADING.finditer(prose):
        problem = _heading_problem(match.group(2))
        if problem:
            errors.append(problem)
            break
    if _HEADING_WITH_LIST.search(prose):
        errors.append("Heading appears to have list content on the same line")
    if _TABLE_ROW.search(prose) and not _TABLE_SEPARATOR.search(prose):
        errors.append(
            "Table rows detected without proper table structure (missing header/separator row). "
            "Tables require: header row, separator row (|---|---|), then data rows"
        )
    return errors


def validate_content(content: str, file_type: str) -> None:
    """Raise FormatValidationError describing every problem found; return None when valid."""
    if file_type == MARKDOWN:
        errors = markdown_errors(content)
        if errors:
            raise FormatValidationError(file_type, "; ".join(errors))
    elif file_type == YAML:
        try:
            yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise FormatValidationError(file_type, f"YAML parse error: {e}") from e
    elif file_type == JSON:
        try:
            json.loads(content)
        except json.JSONDecodeError as e:
            raise FormatValidationError(file_type, f"JSON parse error: {e}") from e
    elif file_type in (HTML, XML):
        opened = len(_OPEN_TAG.findall(content))
        closed = len(_CLOSE_TAG.findall(content))
        if opened != closed:
            raise FormatValidationError(file_type, f"Unbalanced tags: {opened} open tags, {closed} close tags")


def is_valid(content: str, file_type: str) -> bool:
    try:
        validate_content(content, file_type)
    except FormatValidationError:
        return False
    return True


class ContentValidationStep(BasePipelineStep[ContentValidationConfig]):
    step_type = stages.VALIDATE
    name = "Content Validator"
    description = "Validates file content format and uses LLM to reformat on failure"

    def __init__(self, config, llm_handler=None):
        super().__init__(config, llm_handler)
        self.skip_patterns: list[re.Pattern] = []
        for pattern in self.settings.skip_patterns:
            try:
                self.skip_patterns.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                raise ConfigError(f"Step {self.step_id}: invalid skipPattern {pattern!r}: {e}") from e

    def should_skip(self, path: str) -> bool:
        return any(p.search(path) for p in self.skip_patterns)

    def execute(self, context: PipelineContext) -> PipelineContext:
        started = time.perf_counter()
        self.require_llm_handler()
        validated = reformatted = failed = 0
        for proposals in context.proposals.values():
            for proposal in proposals:
                if not proposal.suggested_text or proposal.update_type in ("DELETE", "NONE"):
                    continue
                if self.should_skip(proposal.page):
                    self.logger.debug("Skipping validation for %s (matches skip pattern)", proposal.page)
                    continue
                was_reformatted, ok = self.validate_and_reformat(context, proposal, file_type_for(proposal.page))
                validated += 1
                reformatted += 1 if was_reformatted else 0
                failed += 0 if ok else 1
        self.record_timing(context, started)
        self.logger.info(
            "Content validation complete: %d validated, %d reformatted, %d failed", validated, reformatted, failed
        )
        return context

    def validate_and_reformat(self, context: PipelineContext, proposal: Proposal, file_type: str) -> tuple[bool, bool]:
        """
        Validate, then up to max_retries + 1 reformat rounds. Returns (was_reformatted, valid).
        The proposal keeps the last content produced either way.
        """
        content = proposal.suggested_text or ""
        attempts = self.settings.max_retries + 1
        was_reformatted = False
        last_error = ""
        for attempt in range(attempts + 1):
            try:
                validate_content(content, file_type)
            except FormatValidationError as e:
                last_error = str(e)
            else:
                proposal.suggested_text = content
                if was_reformatted:
                    proposal.warnings.append("Content was reformatted by LLM")
                return was_reformatted, True
            if attempt == attempts:
                break
            self.logger.debug(
                "Validation failed for %s (attempt %d/%d): %s", proposal.page, attempt + 1, attempts, last_error
            )
            try:
                content = self.reformat(context, proposal.page, content, file_type, last_error)
            except Exception as e:
                self.logger.error("LLM reformat failed for %s: %s", proposal.page, e)
                proposal.warnings.append(f"Content reformatting failed: {e}")
                break
            was_reformatted = True

        proposal.suggested_text = content
        self.logger.warning(
            "Content validation failed for %s after %d attempts: %s", proposal.page, attempts, last_error
        )
        proposal.warnings.append(f"Validation failed after {attempts} attempts: {last_error}")
        return was_reformatted, False

    def reformat(self, context: PipelineContext, page: str, content: str, file_type: str, error: str) -> str:
        rendered, prompt_id = self.render_prompt(
            context,
            self.settings.prompt_id,
            {"fileType": file_type, "filePath": page, "validationError": error, "content": content},
            fallback=(_INLINE_SYSTEM, _INLINE_USER),
        )
        result, _ = self.call_llm_json(
            context,
            label=f"Reformat: {page}",
            prompt_id=prompt_id,
            rendered=rendered,
            schema=ReformatResponse,
            model=self.settings.model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            purpose="content-reformat",
        )
        return result.data.reformatted_content
