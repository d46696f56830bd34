"""Individual post-processors applied to generated proposal text."""
import json
import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_PLACEHOLDER = "\x00CODE{}\x00"
_PLACEHOLDER_RE = re.compile(r"\x00CODE(\d+)\x00")


@dataclass
class PostProcessResult:
    text: str
    warnings: list[str] = field(default_factory=list)
    was_modified: bool = False


def mask_code_segments(text: str) -> tuple[str, list[str]]:
    """Replace fenced blocks and inline code with placeholders so prose fixes never touch code."""
    segments: list[str] = []

    def keep(m: re.Match) -> str:
        segments.append(m.group(0))
        return _PLACEHOLDER.format(len(segments) - 1)

    masked = _FENCED_BLOCK.sub(keep, text)
    masked = _INLINE_CODE.sub(keep, masked)
    return masked, segments


def unmask_code_segments(text: str, segments: list[str]) -> str:
    return _PLACEHOLDER_RE.sub(lambda m: segments[int(m.group(1))], text)


def is_markdown_path(path: str) -> bool:
    """Markdown extensions, or no extension at all."""
    name = path.lower().rsplit("/", 1)[-1]
    if "." not in name:
        return True
    return name.rsplit(".", 1)[-1] in ("md", "mdx", "markdown")


class PostProcessor:
    name = "base"

    def should_process(self, page: str) -> bool:
        return True

    def process(self, text: str, page: str) -> PostProcessResult:
        raise NotImplementedError


class CodeBlockProcessor(PostProcessor):
    """Closes an unterminated fence and expands single-line JSON blocks."""

    name = "code-block-formatting"

    _JSON_BLOCK = re.compile(r"```json\n([\s\S]*?)```")

    def process(self, text: str, page: str) -> PostProcessResult:
        warnings: list[str] = []
        result = text
        if result.count("```") % 2 == 1:
            result = result.rstrip() + "\n```"
            warnings.append("Closed an unterminated code block")

        def pretty(m: re.Match) -> str:
            body = m.group(1).strip()
            if "\n" in body or not body.startswith(("{", "[")):
                return m.group(0)
            try:
                return "```json\n" + json.dumps(json.loads(body), indent=2) + "\n```"
            except json.JSONDecodeError:
                return m.group(0)

        result = self._JSON_BLOCK.sub(pretty, result)
        return PostProcessResult(result, warnings, result != text)


_COMPLEX_HTML = [
    (re.compile(r"<table[\s\S]*?</table>", re.IGNORECASE), "Contains HTML table - manual conversion to markdown table may be needed"),
    (re.compile(r"<svg[\s\S]*?</svg>", re.IGNORECASE), "Contains SVG element - needs manual review"),
    (re.compile(r"<iframe[\s\S]*?</iframe>", re.IGNORECASE), "Contains iframe - needs manual review"),
    (re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE), "Contains script tag - should be removed or converted"),
    (re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE), "Contains style tag - should be removed"),
    (re.compile(r"<form[\s\S]*?</form>", re.IGNORECASE), "Contains form element - needs manual review"),
]
_ANY_TAG = re.compile(r"</?([a-z][a-z0-9]*)(?:\s[^>]*)?/?>", re.IGNORECASE)


def detect_complex_html(text: str) -> list[str]:
    """Warnings for HTML that cannot be converted to markdown automatically."""
    if not text:
        return []
    warnings = [message for pattern, message in _COMPLEX_HTML if pattern.search(text)]
    tags = sorted({t.lower() for t in _ANY_TAG.findall(text)})
    if tags:
        warnings.append(f"Contains unconverted HTML elements: {', '.join(tags)}")
    return warnings


class HtmlToMarkdownProcessor(PostProcessor):
    name = "html-to-markdown"

    _RULES = [
        (re.compile(r"<br\s*/?>", re.IGNORECASE), "\n"),
        (re.compile(r"<(strong|b)(?:\s[^>]*)?>(.*?)</\1>", re.IGNORECASE | re.DOTALL), r"**\2**"),
        (re.compile(r"<(em|i)(?:\s[^>]*)?>(.*?)</\1>", re.IGNORECASE | re.DOTALL), r"*\2*"),
        (re.compile(r"<code(?:\s[^>]*)?>(.*?)</code>", re.IGNORECASE | re.DOTALL), r"`\1`"),
        (re.compile(r"<a\s+[^>]*href=[\"']([^\"']+)[\"'][^>]*>(.*?)</a>", re.IGNORECASE | re.DOTALL), r"[\2](\1)"),
        (re.compile(r"<li(?:\s[^>]*)?>(.*?)</li>", re.IGNORECASE | re.DOTALL), r"- \1\n"),
        (re.compile(r"</?(ul|ol)(?:\s[^>]*)?>", re.IGNORECASE), "\n"),
        (re.compile(r"<p(?:\s[^>]*)?>(.*?)</p>", re.IGNORECASE | re.DOTALL), r"\1\n\n"),
    ]
    _HEADING = re.compile(r"<h([1-6])(?:\s[^>]*)?>(.*?)</h\1>", re.IGNORECASE | re.DOTALL)

    def should_process(self, page: str) -> bool:
        return is_markdown_path(page)

    def process(self, text: str, page: str) -> PostProcessResult:
        masked, segments = mask_code_segments(text)
        result = self._HEADING.sub(lambda m: "#" * int(m.group(1)) + " " + m.group(2).strip() + "\n\n", masked)
        for pattern, replacement in self._RULES:
            result = pattern.sub(replacement, result)
        warnings = detect_complex_html(result)
        result = unmask_code_segments(result, segments)
        return PostProcessResult(result, warnings, result != text)


class MarkdownFormattingProcessor(PostProcessor):
    """Heading spacing and bold labels glued to the next sentence."""

    name = "markdown-formatting"

    _HEADING_NO_SPACE = re.compile(r"^(#{1,6})([^#\s])", re.MULTILINE)
    _LABEL = re.compile(r"([.!?])\s*(\*\*(?:Cause|Solution|Note|Warning|Tip|Example):\*\*)")

    def should_process(self, page: str) -> bool:
        return is_markdown_path(page)

    def process(self, text: str, page: str) -> PostProcessResult:
        masked, segments = mask_code_segments(text)
        result = self._HEADING_NO_SPACE.sub(r"\1 \2", masked)
        result = self._LABEL.sub(r"\1\n\n\2", result)
        result = "\n".join(line.rstrip() for line in result.split("\n"))
        result = unmask_code_segments(result, segments)
        return PostProcessResult(result, [], result != text)


class ListFormattingProcessor(PostProcessor):
    """Splits list items the model ran into the preceding sentence."""

    name = "list-formatting"

    _RULES = [
        (re.compile(r"(\))(\d+\.\s*\*{0,2}\s*[A-Z])"), r"\1\n\n\2"),
        (re.compile(r"([.!?])(\d+\.\s*\*{0,2}\s*[A-Z])"), r"\1\n\n\2"),
        (re.compile(r"([a-z])(\d+\.\s+[A-Z])"), r"\1\n\n\2"),
        (re.compile(r"([.!?])(-\s+[A-Z])"), r"\1\n\n\2"),
        (re.compile(r"(:)(\d+\.)"), r"\1\n\n\2"),
        (re.compile(r"(:)(-\s+[A-Z])"), r"\1\n\n\2"),
        (re.compile(r"([.!?])\s+(\*\s[A-Z])"), r"\1\n\n\2"),
    ]
    _EXTRA_BLANK_LINES = re.compile(r"\n{3,}")

    def should_process(self, page: str) -> bool:
        return is_markdown_path(page)

    def process(self, text: str, page: str) -> PostProcessResult:
        masked, segments = mask_code_segments(text)
        result = masked
        for pattern, replacement in self._RULES:
            result = pattern.sub(replacement, result)
        result = self._EXTRA_BLANK_LINES.sub("\n\n", result)
        result = unmask_code_segments(result, segments)
        return PostProcessResult(result, [], result != text)
