"""Heuristic text metrics used by proposal enrichment. Pure functions, no I/O."""
import re

from docflow.pipeline.schemas import FormatPattern, StyleMetrics, TechnicalDepth

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_CODE_FENCE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_CODE_KEYWORD = re.compile(r"\b(function|const|let|var|import|export|class|def|return)\b")
_BULLET_LINE = re.compile(r"^\s*[-*•]\s", re.MULTILINE)
_NUMBERED_LINE = re.compile(r"^\s*\d+\.\s", re.MULTILINE)

ADVANCED_TERMS = (
    "algorithm", "complexity", "optimization", "architecture", "implementation details",
    "low-level", "internals", "bytecode", "assembly", "kernel", "syscall",
)
BEGINNER_TERMS = (
    "getting started", "introduction", "basic", "simple", "beginner",
    "first steps", "tutorial", "learn",
)


def avg_sentence_length(text: str) -> int:
    """Average words per sentence, rounded. 0 for empty text."""
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text or "") if s.strip()]
    if not sentences:
        return 0
    words = sum(len(s.split()) for s in sentences)
    return round(words / len(sentences))


def has_code_examples(text: str) -> bool:
    if not text:
        return False
    return bool(_CODE_FENCE.search(text) or _INLINE_CODE.search(text) or _CODE_KEYWORD.search(text))


def detect_format_pattern(text: str) -> FormatPattern:
    if not text:
        return "prose"
    has_list = bool(_BULLET_LINE.search(text) or _NUMBERED_LINE.search(text))
    if not has_list:
        return "prose"
    return "mixed" if "\n\n" in text else "bullets"


def estimate_technical_depth(text: str) -> TechnicalDepth:
    lower = (text or "").lower()
    advanced = sum(1 for term in ADVANCED_TERMS if term in lower)
    beginner = sum(1 for term in BEGINNER_TERMS if term in lower)
    if advanced > 2:
        return "advanced"
    if beginner > 2:
        return "beginner"
    return "intermediate"


def _ngrams(text: str, n: int) -> set[str]:
    words = (text or "").lower().split()
    return {" ".join(words[i:i + n]) for i in range(len(words) - n + 1)}


def ngram_overlap(text1: str, text2: str, n: int = 3) -> int:
    """
    Word n-gram overlap as a percentage of the smaller n-gram set, rounded.
    Identical texts with at least n words give 100; empty input gives 0.
    """
    if not text1 or not text2 or n < 1:
        return 0
    a = _ngrams(text1, n)
    b = _ngrams(text2, n)
    if not a or not b:
        return 0
    return round(len(a & b) / min(len(a), len(b)) * 100)


def analyze_style(text: str) -> StyleMetrics:
    return StyleMetrics(
        avg_sentence_length=avg_sentence_length(text),
        uses_code_examples=has_code_examples(text),
        format_pattern=detect_format_pattern(text),
        technical_depth=estimate_technical_depth(text),
    )


def consistency_notes(target: StyleMetrics, proposal: StyleMetrics) -> list[str]:
    """Human-readable differences between the target page's style and the proposal's."""
    notes: list[str] = []
    if target.format_pattern != proposal.format_pattern:
        notes.append(
            f"Format mismatch: target uses {target.format_pattern}, proposal uses {proposal.format_pattern}"
        )
    if target.technical_depth != proposal.technical_depth:
        notes.append(
            f"Technical depth mismatch: target is {target.technical_depth}, proposal is {proposal.technical_depth}"
        )
    if target.uses_code_examples and not proposal.uses_code_examples:
        notes.append("Target page uses code examples but proposal does not")
    if target.avg_sentence_length > 0:
        diff = abs(target.avg_sentence_length - proposal.avg_sentence_length)
        if diff / target.avg_sentence_length > 0.5:
            notes.append(
                "Sentence length differs significantly: "
                f"target avg {target.avg_sentence_length} words, proposal avg {proposal.avg_sentence_length} words"
            )
    return notes
