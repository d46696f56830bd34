"""
Tenant ruleset markdown -> four ordered rule lists.

A ruleset is a markdown document with up to four `## ` sections:
PROMPT_CONTEXT, REVIEW_MODIFICATIONS, REJECTION_RULES, QUALITY_GATES.
Each section is a bullet or numbered list of free-text rules. HTML comments
are ignored. Anything before the first `## ` header is ignored.
"""
import re
from dataclasses import dataclass, field

PROMPT_CONTEXT = "PROMPT_CONTEXT"
REVIEW_MODIFICATIONS = "REVIEW_MODIFICATIONS"
REJECTION_RULES = "REJECTION_RULES"
QUALITY_GATES = "QUALITY_GATES"

SECTION_NAMES = (PROMPT_CONTEXT, REVIEW_MODIFICATIONS, REJECTION_RULES, QUALITY_GATES)

_SECTION_SPLIT = re.compile(r"^## ", re.MULTILINE)
_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_BULLET = re.compile(r"^\s*[-*•]\s+(.+?)\s*$")
_NUMBERED = re.compile(r"^\s*\d+\.\s+(.+?)\s*$")


@dataclass(frozen=True)
class ParsedRuleset:
    prompt_context: list[str] = field(default_factory=list)
    review_modifications: list[str] = field(default_factory=list)
    rejection_rules: list[str] = field(default_factory=list)
    quality_gates: list[str] = field(default_factory=list)
    raw_content: str = field(default="", compare=False)


def create_empty_ruleset() -> ParsedRuleset:
    return ParsedRuleset()


def _normalize_header(header: str) -> str:
    return re.sub(r"[\s_]+", "_", header.strip().upper())


def _section_for(header: str) -> str | None:
    norm = _normalize_header(header)
    for name in SECTION_NAMES:
        if name in norm:
            return name
    return None


def extract_rules(section_body: str) -> list[str]:
    """Bullet and numbered list items of one section, in document order."""
    body = _HTML_COMMENT.sub("", section_body)
    rules: list[str] = []
    for line in body.splitlines():
        m = _BULLET.match(line) or _NUMBERED.match(line)
        if m and m.group(1):
            rules.append(m.group(1))
    return rules


def parse_ruleset(content: str | None) -> ParsedRuleset:
    """Parse ruleset markdown. Empty or missing content gives an empty ruleset."""
    if not content or not content.strip():
        return ParsedRuleset(raw_content=content or "")
    sections: dict[str, list[str]] = {name: [] for name in SECTION_NAMES}
    # First chunk precedes any `## ` header.
    for chunk in _SECTION_SPLIT.split(content)[1:]:
        header, _, body = chunk.partition("\n")
        name = _section_for(header)
        if name is None:
            continue
        sections[name].extend(extract_rules(body))
    return ParsedRuleset(
        prompt_context=sections[PROMPT_CONTEXT],
        review_modifications=sections[REVIEW_MODIFICATIONS],
        rejection_rules=sections[REJECTION_RULES],
        quality_gates=sections[QUALITY_GATES],
        raw_content=content,
    )


def has_rules(ruleset: ParsedRuleset) -> bool:
    return bool(
        ruleset.prompt_context
        or ruleset.review_modifications
        or ruleset.rejection_rules
        or ruleset.quality_gates
    )


def serialize_ruleset(ruleset: ParsedRuleset, title: str = "Documentation Ruleset") -> str:
    """Render a ruleset back to markdown. parse_ruleset(serialize_ruleset(r)) == r."""
    lines = [f"# {title}", ""]
    for name, rules in (
        (PROMPT_CONTEXT, ruleset.prompt_context),
        (REVIEW_MODIFICATIONS, ruleset.review_modifications),
        (REJECTION_RULES, ruleset.rejection_rules),
        (QUALITY_GATES, ruleset.quality_gates),
    ):
        lines.append(f"## {name}")
        lines.append("")
        lines.extend(f"- {rule}" for rule in rules)
        lines.append("")
    return "\n".join(lines)


def default_ruleset_template() -> str:
    """Starter ruleset for a new tenant. Every example rule is inside a comment."""
    return """# Documentation Ruleset

## PROMPT_CONTEXT
<!-- Guidelines appended to the generation prompt -->
<!--
- Use a friendly, approachable tone
- Include code examples where applicable
- Keep explanations concise
-->

## REVIEW_MODIFICATIONS
<!-- Rewrites applied to each proposal by an LLM pass -->
<!--
- Convert passive voice to active voice
- Add cross-references to related pages
-->

## REJECTION_RULES
<!-- Proposals matching any rule are removed -->
<!--
- Reject if duplicationWarning.overlapPercentage > 80%
- Reject if similarityScore > 0.85 with any related doc
- Reject proposals mentioning "deprecated"
-->

## QUALITY_GATES
<!-- Proposals matching any gate are flagged for attention, not removed -->
<!--
- Flag if consistencyNotes is not empty
- Flag if changePercentage > 50%
- Flag if otherPendingProposals > 0
- Flag if messageCount < 2
- Flag if technicalDepth mismatch
-->
"""
