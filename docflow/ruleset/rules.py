"""
Rule compilation and evaluation for rejection rules and quality gates.

Rules are free text ("Reject if duplicationWarning.overlapPercentage > 80%").
Each rule is compiled once, when the ruleset is loaded, into conditions of the
form {field, comparator, threshold | pattern} by keyword heuristics over the
lowercased text. A rule no heuristic recognises compiles to no conditions and
never matches. A rule may carry several conditions; the first one that holds
decides the outcome.
"""
import logging
import re
from dataclasses import dataclass, field

from docflow.pipeline.schemas import Proposal
from docflow.ruleset.parser import ParsedRuleset

logger = logging.getLogger(__name__)

OVERLAP = "duplicationWarning.overlapPercentage"
SIMILARITY = "relatedDocs.similarityScore"
CONTENT = "suggestedText"
CONSISTENCY_NOTES = "styleAnalysis.consistencyNotes"
CHANGE_PERCENTAGE = "changeContext.changePercentage"
PENDING_PROPOSALS = "changeContext.otherPendingProposals"
MESSAGE_COUNT = "sourceAnalysis.messageCount"
TECHNICAL_DEPTH = "styleAnalysis.technicalDepth"

_GT_INT = re.compile(r">\s*(\d+)")
_GT_FLOAT = re.compile(r">\s*(\d*\.?\d+)")
_LT_INT = re.compile(r"<\s*(\d+)")
_CONTENT_PATTERN = re.compile(r"(?:mentioning|containing)\s+[\"']?([^\"']+)[\"']?", re.IGNORECASE)


@dataclass(frozen=True)
class RuleCondition:
    field: str
    comparator: str
    """One of ">", "<", "contains", "non-empty", "mismatch"."""
    threshold: float | None = None
    pattern: str | None = None


@dataclass(frozen=True)
class CompiledRule:
    text: str
    conditions: tuple[RuleCondition, ...] = ()


@dataclass(frozen=True)
class CompiledRuleset:
    parsed: ParsedRuleset
    rejection_rules: list[CompiledRule] = field(default_factory=list)
    quality_gates: list[CompiledRule] = field(default_factory=list)


def _number(regex: re.Pattern, text: str, default: float | None) -> float | None:
    m = regex.search(text)
    return float(m.group(1)) if m else default


def compile_rejection_rule(text: str) -> CompiledRule:
    lower = text.lower()
    conditions: list[RuleCondition] = []
    if "duplicationwarning" in lower and "overlappercentage" in lower:
        conditions.append(RuleCondition(OVERLAP, ">", _number(_GT_INT, text, 80)))
    if "similarityscore" in lower:
        conditions.append(RuleCondition(SIMILARITY, ">", _number(_GT_FLOAT, text, 0.85)))
    if "proposals mentioning" in lower or "containing" in lower:
        m = _CONTENT_PATTERN.search(text)
        if m and m.group(1).strip():
            conditions.append(RuleCondition(CONTENT, "contains", pattern=m.group(1).strip()))
    if not conditions:
        logger.debug("[ruleset] rejection rule not recognised, will never match: %s", text)
    return CompiledRule(text=text, conditions=tuple(conditions))


def compile_quality_gate(text: str) -> CompiledRule:
    lower = text.lower()
    conditions: list[RuleCondition] = []
    if "consistencynotes" in lower and "not empty" in lower:
        conditions.append(RuleCondition(CONSISTENCY_NOTES, "non-empty"))
    if "changepercentage" in lower:
        conditions.append(RuleCondition(CHANGE_PERCENTAGE, ">", _number(_GT_INT, text, 50)))
    if "otherpendingproposals" in lower:
        threshold = _number(_GT_INT, text, None)
        if threshold is not None:
            conditions.append(RuleCondition(PENDING_PROPOSALS, ">", threshold))
    if "messagecount" in lower:
        threshold = _number(_LT_INT, text, None)
        if threshold is not None:
            conditions.append(RuleCondition(MESSAGE_COUNT, "<", threshold))
    if "technicaldepth" in lower and "mismatch" in lower:
        conditions.append(RuleCondition(TECHNICAL_DEPTH, "mismatch"))
    if not conditions:
        logger.debug("[ruleset] quality gate not recognised, will never match: %s", text)
    return CompiledRule(text=text, conditions=tuple(conditions))


def compile_ruleset(parsed: ParsedRuleset) -> CompiledRuleset:
    return CompiledRuleset(
        parsed=parsed,
        rejection_rules=[compile_rejection_rule(r) for r in parsed.rejection_rules],
        quality_gates=[compile_quality_gate(r) for r in parsed.quality_gates],
    )


def _rejection_reason(cond: RuleCondition, proposal: Proposal) -> str | None:
    enrichment = proposal.enrichment
    if cond.field == OVERLAP:
        if enrichment is None:
            return None
        dup = enrichment.duplication_warning
        if dup.detected and dup.overlap_percentage is not None and dup.overlap_percentage > cond.threshold:
            return f"Duplicate content detected: {dup.overlap_percentage}% overlap with {dup.matching_page}"
    elif cond.field == SIMILARITY:
        if enrichment is None:
            return None
        for doc in enrichment.related_docs:
            if doc.similarity_score > cond.threshold:
                return f"High similarity with existing doc: {round(doc.similarity_score * 100)}% match with {doc.page}"
    elif cond.field == CONTENT:
        text = proposal.suggested_text or ""
        if text and cond.pattern and cond.pattern.lower() in text.lower():
            return f'Content matches rejection pattern: "{cond.pattern}"'
    return None


def find_rejection(rules: list[CompiledRule], proposal: Proposal) -> tuple[CompiledRule, str] | None:
    """First (rule, reason) that rejects the proposal, or None."""
    for rule in rules:
        for cond in rule.conditions:
            reason = _rejection_reason(cond, proposal)
            if reason:
                return rule, reason
    return None


def _gate_message(cond: RuleCondition, proposal: Proposal) -> str | None:
    enrichment = proposal.enrichment
    if enrichment is None:
        return None
    style = enrichment.style_analysis
    change = enrichment.change_context
    if cond.field == CONSISTENCY_NOTES and style.consistency_notes:
        return f"Style review: {', '.join(style.consistency_notes)}"
    if cond.field == CHANGE_PERCENTAGE and change.change_percentage > cond.threshold:
        return f"Significant change: {change.change_percentage}% modification"
    if cond.field == PENDING_PROPOSALS and change.other_pending_proposals > cond.threshold:
        return f"Coordination needed: {change.other_pending_proposals} other pending proposals"
    if cond.field == MESSAGE_COUNT and enrichment.source_analysis.message_count < cond.threshold:
        return f"Limited evidence: only {enrichment.source_analysis.message_count} messages"
    if cond.field == TECHNICAL_DEPTH:
        target = style.target_page_style.technical_depth
        mine = style.proposal_style.technical_depth
        if target != mine:
            return f"Technical depth mismatch: target is {target}, proposal is {mine}"
    return None


def evaluate_quality_gates(gates: list[CompiledRule], proposal: Proposal) -> list[tuple[CompiledRule, str]]:
    """Every (gate, message) that holds for the proposal, in gate order."""
    flags: list[tuple[CompiledRule, str]] = []
    for gate in gates:
        for cond in gate.conditions:
            message = _gate_message(cond, proposal)
            if message:
                flags.append((gate, message))
    return flags
