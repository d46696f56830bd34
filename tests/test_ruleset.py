"""Unit tests for ruleset parsing, serialization and compiled rule evaluation."""
from datetime import datetime, timedelta, timezone

import pytest

from docflow.persistence.memory import MemoryPersistence
from docflow.pipeline.schemas import (
    ChangeContext,
    DuplicationWarning,
    ProposalEnrichment,
    RelatedDoc,
    SourceAnalysis,
    StyleAnalysis,
    StyleMetrics,
)
from docflow.ruleset import (
    ParsedRuleset,
    compile_ruleset,
    create_empty_ruleset,
    default_ruleset_template,
    evaluate_quality_gates,
    find_rejection,
    has_rules,
    load_tenant_ruleset,
    parse_ruleset,
    serialize_ruleset,
)
from docflow.ruleset.rules import (
    CHANGE_PERCENTAGE,
    CONTENT,
    MESSAGE_COUNT,
    OVERLAP,
    PENDING_PROPOSALS,
    SIMILARITY,
    compile_quality_gate,
    compile_rejection_rule,
)

from conftest import make_proposal

RULESET_MD = """# Acme ruleset

Intro text that is not a rule.
- not a rule either

## PROMPT_CONTEXT
<!-- tone -->
- Use a friendly tone
- Include code examples

## review modifications
1. Convert passive voice to active voice
2. Add cross-references

## Rejection_Rules
<!--
- Reject proposals mentioning "commented out"
-->
* Reject if duplicationWarning.overlapPercentage > 70%
• Reject proposals mentioning "deprecated"

## Quality Gates
- Flag if changePercentage > 40%
- Flag if messageCount < 2
"""


def _enrichment(**kw) -> ProposalEnrichment:
    return ProposalEnrichment(**kw)


def test_parse_ruleset_sections():
    """All four sections parse; header case, spaces and underscores are interchangeable."""
    r = parse_ruleset(RULESET_MD)
    assert r.prompt_context == ["Use a friendly tone", "Include code examples"]
    assert r.review_modifications == ["Convert passive voice to active voice", "Add cross-references"]
    assert r.rejection_rules == [
        "Reject if duplicationWarning.overlapPercentage > 70%",
        'Reject proposals mentioning "deprecated"',
    ]
    assert r.quality_gates == ["Flag if changePercentage > 40%", "Flag if messageCount < 2"]


def test_parse_ruleset_ignores_html_comments():
    """Rules inside HTML comments are dropped."""
    r = parse_ruleset(RULESET_MD)
    assert not any("commented out" in rule for rule in r.rejection_rules)


def test_parse_empty_has_no_rules():
    """Empty or missing content parses to an empty ruleset."""
    assert not has_rules(parse_ruleset(""))
    assert not has_rules(parse_ruleset(None))
    assert parse_ruleset("") == create_empty_ruleset()


def test_has_rules_any_section():
    """has_rules is true when any one list is non-empty."""
    assert has_rules(ParsedRuleset(quality_gates=["Flag if messageCount < 2"]))
    assert has_rules(ParsedRuleset(prompt_context=["Be brief"]))
    assert not has_rules(ParsedRuleset())


def test_serialize_parse_round_trip():
    """parse(serialize(r)) == r for every section, order preserved."""
    r = parse_ruleset(RULESET_MD)
    assert parse_ruleset(serialize_ruleset(r)) == r


def test_default_template_has_no_active_rules():
    """The starter template only carries commented-out examples."""
    assert not has_rules(parse_ruleset(default_ruleset_template()))


def test_compile_rejection_rules():
    """Overlap, similarity and content rules compile to conditions; thresholds default when absent."""
    assert compile_rejection_rule("Reject if duplicationWarning.overlapPercentage > 70%").conditions[0].threshold == 70
    overlap_default = compile_rejection_rule("Reject if duplicationWarning.overlapPercentage is high")
    assert overlap_default.conditions[0].field == OVERLAP
    assert overlap_default.conditions[0].threshold == 80
    sim = compile_rejection_rule("Reject if similarityScore > 0.9 with any related doc").conditions[0]
    assert (sim.field, sim.threshold) == (SIMILARITY, 0.9)
    content = compile_rejection_rule('Reject proposals mentioning "deprecated"').conditions[0]
    assert (content.field, content.pattern) == (CONTENT, "deprecated")


def test_unrecognised_rule_never_matches():
    """A rule no heuristic understands compiles to nothing and rejects nothing."""
    rule = compile_rejection_rule("Reject anything written on a Tuesday")
    assert rule.conditions == ()
    assert find_rejection([rule], make_proposal()) is None


def test_find_rejection_overlap():
    """Overlap above the threshold rejects with the matching page in the reason."""
    rules = compile_ruleset(parse_ruleset(RULESET_MD)).rejection_rules
    p = make_proposal(enrichment=_enrichment(
        duplication_warning=DuplicationWarning(detected=True, matching_page="docs/a.md", overlap_percentage=75)
    ))
    rule, reason = find_rejection(rules, p)
    assert rule.text.startswith("Reject if duplicationWarning")
    assert "75% overlap with docs/a.md" in reason


def test_find_rejection_overlap_below_threshold():
    """Overlap at or under the threshold does not reject."""
    rules = compile_ruleset(parse_ruleset(RULESET_MD)).rejection_rules
    p = make_proposal(enrichment=_enrichment(
        duplication_warning=DuplicationWarning(detected=True, matching_page="docs/a.md", overlap_percentage=70)
    ))
    assert find_rejection(rules, p) is None


def test_find_rejection_content_case_insensitive():
    """Content rules match the suggested text case-insensitively."""
    rules = compile_ruleset(parse_ruleset(RULESET_MD)).rejection_rules
    rule, reason = find_rejection(rules, make_proposal(text="This API is DEPRECATED now."))
    assert "deprecated" in reason


def test_find_rejection_similarity():
    """A related doc above the similarity threshold rejects."""
    rules = [compile_rejection_rule("Reject if similarityScore > 0.85 with any related doc")]
    p = make_proposal(enrichment=_enrichment(
        related_docs=[RelatedDoc(page="docs/b.md", similarity_score=0.93, match_type="semantic")]
    ))
    _, reason = find_rejection(rules, p)
    assert reason == "High similarity with existing doc: 93% match with docs/b.md"


def test_compile_quality_gates():
    """Gate thresholds are parsed; pending-proposal gates need an explicit number."""
    assert compile_quality_gate("Flag if changePercentage > 40%").conditions[0].threshold == 40
    assert compile_quality_gate("Flag if changePercentage is large").conditions[0].field == CHANGE_PERCENTAGE
    pending = compile_quality_gate("Flag if otherPendingProposals > 2").conditions[0]
    assert (pending.field, pending.threshold) == (PENDING_PROPOSALS, 2)
    assert compile_quality_gate("Flag if otherPendingProposals exist").conditions == ()
    count = compile_quality_gate("Flag if messageCount < 3").conditions[0]
    assert (count.field, count.comparator, count.threshold) == (MESSAGE_COUNT, "<", 3)


def test_evaluate_quality_gates():
    """Every holding gate yields a message; gates that do not hold are silent."""
    gates = [
        compile_quality_gate("Flag if consistencyNotes is not empty"),
        compile_quality_gate("Flag if changePercentage > 50%"),
        compile_quality_gate("Flag if otherPendingProposals > 0"),
        compile_quality_gate("Flag if messageCount < 2"),
        compile_quality_gate("Flag if technicalDepth mismatch"),
    ]
    p = make_proposal(enrichment=_enrichment(
        style_analysis=StyleAnalysis(
            target_page_style=StyleMetrics(technical_depth="advanced"),
            proposal_style=StyleMetrics(technical_depth="beginner"),
            consistency_notes=["Format mismatch: target uses bullets, proposal uses prose"],
        ),
        change_context=ChangeContext(change_percentage=30, other_pending_proposals=2),
        source_analysis=SourceAnalysis(message_count=1),
    ))
    messages = [msg for _, msg in evaluate_quality_gates(gates, p)]
    assert messages == [
        "Style review: Format mismatch: target uses bullets, proposal uses prose",
        "Coordination needed: 2 other pending proposals",
        "Limited evidence: only 1 messages",
        "Technical depth mismatch: target is advanced, proposal is beginner",
    ]


def test_quality_gates_need_enrichment():
    """Without enrichment no gate can hold."""
    gates = [compile_quality_gate("Flag if messageCount < 2")]
    assert evaluate_quality_gates(gates, make_proposal()) == []


def test_load_tenant_ruleset_latest():
    """The most recently updated ruleset row wins."""
    store = MemoryPersistence()
    now = datetime.now(timezone.utc)
    store.save_ruleset("acme", "## QUALITY_GATES\n- Flag if messageCount < 2\n", now)
    store.save_ruleset("acme", "## PROMPT_CONTEXT\n- Old rule\n", now - timedelta(days=1))
    r = load_tenant_ruleset(store, "acme")
    assert r.quality_gates == ["Flag if messageCount < 2"]
    assert r.prompt_context == []


def test_load_tenant_ruleset_missing_or_failing():
    """No store, no row, or a failing store all give an empty ruleset."""
    assert not has_rules(load_tenant_ruleset(None, "acme"))
    assert not has_rules(load_tenant_ruleset(MemoryPersistence(), "acme"))

    class Broken(MemoryPersistence):
        def get_latest_ruleset(self, tenant_id):
            raise ConnectionError("db down")

    assert not has_rules(load_tenant_ruleset(Broken(), "acme"))


@pytest.mark.parametrize("header", ["## PROMPT_CONTEXT", "## prompt context", "## Prompt_Context", "## PROMPT CONTEXT (tone)"])
def test_header_variants(header):
    """Header matching ignores case and treats spaces and underscores alike."""
    assert parse_ruleset(f"{header}\n- Be brief\n").prompt_context == ["Be brief"]
