"""Unit tests for the heuristic text metrics used by context enrichment."""
from docflow.enrichment.text_analysis import (
    analyze_style,
    avg_sentence_length,
    consistency_notes,
    detect_format_pattern,
    estimate_technical_depth,
    has_code_examples,
    ngram_overlap,
)
from docflow.pipeline.schemas import StyleMetrics


def test_ngram_overlap_identical_text():
    """Identical text with at least n words overlaps 100%."""
    text = "restart the server after changing the port setting"
    assert ngram_overlap(text, text, 3) == 100


def test_ngram_overlap_empty():
    """Empty input overlaps 0%."""
    assert ngram_overlap("", "anything at all here", 3) == 0
    assert ngram_overlap("anything at all here", "", 3) == 0


def test_ngram_overlap_too_short():
    """Text shorter than n words has no n-grams."""
    assert ngram_overlap("two words", "two words", 3) == 0


def test_ngram_overlap_partial():
    """Overlap is relative to the smaller n-gram set."""
    a = "one two three four"
    b = "one two three five six seven"
    # a: {one two three, two three four}; shared: {one two three}
    assert ngram_overlap(a, b, 3) == 50


def test_avg_sentence_length():
    """Words per sentence, rounded."""
    assert avg_sentence_length("One two three. Four five six seven eight.") == 4
    assert avg_sentence_length("") == 0


def test_has_code_examples():
    """Fences, inline code and code keywords count as code."""
    assert has_code_examples("Use ```\nnpm start\n```")
    assert has_code_examples("Run `make` first")
    assert has_code_examples("def main(): return 1")
    assert not has_code_examples("Plain prose only")


def test_detect_format_pattern():
    """Lists without paragraphs are bullets; lists with paragraphs are mixed."""
    assert detect_format_pattern("Just prose.") == "prose"
    assert detect_format_pattern("- a\n- b") == "bullets"
    assert detect_format_pattern("Intro.\n\n1. first\n2. second") == "mixed"


def test_estimate_technical_depth():
    """More than two advanced or beginner terms decide the depth."""
    assert estimate_technical_depth("algorithm complexity and optimization of the kernel") == "advanced"
    assert estimate_technical_depth("a simple, basic introduction tutorial") == "beginner"
    assert estimate_technical_depth("configure the port") == "intermediate"


def test_analyze_style():
    """analyze_style bundles the individual metrics."""
    s = analyze_style("- Run `make`.\n- Then deploy.")
    assert s.format_pattern == "bullets"
    assert s.uses_code_examples is True


def test_consistency_notes():
    """Format, depth, missing code and sentence-length divergence each produce a note."""
    target = StyleMetrics(avg_sentence_length=10, uses_code_examples=True, format_pattern="bullets", technical_depth="advanced")
    proposal = StyleMetrics(avg_sentence_length=20, uses_code_examples=False, format_pattern="prose", technical_depth="beginner")
    notes = consistency_notes(target, proposal)
    assert len(notes) == 4
    assert notes[0] == "Format mismatch: target uses bullets, proposal uses prose"
    assert notes[2] == "Target page uses code examples but proposal does not"


def test_consistency_notes_matching_style():
    """Matching styles produce no notes."""
    s = StyleMetrics(avg_sentence_length=12, uses_code_examples=True, format_pattern="mixed", technical_depth="intermediate")
    assert consistency_notes(s, s) == []
