"""Unit tests for priority-tiered length reduction."""
import pytest

from docflow.errors import ConfigError
from docflow.pipeline.factory import StepFactory
from docflow.pipeline.step_configs import LengthReductionConfig
from docflow.steps import LengthReductionStep
from docflow.steps.length_reduction import resolve_lengths

from conftest import FakeLLMHandler, make_proposal, make_thread, step_config

LONG = "Restart the service after editing the port. " * 150


@pytest.mark.parametrize("priority,expected", [(85, (5000, 3500)), (70, (5000, 3500)), (55, (3500, 2500)), (10, (2000, 1500))])
def test_resolve_lengths_default_tiers(priority, expected):
    """The first tier whose minPriority is at or below the priority applies."""
    tiers = LengthReductionConfig().priority_tiers
    assert resolve_lengths(priority, tiers, 3000, 2000) == expected


def test_resolve_lengths_without_tiers():
    """No tiers means the default limits."""
    assert resolve_lengths(90, [], 3000, 2000) == (3000, 2000)


def _context(make_context, category, *proposals, thread_id="t1"):
    ctx = make_context()
    ctx.threads = [make_thread(thread_id, category=category)]
    ctx.proposals = {thread_id: list(proposals)}
    return ctx


def test_short_proposal_untouched(make_context):
    """Content within the tier maximum is not sent to the LLM."""
    p = make_proposal(text="Short answer.")
    llm = FakeLLMHandler()
    LengthReductionStep(step_config("condense"), llm).execute(_context(make_context, "troubleshooting", p))
    assert llm.calls == []
    assert p.warnings == []


def test_long_proposal_condensed(make_context):
    """Over-long content is condensed once and the change is noted."""
    assert 3500 < len(LONG) <= 7000
    p = make_proposal(text=LONG)
    llm = FakeLLMHandler({"content-condense": [{"condensedContent": "Restart the service after editing the port."}]})
    ctx = _context(make_context, "question", p)
    LengthReductionStep(step_config("condense", {"priorityTiers": [
        {"minPriority": 80, "maxLength": 3000, "targetLength": 2000},
        {"minPriority": 0, "maxLength": 8000, "targetLength": 6000},
    ]}, step_id="condense"), llm).execute(ctx)
    assert p.suggested_text == "Restart the service after editing the port."
    assert p.warnings == [f"Condensed: {len(LONG)} -> 43 chars (priority 85, max 3000)"]
    request = llm.calls_for("content-condense")[0]
    assert "never more than 3000" in request.user_prompt
    assert request.temperature == 0.3
    assert ctx.step_prompt_logs["condense"][0].prompt_id == "content-condense"


def test_unknown_thread_uses_default_priority(make_context):
    """Proposals whose thread is unknown are treated as priority 50."""
    p = make_proposal(text=LONG)
    llm = FakeLLMHandler({"content-condense": [{"condensedContent": "short"}]})
    ctx = make_context()
    ctx.proposals = {"gone": [p]}
    LengthReductionStep(step_config("condense", {"priorityTiers": []}), llm).execute(ctx)
    assert p.warnings == [f"Condensed: {len(LONG)} -> 5 chars (priority 50, max 3000)"]


def test_condense_failure_keeps_text(make_context):
    """An LLM failure keeps the original text and adds a warning. Only one attempt is made."""
    p = make_proposal(text=LONG)
    llm = FakeLLMHandler({"content-condense": [RuntimeError("model unavailable")]})
    LengthReductionStep(step_config("condense", {"priorityTiers": []}), llm).execute(_context(make_context, "update", p))
    assert p.suggested_text == LONG
    assert p.warnings == ["Length reduction failed: model unavailable"]
    assert len(llm.calls) == 1


def test_deletes_are_skipped(make_context):
    """DELETE proposals are never condensed."""
    llm = FakeLLMHandler()
    LengthReductionStep(step_config("condense", {"priorityTiers": []}), llm).execute(
        _context(make_context, "update", make_proposal(update_type="DELETE", text=LONG))
    )
    assert llm.calls == []


def test_target_must_be_below_max():
    """A default target at or above the default maximum is rejected by the factory."""
    with pytest.raises(ConfigError):
        StepFactory().create(step_config("condense", {"defaultMaxLength": 2000, "defaultTargetLength": 2000}))


def test_tier_target_must_be_below_max():
    """A tier whose target is not below its maximum is a config error."""
    bad = {"priorityTiers": [{"minPriority": 0, "maxLength": 1000, "targetLength": 1500}]}
    with pytest.raises(ConfigError):
        StepFactory().create(step_config("condense", bad))
