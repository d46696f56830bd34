"""Unit tests for the step factory."""
import pytest
from pydantic import BaseModel

from docflow.errors import ConfigError, UnknownStepTypeError
from docflow.pipeline import stages
from docflow.pipeline.factory import BUILTIN_STEPS, StepFactory
from docflow.pipeline.step_configs import STEP_CONFIG_MODELS
from docflow.steps import BasePipelineStep, KeywordFilterStep, ProposalGenerateStep

from conftest import FakeLLMHandler, step_config


class NoopStep(BasePipelineStep):
    step_type = "noop"

    def execute(self, context):
        return context


def test_builtin_types_registered():
    """Every built-in step type has a constructor."""
    factory = StepFactory()
    assert set(factory.get_registered_types()) == set(stages.STEP_TYPES)
    assert all(factory.has_step_type(t) for t in stages.STEP_TYPES)
    assert set(BUILTIN_STEPS) == set(stages.STEP_TYPES)


def test_create_builtin_step():
    """create passes the config and the LLM handler to the step."""
    llm = FakeLLMHandler()
    step = StepFactory().create(step_config("generate", {"maxProposalsPerThread": 2}, step_id="gen"), llm)
    assert isinstance(step, ProposalGenerateStep)
    assert step.step_id == "gen"
    assert step.llm_handler is llm
    assert step.settings.max_proposals_per_thread == 2
    assert step.get_metadata().name == "Proposal Generation"


def test_unknown_step_type():
    """An unregistered type raises UnknownStepTypeError naming the known types."""
    with pytest.raises(UnknownStepTypeError) as exc:
        StepFactory().create(step_config("summarize"))
    assert exc.value.step_type == "summarize"
    assert "filter" in str(exc.value)


def test_invalid_step_config_is_config_error():
    """Config values that fail the typed model become ConfigError."""
    with pytest.raises(ConfigError):
        StepFactory().create(step_config("enrich", {"minSimilarity": 1.5}))
    with pytest.raises(ConfigError):
        StepFactory().create(step_config("filter", {"includeKeywords": "not-a-list"}))


def test_register_custom_type():
    """Custom types are per factory instance."""
    factory = StepFactory()
    factory.register("noop", NoopStep)
    assert isinstance(factory.create(step_config("noop")), NoopStep)
    assert not StepFactory().has_step_type("noop")


def test_register_override(caplog):
    """Re-registering a type replaces it and logs a warning."""
    factory = StepFactory()
    factory.register(stages.FILTER, NoopStep)
    assert isinstance(factory.create(step_config("filter")), NoopStep)
    assert "overriding step type filter" in caplog.text
    assert isinstance(StepFactory().create(step_config("filter")), KeywordFilterStep)


def test_get_config_value():
    """Raw config values are available; missing keys without a default raise."""
    from docflow.errors import MissingConfigError

    step = StepFactory().create(step_config("filter", {"caseSensitive": True}, step_id="kf"))
    assert step.get_config_value("caseSensitive") is True
    assert step.get_config_value("absent", 7) == 7
    with pytest.raises(MissingConfigError) as exc:
        step.get_config_value("absent")
    assert str(exc.value) == "Step kf: missing required config key 'absent'"


@pytest.mark.parametrize("step_type", stages.STEP_TYPES)
def test_builtin_steps_use_registered_config_models(step_type):
    """Built-in steps validate their config with the model registered for their stepType."""
    step = StepFactory().create(step_config(step_type), FakeLLMHandler())
    assert type(step.settings) is STEP_CONFIG_MODELS[step_type]


def test_custom_step_config_model_override():
    """A custom step may bring its own config model; without one its settings stay empty."""

    class CustomConfig(BaseModel):
        threshold: int = 3

    class TunedStep(NoopStep):
        step_type = "tuned"
        config_model = CustomConfig

    assert TunedStep(step_config("tuned", {"threshold": 5})).settings.threshold == 5
    assert NoopStep(step_config("noop")).settings is None
