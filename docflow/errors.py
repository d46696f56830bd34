"""
Exceptions raised by the pipeline, its steps and collaborators.
"""


class DocflowError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(DocflowError):
    """Raised when pipeline, domain or step configuration is invalid."""


class MissingConfigError(ConfigError):
    """Raised when a required step config key is absent and no default was given."""

    def __init__(self, step_id: str, key: str):
        self.step_id = step_id
        self.key = key
        super().__init__(f"Step {step_id}: missing required config key '{key}'")


class UnknownStepTypeError(ConfigError):
    """Raised when no constructor is registered for a stepType."""

    def __init__(self, step_type: str, known: list[str] | None = None):
        self.step_type = step_type
        message = f"Unknown step type: {step_type}"
        if known:
            message += f" (registered: {', '.join(sorted(known))})"
        super().__init__(message)


class MissingDependencyError(DocflowError):
    """Raised when a step needs a collaborator (LLM handler, RAG service) that was not injected."""

    def __init__(self, step_id: str, dependency: str):
        self.step_id = step_id
        self.dependency = dependency
        super().__init__(f"Step {step_id} requires {dependency} but none was provided")


class SchemaValidationError(DocflowError):
    """Raised when an LLM response cannot be parsed or does not match the expected schema."""

    def __init__(self, message: str, raw_text: str = ""):
        self.raw_text = raw_text
        super().__init__(message)


class FormatValidationError(DocflowError):
    """Raised when proposal content is structurally broken for its file type."""

    def __init__(self, file_type: str, message: str):
        self.file_type = file_type
        super().__init__(message)


class StepExecutionError(DocflowError):
    """Raised by the orchestrator when a step fails after all retry attempts."""

    def __init__(self, step_id: str, step_type: str, cause: BaseException):
        self.step_id = step_id
        self.step_type = step_type
        self.cause = cause
        super().__init__(f"Step execution failed: {cause}")


class PromptNotFoundError(DocflowError):
    """Raised when rendering a prompt id the registry does not know."""

    def __init__(self, prompt_id: str):
        self.prompt_id = prompt_id
        super().__init__(f"Prompt template not found: {prompt_id}")
