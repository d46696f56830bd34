"""
Prompt registry: markdown prompt templates with YAML frontmatter.

File layout:
    ---
    id: thread-classification
    version: "1.0"
    metadata:
      description: ...
      requiredVariables: [projectName, messagesToAnalyze]
      tags: [classification]
    ---
    # System Prompt
    ...
    # User Prompt
    ... {{variableName}} ...

Templates are loaded from the defaults directory first, then the instance
directory, whose files override defaults with the same id.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from docflow.config import DEFAULT_PROMPTS_DIR
from docflow.errors import PromptNotFoundError

logger = logging.getLogger(__name__)

_FRONTMATTER = re.compile(r"^---\n([\s\S]*?)\n---\n")
_VARIABLE = re.compile(r"\{\{(\w+)\}\}")
_SYSTEM_SECTION = re.compile(r"# System Prompt\s*\n([\s\S]*?)(?=# User Prompt|$)")
_USER_SECTION = re.compile(r"# User Prompt\s*\n([\s\S]*)$")


@dataclass
class PromptTemplate:
    id: str
    system: str = ""
    user: str = ""
    version: str = "1.0"
    description: str = ""
    required_variables: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    source_path: str | None = None


@dataclass
class RenderedPrompt:
    system: str
    user: str
    variables: dict[str, Any]
    missing_variables: list[str] = field(default_factory=list)


@dataclass
class TemplateValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def parse_template(content: str, fallback_id: str = "", source_path: str | None = None) -> PromptTemplate:
    """Parse one template file's text. Frontmatter is optional; without section headers the body is the user prompt."""
    meta: dict[str, Any] = {}
    body = content
    m = _FRONTMATTER.match(content)
    if m:
        loaded = yaml.safe_load(m.group(1))
        if isinstance(loaded, dict):
            meta = loaded
        body = content[m.end():]
    system_m = _SYSTEM_SECTION.search(body)
    user_m = _USER_SECTION.search(body)
    if system_m or user_m:
        system = system_m.group(1).strip() if system_m else ""
        user = user_m.group(1).strip() if user_m else ""
    else:
        system, user = "", body.strip()
    metadata = meta.get("metadata") or {}
    return PromptTemplate(
        id=str(meta.get("id") or fallback_id),
        system=system,
        user=user,
        version=str(meta.get("version") or "1.0"),
        description=str(metadata.get("description") or ""),
        required_variables=list(metadata.get("requiredVariables") or []),
        tags=list(metadata.get("tags") or []),
        source_path=source_path,
    )


def interpolate(text: str, variables: dict[str, Any]) -> tuple[str, list[str]]:
    """Replace {{name}} placeholders. Unknown or None values are left verbatim and reported."""
    missing: list[str] = []

    def repl(m: re.Match) -> str:
        name = m.group(1)
        value = variables.get(name)
        if value is None:
            if name not in missing:
                missing.append(name)
            return m.group(0)
        return str(value)

    return _VARIABLE.sub(repl, text or ""), missing


class PromptRegistry:
    """In-memory prompt templates keyed by id. Call reload() to pick up edited files."""

    def __init__(self, defaults_dir: str | Path | None = None, instance_dir: str | Path | None = None):
        self.defaults_dir = Path(defaults_dir) if defaults_dir else DEFAULT_PROMPTS_DIR
        self.instance_dir = Path(instance_dir) if instance_dir else None
        self._templates: dict[str, PromptTemplate] = {}
        self._added: dict[str, PromptTemplate] = {}

    def load(self) -> int:
        """Load defaults then instance overrides. Returns template count."""
        templates: dict[str, PromptTemplate] = {}
        for directory in (self.defaults_dir, self.instance_dir):
            if directory is None or not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.md")):
                try:
                    template = parse_template(path.read_text(encoding="utf-8"), path.stem, str(path))
                except (OSError, yaml.YAMLError) as e:
                    logger.warning("[prompts] failed to load %s: %s", path, e)
                    continue
                if template.id in templates:
                    logger.debug("[prompts] %s overrides %s", path, templates[template.id].source_path)
                templates[template.id] = template
        templates.update(self._added)
        self._templates = templates
        logger.info("[prompts] loaded %d templates", len(templates))
        return len(templates)

    def reload(self) -> int:
        return self.load()

    def get(self, prompt_id: str) -> PromptTemplate | None:
        return self._templates.get(prompt_id)

    def list(self) -> list[PromptTemplate]:
        return sorted(self._templates.values(), key=lambda t: t.id)

    def add_template(self, template: PromptTemplate) -> None:
        """Register a template in code. Survives reload()."""
        self._added[template.id] = template
        self._templates[template.id] = template

    def render(self, prompt_id: str, variables: dict[str, Any]) -> RenderedPrompt:
        template = self.get(prompt_id)
        if template is None:
            raise PromptNotFoundError(prompt_id)
        absent = [v for v in template.required_variables if variables.get(v) is None]
        if absent:
            logger.warning("[prompts] %s: missing required variables %s", prompt_id, absent)
        system, missing_system = interpolate(template.system, variables)
        user, missing_user = interpolate(template.user, variables)
        missing = missing_system + [v for v in missing_user if v not in missing_system]
        if missing:
            logger.warning("[prompts] %s: unresolved placeholders left in prompt: %s", prompt_id, missing)
        return RenderedPrompt(system=system, user=user, variables=variables, missing_variables=missing)

    def validate(self, template: PromptTemplate) -> TemplateValidation:
        errors: list[str] = []
        warnings: list[str] = []
        if not template.id:
            errors.append("Template is missing an id")
        if not template.user.strip():
            errors.append("Template has no user prompt")
        used = set(_VARIABLE.findall(template.system)) | set(_VARIABLE.findall(template.user))
        declared = set(template.required_variables)
        for name in sorted(used - declared):
            warnings.append(f"Variable '{name}' is used but not declared in requiredVariables")
        for name in sorted(declared - used):
            warnings.append(f"Variable '{name}' is declared but never used")
        return TemplateValidation(valid=not errors, errors=errors, warnings=warnings)


def create_prompt_registry(base_dir: str | Path | None, instance_id: str) -> PromptRegistry:
    """Registry over <base>/defaults/prompts and <base>/<instanceId>/prompts. No base: packaged defaults only."""
    if not base_dir:
        registry = PromptRegistry()
    else:
        base = Path(base_dir)
        defaults = base / "defaults" / "prompts"
        registry = PromptRegistry(
            defaults_dir=defaults if defaults.is_dir() else None,
            instance_dir=base / instance_id / "prompts",
        )
    registry.load()
    return registry
