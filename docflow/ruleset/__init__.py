"""Tenant ruleset: markdown parsing and compiled rejection/quality-gate rules."""

from docflow.ruleset.loader import load_tenant_ruleset
from docflow.ruleset.parser import (
    ParsedRuleset,
    create_empty_ruleset,
    default_ruleset_template,
    has_rules,
    parse_ruleset,
    serialize_ruleset,
)
from docflow.ruleset.rules import (
    CompiledRule,
    CompiledRuleset,
    RuleCondition,
    compile_ruleset,
    evaluate_quality_gates,
    find_rejection,
)

__all__ = [
    "load_tenant_ruleset",
    "ParsedRuleset",
    "create_empty_ruleset",
    "default_ruleset_template",
    "has_rules",
    "parse_ruleset",
    "serialize_ruleset",
    "CompiledRule",
    "CompiledRuleset",
    "RuleCondition",
    "compile_ruleset",
    "evaluate_quality_gates",
    "find_rejection",
]
