"""Per-call LLM token usage."""
from typing import TypedDict


class LLMUsageDict(TypedDict, total=False):
    provider: str
    model: str
    input_tokens: int
    output_tokens: int


def usage_dict(provider: str, model: str, input_tokens: int, output_tokens: int) -> LLMUsageDict:
    return LLMUsageDict(
        provider=provider,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


def zero_usage(provider: str = "", model: str = "") -> LLMUsageDict:
    """Usage with zero tokens (provider reported nothing)."""
    return usage_dict(provider=provider, model=model, input_tokens=0, output_tokens=0)


def total_tokens(usage: LLMUsageDict | None) -> int:
    if not usage:
        return 0
    return int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
