"""Cost model: (provider, model) -> $ per 1K tokens, and model capability table."""
from docflow.llm.usage import LLMUsageDict

# $ per 1K tokens (input, output). Ollama is local, no API cost.
_DEFAULT_RATES: dict[tuple[str, str], tuple[float, float]] = {
    ("vertex", "gemini-2.5-flash"): (0.000075, 0.0003),
    ("vertex", "gemini-2.5-pro"): (0.00125, 0.005),
    ("vertex", "gemini-1.5-flash"): (0.000075, 0.0003),
    ("vertex", "gemini-1.5-pro"): (0.00125, 0.005),
    ("ollama", "llama3.1:8b"): (0.0, 0.0),
}

# Used for estimates when (provider, model) is not in the table.
FALLBACK_RATES: tuple[float, float] = (0.001, 0.003)

# model -> (max input tokens, max output tokens, supports JSON mode, supports streaming)
MODEL_INFO: dict[str, tuple[int, int, bool, bool]] = {
    "gemini-2.5-flash": (1048576, 8192, True, True),
    "gemini-2.5-pro": (2097152, 8192, True, True),
    "gemini-1.5-flash": (1048576, 8192, True, True),
    "gemini-1.5-pro": (2097152, 8192, True, True),
}
DEFAULT_MODEL_INFO: tuple[int, int, bool, bool] = (128000, 4096, False, True)


def get_rates(provider: str, model: str, default: tuple[float, float] = (0.0, 0.0)) -> tuple[float, float]:
    """Return (input_usd_per_1k, output_usd_per_1k) for (provider, model)."""
    key = ((provider or "").lower().strip(), (model or "").strip())
    return _DEFAULT_RATES.get(key, default)


def compute_cost(usage: LLMUsageDict) -> float:
    """Cost in USD for one call's usage. Unknown (provider, model) -> 0."""
    in_rate, out_rate = get_rates(usage.get("provider") or "", usage.get("model") or "")
    input_tokens = int(usage.get("input_tokens") or 0)
    output_tokens = int(usage.get("output_tokens") or 0)
    return (input_tokens / 1000.0) * in_rate + (output_tokens / 1000.0) * out_rate


def register_rate(provider: str, model: str, input_usd_per_1k: float, output_usd_per_1k: float) -> None:
    """Register or override a (provider, model) rate."""
    key = ((provider or "").lower().strip(), (model or "").strip())
    if key[0] and key[1]:
        _DEFAULT_RATES[key] = (float(input_usd_per_1k), float(output_usd_per_1k))
