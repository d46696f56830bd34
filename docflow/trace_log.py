"""
Call tracing for pipeline runs. With DOCFLOW_DEBUG_TRACE (or DEBUG_TRACE) set to
1/true/yes/on, orchestrator, step, config-loader and provider entry points log a
"[trace]" line on entry and exit, so one batch's call flow can be read back from
the logs. Off by default; the flag is read from the environment once.
"""
import logging
import os
import time
from functools import wraps
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

TRACE_ENV_KEYS = ("DOCFLOW_DEBUG_TRACE", "DEBUG_TRACE")
TRUTHY = frozenset({"1", "true", "yes", "on"})
MAX_VALUE_CHARS = 80

_enabled: bool | None = None


def is_trace_enabled() -> bool:
    global _enabled
    if _enabled is None:
        _enabled = any((os.environ.get(key) or "").strip().lower() in TRUTHY for key in TRACE_ENV_KEYS)
    return _enabled


def reset_trace_flag() -> None:
    """Forget the cached flag so the next check re-reads the environment (tests toggle it)."""
    global _enabled
    _enabled = None


def _format_value(value: Any) -> str:
    text = repr(value)
    if len(text) > MAX_VALUE_CHARS:
        text = text[: MAX_VALUE_CHARS - 3] + "..."
    return text


def trace_log(component: str, event: str = "", **fields: Any) -> None:
    """Emit one trace line: "[trace] <component> <event> k=v ...". No-op when tracing is off."""
    if not is_trace_enabled():
        return
    line = f"[trace] {component}"
    if event:
        line += f" {event}"
    if fields:
        line += " " + " ".join(f"{k}={_format_value(v)}" for k, v in fields.items())
    logger.info(line)


def trace_entered(component: str, **fields: Any) -> None:
    trace_log(component, "entered", **fields)


def trace_exited(component: str, **fields: Any) -> None:
    trace_log(component, "exited", **fields)


F = TypeVar("F", bound=Callable[..., Any])


def trace_calls(component: str | None = None) -> Callable[[F], F]:
    """
    Decorator tracing entry, exit (with duration_ms) and exceptions of a function.
    The component defaults to "<module>.<qualname>". Exceptions are re-raised.
    """

    def decorator(func: F) -> F:
        name = component or f"{func.__module__}.{func.__qualname__}"

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not is_trace_enabled():
                return func(*args, **kwargs)
            trace_entered(name)
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                trace_log(name, "raised", error=type(e).__name__, message=str(e))
                raise
            trace_exited(name, duration_ms=int((time.perf_counter() - started) * 1000))
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
