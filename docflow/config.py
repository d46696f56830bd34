"""Process settings from environment (.env loaded with python-dotenv). LLM provider, database, config dirs."""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_ROOT = Path(__file__).resolve().parent.parent
_env_file = _ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file, override=False)

DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts" / "defaults"


def _env(key: str, default: str = "") -> str:
    return (os.getenv(key) or default).strip()


def _env_int(key: str, default: int) -> int:
    try:
        return int(_env(key, str(default)))
    except ValueError:
        logger.warning("[config] %s is not an integer; using %s", key, default)
        return default


def _env_bool(key: str, default: bool) -> bool:
    v = _env(key).lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Process-level settings. Pipeline and domain behaviour live in the JSON configs, not here."""
    llm_provider: Literal["ollama", "vertex"] = "vertex"
    vertex_project_id: str | None = None
    vertex_location: str = "us-central1"
    vertex_model: str = "gemini-2.5-flash"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"
    ollama_num_predict: int = 8192
    llm_timeout_seconds: float = 120.0
    database_url: str = ""
    config_dir: str = "config"
    """Root holding defaults/ and <instanceId>/ config directories."""
    prompts_dir: str = ""
    """Root holding defaults/prompts and <instanceId>/prompts. Empty: packaged defaults only."""
    run_logging: bool = True
    config_cache_ttl_seconds: int = 3600


def get_settings() -> Settings:
    provider = _env("LLM_PROVIDER") or ("vertex" if _env("VERTEX_PROJECT_ID") else "ollama")
    try:
        timeout = float(_env("LLM_TIMEOUT_SECONDS", "120"))
    except ValueError:
        timeout = 120.0
    return Settings(
        llm_provider=provider.lower(),  # type: ignore[arg-type]
        vertex_project_id=_env("VERTEX_PROJECT_ID") or None,
        vertex_location=_env("VERTEX_LOCATION", "us-central1"),
        vertex_model=_env("VERTEX_MODEL", "gemini-2.5-flash"),
        ollama_base_url=_env("OLLAMA_BASE_URL", "http://localhost:11434"),
        ollama_model=_env("OLLAMA_MODEL", "llama3.1:8b"),
        ollama_num_predict=_env_int("OLLAMA_NUM_PREDICT", 8192),
        llm_timeout_seconds=timeout,
        database_url=_env("DATABASE_URL"),
        config_dir=_env("DOCFLOW_CONFIG_DIR", "config"),
        prompts_dir=_env("DOCFLOW_PROMPTS_DIR"),
        run_logging=_env_bool("DOCFLOW_RUN_LOGGING", True),
        config_cache_ttl_seconds=_env_int("DOCFLOW_CONFIG_CACHE_TTL_SECONDS", 3600),
    )
