"""
Pipeline and domain config loading.

Layout under the config root:
  defaults/pipelines/default.json
  <instanceId>/pipelines/<pipelineId>.json
  <instanceId>/domain.json

Each file may also be .yaml/.yml. Instance values override defaults key by key;
an instance `steps` list replaces the default steps wholesale. Missing files fall
back to the built-in DEFAULT_PIPELINE_CONFIG / DEFAULT_DOMAIN_CONFIG.
"""
import copy
import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from docflow.errors import ConfigError
from docflow.pipeline.config_schemas import (
    DEFAULT_DOMAIN_CONFIG,
    DEFAULT_PIPELINE_CONFIG,
    DomainConfig,
    PipelineConfig,
)
from docflow.trace_log import trace_calls

logger = logging.getLogger(__name__)

_SUFFIXES = (".json", ".yaml", ".yml")
_NESTED_MERGE_KEYS = ("errorHandling", "performance")


class ConfigCache:
    """TTL cache for parsed configs. Owned by whoever constructs it; clock is injectable for tests."""

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        hit = self._entries.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, prefix: str | None = None) -> None:
        """Drop every entry, or only the keys starting with prefix."""
        if prefix is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


def read_config_file(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain an object, got {type(data).__name__}")
    return data


def _find(base: Path) -> Path | None:
    """base without suffix -> first existing base.json / base.yaml / base.yml."""
    for suffix in _SUFFIXES:
        candidate = base.with_name(base.name + suffix)
        if candidate.is_file():
            return candidate
    return None


def merge_pipeline_config(defaults: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in override.items():
        if key in _NESTED_MERGE_KEYS and isinstance(value, dict):
            merged[key] = {**merged.get(key, {}), **value}
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigLoader:
    def __init__(self, base_dir: str | Path, cache: ConfigCache | None = None):
        self.base_dir = Path(base_dir)
        self.cache = cache

    def _cached(self, key: str, build: Callable[[], Any]) -> Any:
        if self.cache is not None:
            hit = self.cache.get(key)
            if hit is not None:
                return hit
        value = build()
        if self.cache is not None:
            self.cache.set(key, value)
        return value

    def load_pipeline_config(self, instance_id: str, pipeline_id: str = "default") -> PipelineConfig:
        """Merged, validated pipeline config. Raises ConfigError for unreadable or invalid files."""
        return self._cached(
            f"pipeline:{instance_id}:{pipeline_id}",
            lambda: self._build_pipeline_config(instance_id, pipeline_id),
        )

    @trace_calls("pipeline.config_loader.build_pipeline_config")
    def _build_pipeline_config(self, instance_id: str, pipeline_id: str) -> PipelineConfig:
        defaults_path = _find(self.base_dir / "defaults" / "pipelines" / "default")
        if defaults_path is not None:
            defaults = read_config_file(defaults_path)
        else:
            logger.debug("[config] no default pipeline file under %s; using built-in", self.base_dir)
            defaults = copy.deepcopy(DEFAULT_PIPELINE_CONFIG)

        instance_path = _find(self.base_dir / instance_id / "pipelines" / pipeline_id)
        data = defaults
        if instance_path is not None:
            data = merge_pipeline_config(defaults, read_config_file(instance_path))
            logger.info("[config] pipeline %s/%s loaded from %s", instance_id, pipeline_id, instance_path)
        else:
            logger.info("[config] no pipeline config for %s/%s; using defaults", instance_id, pipeline_id)
        data = {**data, "instanceId": instance_id, "pipelineId": pipeline_id}
        try:
            return PipelineConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid pipeline config for {instance_id}/{pipeline_id}: {e}") from e

    def load_domain_config(self, instance_id: str) -> DomainConfig:
        return self._cached(f"domain:{instance_id}:", lambda: self._build_domain_config(instance_id))

    @trace_calls("pipeline.config_loader.build_domain_config")
    def _build_domain_config(self, instance_id: str) -> DomainConfig:
        data = copy.deepcopy(DEFAULT_DOMAIN_CONFIG)
        path = _find(self.base_dir / instance_id / "domain")
        if path is not None:
            data.update(read_config_file(path))
            logger.info("[config] domain config for %s loaded from %s", instance_id, path)
        else:
            logger.info("[config] no domain config for %s; using %s", instance_id, data["domainId"])
        try:
            return DomainConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid domain config for {instance_id}: {e}") from e

    def invalidate(self, instance_id: str | None = None) -> None:
        if self.cache is None:
            return
        if instance_id is None:
            self.cache.invalidate()
        else:
            self.cache.invalidate(f"pipeline:{instance_id}:")
            self.cache.invalidate(f"domain:{instance_id}:")
