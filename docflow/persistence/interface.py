"""Persistence port: rulesets, pending-proposal counts and pipeline run logs."""
from abc import ABC, abstractmethod
from typing import Any


class PersistencePort(ABC):
    """What the pipeline needs from storage. Implementations raise on I/O failure; callers decide whether to swallow."""

    @abstractmethod
    def get_latest_ruleset(self, tenant_id: str) -> str | None:
        """Markdown of the tenant's most recently updated ruleset, or None."""

    @abstractmethod
    def count_pending_proposals(self, instance_id: str) -> int:
        pass

    @abstractmethod
    def create_run_log(
        self,
        instance_id: str,
        batch_id: str,
        pipeline_id: str,
        input_messages: int,
    ) -> int | None:
        """Insert a run log with status 'running'. Returns its id."""

    @abstractmethod
    def update_run_log(self, run_id: int, fields: dict[str, Any]) -> None:
        """Overwrite the given run-log fields (status, steps, llmCalls, llmTokensUsed, totalDurationMs, ...)."""
