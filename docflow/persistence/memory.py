"""In-process persistence: rulesets, pending counts and run logs held in dicts. For local runs and tests."""
import copy
import logging
from datetime import datetime, timezone
from typing import Any

from docflow.persistence.interface import PersistencePort

logger = logging.getLogger(__name__)


class MemoryPersistence(PersistencePort):
    def __init__(self) -> None:
        self.rulesets: dict[str, list[tuple[datetime, str]]] = {}
        self.pending_counts: dict[str, int] = {}
        self.run_logs: dict[int, dict[str, Any]] = {}
        self._next_run_id = 1

    def save_ruleset(self, tenant_id: str, content: str, updated_at: datetime | None = None) -> None:
        self.rulesets.setdefault(tenant_id, []).append((updated_at or datetime.now(timezone.utc), content))

    def get_latest_ruleset(self, tenant_id: str) -> str | None:
        rows = self.rulesets.get(tenant_id) or []
        if not rows:
            return None
        return max(rows, key=lambda r: r[0])[1]

    def count_pending_proposals(self, instance_id: str) -> int:
        return self.pending_counts.get(instance_id, 0)

    def create_run_log(self, instance_id: str, batch_id: str, pipeline_id: str, input_messages: int) -> int | None:
        run_id = self._next_run_id
        self._next_run_id += 1
        self.run_logs[run_id] = {
            "instanceId": instance_id,
            "batchId": batch_id,
            "pipelineId": pipeline_id,
            "status": "running",
            "inputMessages": input_messages,
            "steps": [],
            "startedAt": datetime.now(timezone.utc),
        }
        logger.debug("[persistence] memory run log %d created for batch %s", run_id, batch_id)
        return run_id

    def update_run_log(self, run_id: int, fields: dict[str, Any]) -> None:
        if run_id not in self.run_logs:
            raise KeyError(f"run log {run_id} not found")
        self.run_logs[run_id].update(copy.deepcopy(fields))
