"""Postgres persistence (psycopg2). Tables: tenant_rulesets, doc_proposals, pipeline_run_logs."""
import json
import logging
from typing import Any

from docflow.persistence.interface import PersistencePort

logger = logging.getLogger(__name__)

# run-log field -> column
_RUN_LOG_COLUMNS = {
    "status": "status",
    "steps": "steps",
    "outputThreads": "output_threads",
    "outputProposals": "output_proposals",
    "llmCalls": "llm_calls",
    "llmTokensUsed": "llm_tokens_used",
    "totalDurationMs": "duration_ms",
    "errorMessage": "error_message",
    "completedAt": "completed_at",
}
_JSON_COLUMNS = {"steps"}


class PostgresPersistence(PersistencePort):
    def __init__(self, database_url: str):
        self.database_url = database_url

    def _connect(self):
        import psycopg2
        return psycopg2.connect(self.database_url)

    def get_latest_ruleset(self, tenant_id: str) -> str | None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT content FROM tenant_rulesets WHERE tenant_id = %s ORDER BY updated_at DESC LIMIT 1",
                (tenant_id,),
            )
            row = cur.fetchone()
            cur.close()
            return row[0] if row else None
        finally:
            conn.close()

    def count_pending_proposals(self, instance_id: str) -> int:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT COUNT(*) FROM doc_proposals WHERE status = 'pending' AND instance_id = %s",
                (instance_id,),
            )
            row = cur.fetchone()
            cur.close()
            return int(row[0]) if row else 0
        finally:
            conn.close()

    def create_run_log(self, instance_id: str, batch_id: str, pipeline_id: str, input_messages: int) -> int | None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO pipeline_run_logs (instance_id, batch_id, pipeline_id, status, input_messages, steps, started_at)
                VALUES (%s, %s, %s, 'running', %s, '[]'::jsonb, now())
                RETURNING id
                """,
                (instance_id, batch_id, pipeline_id, input_messages),
            )
            row = cur.fetchone()
            conn.commit()
            cur.close()
            return int(row[0]) if row else None
        finally:
            conn.close()

    def update_run_log(self, run_id: int, fields: dict[str, Any]) -> None:
        assignments: list[str] = []
        values: list[Any] = []
        for key, value in fields.items():
            column = _RUN_LOG_COLUMNS.get(key)
            if column is None:
                logger.debug("[persistence] run log field %s has no column; ignored", key)
                continue
            if column in _JSON_COLUMNS:
                assignments.append(f"{column} = %s::jsonb")
                values.append(json.dumps(value, default=str))
            else:
                assignments.append(f"{column} = %s")
                values.append(value)
        if not assignments:
            return
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE pipeline_run_logs SET {', '.join(assignments)} WHERE id = %s",
                (*values, run_id),
            )
            conn.commit()
            cur.close()
        finally:
            conn.close()
