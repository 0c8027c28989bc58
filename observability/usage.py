"""
Usage telemetry — one row per successful agent call.

Recording is best effort: a failing store is logged and never reaches the caller.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from memory.health_store import HealthDataStore
from shared.models import AgentResult

logger = logging.getLogger(__name__)

USAGE_TABLE = "ai_usage_log"


def usage_rows(results: list[AgentResult], user_id: str, session_id: str | None = None) -> list[dict[str, Any]]:
    timestamp = datetime.now(timezone.utc).isoformat()
    return [
        {
            "user_id": user_id,
            "session_id": session_id,
            "agent_type": result.domain,
            "agent_name": result.agent_name,
            "model": result.model,
            "tokens_used": result.tokens_used,
            "skill_versions": dict(result.knowledge_versions),
            "timestamp": timestamp,
        }
        for result in results
    ]


class UsageRecorder:
    def __init__(self, store: HealthDataStore):
        self.store = store

    def record(self, rows: list[dict[str, Any]]) -> int:
        """Insert rows; returns the number stored (0 on failure)."""
        if not rows:
            return 0
        try:
            self.store.insert_many(USAGE_TABLE, rows)
        except Exception as e:
            logger.warning("Usage telemetry insert failed: %s", e)
            return 0
        return len(rows)
