"""
Action Executor — maps a confirmed directive onto one persistence call.

Responsibility:
- Pick the target table for a directive type
- Resolve substance names to registered substances (exact, partial, typo-tolerant)
- Raise on failure; the lifecycle controller converts errors into `failed`
"""

from __future__ import annotations

import inspect
import logging
from difflib import SequenceMatcher
from typing import Any

from memory.health_store import HealthDataStore
from shared.models import Directive

logger = logging.getLogger(__name__)

TARGET_TABLES: dict[str, str] = {
    "log_meal": "meals",
    "log_workout": "workouts",
    "log_body": "body_measurements",
    "log_blood_pressure": "blood_pressure_logs",
    "log_substance": "substance_logs",
    "save_training_plan": "training_plans",
    "save_product": "user_products",
    "add_substance": "substances",
    "add_reminder": "reminders",
    "update_profile": "profiles",
    "update_equipment": "user_equipment",
}


class ActionExecutionError(RuntimeError):
    """Raised when a directive cannot be persisted."""


MIN_TYPO_RATIO = 0.85


def match_substance(search_name: str, substances: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Exact match, then substring either way, then the closest name with a similarity ratio of at least MIN_TYPO_RATIO."""
    search = (search_name or "").strip().lower()
    if not search:
        return None

    for substance in substances:
        if str(substance.get("name", "")).lower() == search:
            return substance

    for substance in substances:
        name = str(substance.get("name", "")).lower()
        if name and (name in search or search in name):
            return substance

    best: dict[str, Any] | None = None
    best_ratio = 0.0
    for substance in substances:
        name = str(substance.get("name", "")).lower()
        ratio = SequenceMatcher(None, search, name).ratio() if name else 0.0
        if ratio >= MIN_TYPO_RATIO and ratio > best_ratio:
            best, best_ratio = substance, ratio
    return best


class ActionExecutor:
    """Persists confirmed directives through the health data store."""

    def __init__(self, store: HealthDataStore, user_id: str = "local", language: str = "de"):
        self.store = store
        self.user_id = user_id
        self.language = language

    async def execute(self, directive: Directive) -> dict[str, Any]:
        table = TARGET_TABLES.get(directive.type)
        if table is None:
            raise ActionExecutionError(f"Directive type '{directive.type}' cannot be executed")

        row = {**directive.payload, "user_id": self.user_id}
        if directive.type == "log_substance":
            row = await self._resolve_substance(row)

        stored = self.store.insert(table, row)
        if inspect.isawaitable(stored):
            stored = await stored
        logger.info("Persisted %s into %s", directive.type, table)
        return stored

    async def _resolve_substance(self, row: dict[str, Any]) -> dict[str, Any]:
        substances = self.store.query("substances", {"user_id": self.user_id}, limit=200)
        if inspect.isawaitable(substances):
            substances = await substances
        active = [item for item in substances if item.get("is_active", True)]
        name = str(row.pop("substance_name", ""))
        match = match_substance(name, active)
        if match is None:
            if self.language == "en":
                raise ActionExecutionError(f'Substance "{name}" not found. Add it under Substances first.')
            raise ActionExecutionError(f'Substanz "{name}" nicht gefunden. Zuerst unter Substanzen hinzufügen.')
        row["substance_id"] = match.get("id")
        row["substance_name"] = match.get("name")
        return row
