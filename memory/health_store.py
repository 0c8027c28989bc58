"""
Health data store — the authoritative tier for logged data.

Responsibility:
- One insert per confirmed action, keyed by target table
- Batch inserts (usage telemetry)
- Simple filtered, recency-ordered reads

Rows are stored as JSON documents per logical table so new directive types
need no migration.
"""

from __future__ import annotations

import json
import re
import sqlite3
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class HealthDataStore(ABC):
    """Insert/query interface over logical tables."""

    @abstractmethod
    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it with its generated id."""

    @abstractmethod
    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> int:
        """Insert rows in one transaction; returns the number inserted."""

    @abstractmethod
    def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Rows matching all equality filters, newest first."""


class SQLiteHealthStore(HealthDataStore):
    """SQLite-backed JSON document store."""

    def __init__(self, db_path: str = "health.db"):
        self.db_path = db_path
        self._conn = sqlite3.connect(
            db_path,
            check_same_thread=False,
            isolation_level="DEFERRED",
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._init_db()

    def _init_db(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS health_rows (
                id TEXT PRIMARY KEY,
                table_name TEXT NOT NULL,
                row_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_health_rows_table
            ON health_rows(table_name, created_at)
            """
        )
        self._conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_health_rows_user
            ON health_rows(table_name, json_extract(row_json, '$.user_id'), created_at)
            """
        )
        self._conn.commit()

    def _prepare(self, table: str, row: dict[str, Any]) -> tuple[str, str, str, str, dict[str, Any]]:
        table_norm = (table or "").strip()
        if not table_norm:
            raise ValueError("Table name cannot be empty.")
        stored = dict(row)
        stored.setdefault("id", uuid.uuid4().hex)
        stored.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return (
            str(stored["id"]),
            table_norm,
            json.dumps(stored, ensure_ascii=False, default=str),
            str(stored["created_at"]),
            stored,
        )

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        row_id, table_norm, row_json, created_at, stored = self._prepare(table, row)
        self._conn.execute(
            "INSERT INTO health_rows (id, table_name, row_json, created_at) VALUES (?, ?, ?, ?)",
            (row_id, table_norm, row_json, created_at),
        )
        self._conn.commit()
        return stored

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> int:
        prepared = [self._prepare(table, row)[:4] for row in rows]
        if not prepared:
            return 0
        with self._conn:
            self._conn.executemany(
                "INSERT INTO health_rows (id, table_name, row_json, created_at) VALUES (?, ?, ?, ?)",
                prepared,
            )
        return len(prepared)

    def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        clauses = ["table_name = ?"]
        params: list[Any] = [(table or "").strip()]
        remaining: dict[str, Any] = {}
        for key, value in (filters or {}).items():
            if _FIELD_RE.match(key) and (value is None or isinstance(value, (str, int, float))):
                # IS matches like = and also treats a missing key as null
                clauses.append(f"json_extract(row_json, '$.{key}') IS ?")
                params.append(value)
            else:
                remaining[key] = value

        sql = f"SELECT row_json FROM health_rows WHERE {' AND '.join(clauses)} ORDER BY created_at DESC, rowid DESC"
        if not remaining:
            sql += " LIMIT ?"
            params.append(max(1, limit))

        results: list[dict[str, Any]] = []
        for row in self._conn.execute(sql, params):
            parsed = json.loads(row["row_json"])
            if any(parsed.get(key) != value for key, value in remaining.items()):
                continue
            results.append(parsed)
            if len(results) >= max(1, limit):
                break
        return results

    def close(self) -> None:
        self._conn.close()
