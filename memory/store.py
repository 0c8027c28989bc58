"""
Session cache — the fast local tier of the chat session state.

Design goals:
- Clear API (save/get/delete/clear)
- Structured JSON values keyed per session namespace
- Survives process restarts (SQLite) or lives in memory for tests/CLI one-offs
"""

from __future__ import annotations

import copy
import json
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any


class SessionCache(ABC):
    """Key/value cache scoped by namespace (one namespace per chat session)."""

    @abstractmethod
    def save(self, key: str, value: Any, namespace: str = "global") -> None:
        """Persist a value by key in a namespace."""

    @abstractmethod
    def get(self, key: str, namespace: str = "global") -> Any | None:
        """Retrieve a value by key from a namespace."""

    @abstractmethod
    def delete(self, key: str, namespace: str = "global") -> None:
        """Remove a key; missing keys are ignored."""

    @abstractmethod
    def clear(self, namespace: str) -> None:
        """Remove every key in a namespace."""

    def close(self) -> None:
        return None


class InMemorySessionCache(SessionCache):
    """Process-local cache; values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def save(self, key: str, value: Any, namespace: str = "global") -> None:
        if not key.strip():
            raise ValueError("Cache key cannot be empty.")
        self._data.setdefault(namespace, {})[key.strip()] = copy.deepcopy(value)

    def get(self, key: str, namespace: str = "global") -> Any | None:
        value = self._data.get(namespace, {}).get(key.strip())
        return copy.deepcopy(value)

    def delete(self, key: str, namespace: str = "global") -> None:
        self._data.get(namespace, {}).pop(key.strip(), None)

    def clear(self, namespace: str) -> None:
        self._data.pop(namespace, None)


class SQLiteSessionCache(SessionCache):
    """SQLite-backed session cache."""

    def __init__(self, db_path: str = "session.db"):
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
            CREATE TABLE IF NOT EXISTS session_entries (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY(namespace, key)
            )
            """
        )
        self._conn.commit()

    def save(self, key: str, value: Any, namespace: str = "global") -> None:
        key_norm = key.strip()
        if not key_norm:
            raise ValueError("Cache key cannot be empty.")

        self._conn.execute(
            """
            INSERT INTO session_entries(namespace, key, value_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(namespace, key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (
                (namespace or "global").strip(),
                key_norm,
                json.dumps(value, ensure_ascii=False, default=str),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self._conn.commit()

    def get(self, key: str, namespace: str = "global") -> Any | None:
        row = self._conn.execute(
            """
            SELECT value_json
            FROM session_entries
            WHERE namespace = ? AND key = ?
            LIMIT 1
            """,
            ((namespace or "global").strip(), key.strip()),
        ).fetchone()
        if not row:
            return None
        return json.loads(row["value_json"])

    def delete(self, key: str, namespace: str = "global") -> None:
        self._conn.execute(
            "DELETE FROM session_entries WHERE namespace = ? AND key = ?",
            ((namespace or "global").strip(), key.strip()),
        )
        self._conn.commit()

    def clear(self, namespace: str) -> None:
        self._conn.execute("DELETE FROM session_entries WHERE namespace = ?", ((namespace or "global").strip(),))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
