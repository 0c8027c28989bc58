"""
Chat History Store — SQLite-backed.

Responsibility:
- Persist settled chat messages per user and domain
- Load recent messages per domain for session hydration

Performance:
- Persistent SQLite connection (no reconnect per query)
- WAL mode for concurrent reads

Prohibitions:
- Never stores in-flight messages
- Never stores pending actions
"""

import json
import sqlite3

from shared.models import DOMAINS, AgentAttribution, Message


class ChatHistoryStore:
    """SQLite-backed chat history with persistent connection."""

    def __init__(self, db_path: str = "conversations.db"):
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
        """Create tables if they don't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS chat_messages (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                agent_type TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                raw_content TEXT,
                agent_name TEXT,
                agent_icon TEXT,
                skill_versions TEXT DEFAULT '{}',
                created_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chat_messages_user_agent
            ON chat_messages(user_id, agent_type, created_at)
        """)
        self._conn.commit()

    def save_message(self, user_id: str, message: Message) -> None:
        """Persist one settled message; saving the same id again overwrites it."""
        attribution = message.attribution
        self._conn.execute(
            """INSERT OR REPLACE INTO chat_messages
               (id, user_id, agent_type, role, content, raw_content, agent_name, agent_icon, skill_versions, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                message.id,
                user_id,
                message.domain,
                message.role,
                message.content,
                message.raw_content,
                attribution.name if attribution else None,
                attribution.icon if attribution else None,
                json.dumps(attribution.knowledge_versions if attribution else {}),
                message.timestamp.isoformat(),
            ),
        )
        self._conn.commit()

    def load_threads(self, user_id: str, per_domain_limit: int = 30) -> dict[str, list[Message]]:
        """Most recent messages per domain, chronological within each domain."""
        threads: dict[str, list[Message]] = {}
        for domain in DOMAINS:
            rows = self._conn.execute(
                """SELECT *
                   FROM chat_messages
                   WHERE user_id = ? AND agent_type = ?
                   ORDER BY created_at DESC, rowid DESC
                   LIMIT ?""",
                (user_id, domain, per_domain_limit),
            ).fetchall()
            threads[domain] = [self._to_message(row) for row in reversed(rows)]
        return threads

    def clear_user(self, user_id: str) -> None:
        """Clear all history for a user."""
        self._conn.execute("DELETE FROM chat_messages WHERE user_id = ?", (user_id,))
        self._conn.commit()

    def close(self) -> None:
        """Close the persistent connection."""
        self._conn.close()

    @staticmethod
    def _to_message(row: sqlite3.Row) -> Message:
        attribution = None
        if row["agent_name"]:
            attribution = AgentAttribution(
                name=row["agent_name"],
                icon=row["agent_icon"] or "",
                knowledge_versions=json.loads(row["skill_versions"] or "{}"),
            )
        return Message(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            raw_content=row["raw_content"],
            timestamp=row["created_at"],
            domain=row["agent_type"],
            attribution=attribution,
        )
