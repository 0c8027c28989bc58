"""
Thread store — per-domain chat threads of the current session.

Responsibility:
- Ordered messages per domain, exactly one active thread
- Whole-message replacement under a lock (streaming updates, action transitions)
- Persist to / restore from the session cache (threads, active_domain, hydrated)
- One-time hydration from chat history

Prohibitions:
- No model calls
- No action execution
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from memory.store import SessionCache
from shared.models import DEFAULT_DOMAIN, DOMAINS, Action, Message

logger = logging.getLogger(__name__)

THREADS_KEY = "threads"
ACTIVE_DOMAIN_KEY = "active_domain"
HYDRATED_KEY = "hydrated"


class HistorySource(Protocol):
    def load_threads(self, user_id: str, per_domain_limit: int = 30) -> dict[str, list[Message]]: ...


class ThreadStore:
    """In-memory threads backed by a SessionCache namespace."""

    def __init__(self, cache: SessionCache, namespace: str = "default", message_cap: int = 50):
        self.cache = cache
        self.namespace = namespace
        self.message_cap = message_cap
        self._threads: dict[str, list[Message]] = {domain: [] for domain in DOMAINS}
        self._active = DEFAULT_DOMAIN
        self._hydrated = False
        self._lock = threading.RLock()

    # ─── Threads ──────────────────────────────────────────────

    @property
    def active_domain(self) -> str:
        return self._active

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    def switch(self, domain: str) -> None:
        if domain not in self._threads:
            raise ValueError(f"Unknown domain '{domain}'")
        self._active = domain

    def messages(self, domain: str | None = None) -> list[Message]:
        with self._lock:
            return list(self._threads[domain or self._active])

    def history(self, domain: str | None = None, limit: int = 8) -> list[dict[str, str]]:
        """Role-tagged turns for provider input; in-flight and error messages are skipped."""
        turns = [
            {"role": message.role, "content": message.history_text()}
            for message in self.messages(domain)
            if not message.in_flight and not message.is_error and message.history_text()
        ]
        return turns[-limit:] if limit > 0 else []

    def append(self, message: Message, domain: str | None = None) -> Message:
        target = domain or self._active
        if target not in self._threads:
            raise ValueError(f"Unknown domain '{target}'")
        if message.domain != target:
            message = message.model_copy(update={"domain": target})
        with self._lock:
            self._threads[target].append(message)
        return message

    def find_message(self, message_id: str) -> Message | None:
        with self._lock:
            located = self._locate(message_id)
            return self._threads[located[0]][located[1]] if located else None

    def update_message(self, message_id: str, **changes: Any) -> Message | None:
        """Replace a message with an updated copy; unknown ids are ignored."""
        with self._lock:
            located = self._locate(message_id)
            if located is None:
                logger.debug("update_message: unknown message %s", message_id)
                return None
            domain, index = located
            updated = self._threads[domain][index].model_copy(update=changes)
            self._threads[domain][index] = updated
            return updated

    def update_action(self, action: Action) -> None:
        """Mirror an action transition into its message; terminal actions are removed."""
        with self._lock:
            message = self.find_message(action.message_id)
            if message is None:
                return
            remaining = [existing for existing in message.pending_actions if existing.id != action.id]
            if not action.is_terminal:
                position = next(
                    (i for i, existing in enumerate(message.pending_actions) if existing.id == action.id),
                    len(remaining),
                )
                remaining.insert(position, action)
            self.update_message(message.id, pending_actions=remaining)

    def pending_actions(self, domain: str | None = None) -> list[Action]:
        return [action for message in self.messages(domain) for action in message.pending_actions]

    def clear(self, domain: str | None = None) -> None:
        with self._lock:
            self._threads[domain or self._active] = []

    def _locate(self, message_id: str) -> tuple[str, int] | None:
        for domain, messages in self._threads.items():
            for index, message in enumerate(messages):
                if message.id == message_id:
                    return domain, index
        return None

    # ─── Session cache ────────────────────────────────────────

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        """Serializable threads: capped, settled messages only, transient state cleared."""
        with self._lock:
            return {
                domain: [
                    message.model_copy(
                        update={"is_streaming": False, "is_loading": False, "is_error": False, "pending_actions": []}
                    ).model_dump(mode="json")
                    for message in messages
                    if not message.in_flight
                ][-self.message_cap:]
                for domain, messages in self._threads.items()
            }

    def persist(self) -> None:
        self.cache.save(THREADS_KEY, self.snapshot(), namespace=self.namespace)
        self.cache.save(ACTIVE_DOMAIN_KEY, self._active, namespace=self.namespace)
        self.cache.save(HYDRATED_KEY, self._hydrated, namespace=self.namespace)

    def load(self) -> bool:
        """Restore from the session cache. Returns False when nothing was stored."""
        stored = self.cache.get(THREADS_KEY, namespace=self.namespace)
        if not stored:
            return False
        with self._lock:
            for domain in DOMAINS:
                self._threads[domain] = [Message.model_validate(item) for item in stored.get(domain, [])]
        active = self.cache.get(ACTIVE_DOMAIN_KEY, namespace=self.namespace)
        self._active = active if active in self._threads else DEFAULT_DOMAIN
        self._hydrated = bool(self.cache.get(HYDRATED_KEY, namespace=self.namespace))
        return True

    def hydrate(self, source: HistorySource, user_id: str, limit: int = 30) -> int:
        """
        Fill empty threads from chat history once per session.

        Threads that already hold messages keep them. Returns the number of
        messages loaded.
        """
        if self._hydrated:
            return 0
        loaded = source.load_threads(user_id, per_domain_limit=limit)
        count = 0
        with self._lock:
            for domain, messages in loaded.items():
                if domain in self._threads and not self._threads[domain]:
                    self._threads[domain] = list(messages)
                    count += len(messages)
            self._hydrated = True
        self.persist()
        logger.info("Hydrated %d messages from chat history", count)
        return count
