"""
Chat Session — drives one user turn end to end.

Responsibility:
- Append the user message and an assistant placeholder to the active thread
- Stream the dispatcher's cumulative output into the placeholder
- Finalize: strip directive blocks for display, register pending actions
- Persist chat history and the session cache
- Confirm / reject pending actions

Prohibitions:
- No routing or prompt logic (dispatcher and agent set own those)
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from actions.lifecycle import ActionLifecycleController
from actions.parser import display_text, extract_all, strip
from conversation.history import ChatHistoryStore
from conversation.threads import ThreadStore
from memory.health_store import HealthDataStore
from orchestrator.dispatcher import MultiAgentDispatcher
from shared.models import DEFAULT_DOMAIN, Action, AgentContext, HealthSnapshot, Message, UserPreferences

logger = logging.getLogger(__name__)

MAX_SESSION_NOTES = 5


def _latest(store: HealthDataStore, table: str, user_id: str) -> dict[str, Any] | None:
    rows = store.query(table, {"user_id": user_id}, limit=1)
    return rows[0] if rows else None


def _equipment(store: HealthDataStore, user_id: str) -> list[str]:
    owned: list[str] = []
    for change in reversed(store.query("user_equipment", {"user_id": user_id}, limit=100)):
        names = [str(name) for name in change.get("equipment_names") or []]
        mode = change.get("mode", "add")
        if mode == "replace":
            owned = list(names)
        elif mode == "remove":
            owned = [name for name in owned if name not in names]
        else:
            owned.extend(name for name in names if name not in owned)
    return owned


def load_snapshot(store: HealthDataStore, user_id: str, today: date | None = None) -> HealthSnapshot:
    """Build the agents' view of the user's data from the health store."""
    today_iso = (today or date.today()).isoformat()

    profile: dict[str, Any] = {}
    for update in reversed(store.query("profiles", {"user_id": user_id}, limit=50)):
        profile.update({key: value for key, value in update.items() if key not in ("id", "created_at", "user_id")})

    todays_meals = store.query("meals", {"user_id": user_id, "date": today_iso}, limit=100)
    totals = {
        key: round(sum(float(meal.get(key) or 0) for meal in todays_meals), 1)
        for key in ("calories", "protein", "carbs", "fat")
    } if todays_meals else {}

    return HealthSnapshot(
        profile=profile,
        daily_totals=totals,
        recent_meals=store.query("meals", {"user_id": user_id}, limit=10),
        recent_workouts=store.query("workouts", {"user_id": user_id}, limit=10),
        body_measurements=store.query("body_measurements", {"user_id": user_id}, limit=10),
        blood_pressure=store.query("blood_pressure_logs", {"user_id": user_id}, limit=5),
        substances=[s for s in store.query("substances", {"user_id": user_id}, limit=50) if s.get("is_active", True)],
        substance_logs=store.query("substance_logs", {"user_id": user_id}, limit=5),
        active_plan=_latest(store, "training_plans", user_id),
        equipment=_equipment(store, user_id),
        known_products=store.query("user_products", {"user_id": user_id}, limit=30),
        checkin=(store.query("daily_checkins", {"user_id": user_id, "date": today_iso}, limit=1) or [{}])[0],
        blood_work=_latest(store, "blood_work", user_id) or {},
    )


class ChatSession:
    """One user's chat session across all domain threads."""

    def __init__(
        self,
        dispatcher: MultiAgentDispatcher,
        threads: ThreadStore,
        controller: ActionLifecycleController,
        health_store: HealthDataStore,
        preferences: UserPreferences,
        history_store: ChatHistoryStore | None = None,
        history_turns: int = 8,
    ):
        self.dispatcher = dispatcher
        self.threads = threads
        self.controller = controller
        self.health_store = health_store
        self.preferences = preferences
        self.history_store = history_store
        self.history_turns = history_turns
        self.session_notes: list[str] = []

    def build_context(self, domain: str | None = None) -> AgentContext:
        return AgentContext(
            preferences=self.preferences,
            snapshot=load_snapshot(self.health_store, self.preferences.user_id),
            history=self.threads.history(domain, limit=self.history_turns),
            session_notes=list(self.session_notes),
            now=datetime.now(),
        )

    async def send(self, text: str) -> Message:
        """Run one turn in the active thread and return the settled assistant message."""
        domain = self.threads.active_domain
        context = self.build_context(domain)

        user_message = self.threads.append(Message(role="user", content=text))
        placeholder = self.threads.append(Message(role="assistant", is_loading=True))

        def on_chunk(partial: str) -> None:
            self.threads.update_message(
                placeholder.id, content=display_text(partial), is_loading=False, is_streaming=True
            )

        result = await self.dispatcher.dispatch(
            text,
            context,
            on_chunk=on_chunk,
            domain=None if domain == DEFAULT_DOMAIN else domain,
        )

        if result.status == "failure":
            final = self.threads.update_message(
                placeholder.id,
                content=result.content,
                is_error=True,
                is_loading=False,
                is_streaming=False,
            )
            self.threads.persist()
            return final

        actions = self.controller.register(placeholder.id, extract_all(result.content))
        final = self.threads.update_message(
            placeholder.id,
            content=strip(result.content),
            raw_content=result.content,
            attribution=result.primary.attribution() if result.primary else None,
            pending_actions=actions,
            is_loading=False,
            is_streaming=False,
        )

        if result.lookup is not None and result.lookup.found:
            self.session_notes = [*self.session_notes, result.lookup.summary][-MAX_SESSION_NOTES:]

        self._save_history([user_message, final])
        self.threads.persist()
        return final

    def pending_actions(self) -> list[Action]:
        return self.threads.pending_actions()

    async def confirm(self, action_id: str) -> Action:
        action = await self.controller.confirm(action_id)
        self.threads.persist()
        return action

    def reject(self, action_id: str) -> Action:
        action = self.controller.reject(action_id)
        self.threads.persist()
        return action

    def switch(self, domain: str) -> None:
        self.threads.switch(domain)
        self.threads.persist()

    def _save_history(self, messages: list[Message]) -> None:
        if self.history_store is None:
            return
        for message in messages:
            try:
                self.history_store.save_message(self.preferences.user_id, message)
            except Exception:
                logger.exception("Failed to persist chat message %s", message.id)
