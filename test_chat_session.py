from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path

import pytest

from actions.executor import ActionExecutor
from actions.lifecycle import ActionLifecycleController
from conversation.history import ChatHistoryStore
from conversation.session import ChatSession, load_snapshot
from conversation.threads import ThreadStore
from intent.router import IntentRouter
from memory import InMemorySessionCache, SQLiteHealthStore
from orchestrator.dispatcher import MultiAgentDispatcher
from shared.models import AgentResult, LookupResult, UserPreferences
from shared.settings import RouterSettings

MEAL_REPLY = (
    "Skyr ist top, 22g Protein!\n\n"
    '```ACTION:log_meal\n{"name": "Skyr", "calories": 130, "protein": 22, "carbs": 8, "fat": 0.4}\n```'
)


class _ScriptedRunner:
    def __init__(self, reply: str = MEAL_REPLY, fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.calls: list[tuple[str, object]] = []
        self.observed = []
        self.on_call = None

    async def execute_stream(self, domain, context, on_chunk=None, session_id=None):
        self.calls.append((domain, context))
        if self.fail:
            raise TimeoutError("timed out")
        if on_chunk is not None:
            on_chunk(self.reply)
            if self.on_call is not None:
                self.observed.append(self.on_call())
        await asyncio.sleep(0)
        return self._result(domain, self.reply)

    async def execute(self, domain, context, session_id=None):
        self.calls.append((domain, context))
        return self._result(domain, "Kölln: 372 kcal pro 100g.")

    @staticmethod
    def _result(domain: str, content: str) -> AgentResult:
        return AgentResult(content=content, domain=domain, agent_name="Ernährungs-Agent", agent_icon="🍎", tokens_used=12)


class _Lookup:
    async def resolve(self, query: str) -> LookupResult:
        return LookupResult(found=True, source="openfoodfacts", summary=f"Recherche-Ergebnis: {query}")


@pytest.fixture
def stores(tmp_path: Path):
    health = SQLiteHealthStore(db_path=str(tmp_path / "health.db"))
    history = ChatHistoryStore(db_path=str(tmp_path / "conversations.db"))
    yield health, history
    history.close()
    health.close()


def _session(stores, runner, lookup=None) -> ChatSession:
    health, history = stores
    threads = ThreadStore(InMemorySessionCache(), namespace="u1:s1")
    controller = ActionLifecycleController(ActionExecutor(health, user_id="u1"), sink=threads)
    dispatcher = MultiAgentDispatcher(
        router=IntentRouter(RouterSettings()),
        runner=runner,
        lookup=lookup,
        multi_agent_enabled=False,
        session_id="s1",
    )
    return ChatSession(
        dispatcher=dispatcher,
        threads=threads,
        controller=controller,
        health_store=health,
        preferences=UserPreferences(user_id="u1"),
        history_store=history,
    )


def test_send_streams_finalizes_and_registers_actions(stores):
    async def _run() -> None:
        runner = _ScriptedRunner()
        session = _session(stores, runner)
        runner.on_call = lambda: session.threads.messages()[-1]

        final = await session.send("500g Skyr gegessen")

        streaming = runner.observed[0]
        assert streaming.is_streaming
        assert streaming.content == "Skyr ist top, 22g Protein!"

        assert final.content == "Skyr ist top, 22g Protein!"
        assert final.raw_content == MEAL_REPLY
        assert not final.in_flight
        assert final.attribution.name == "Ernährungs-Agent"
        assert [a.directive.type for a in final.pending_actions] == ["log_meal"]

        messages = session.threads.messages("general")
        assert [m.role for m in messages] == ["user", "assistant"]
        assert runner.calls[0][0] == "nutrition"

        _, history = stores
        saved = history.load_threads("u1")["general"]
        assert [m.content for m in saved] == ["500g Skyr gegessen", "Skyr ist top, 22g Protein!"]

    asyncio.run(_run())


def test_confirm_persists_and_clears_pending(stores):
    async def _run() -> None:
        session = _session(stores, _ScriptedRunner())
        await session.send("Skyr gegessen")
        (action,) = session.pending_actions()

        done = await session.confirm(action.id)

        assert done.status == "executed"
        assert session.pending_actions() == []
        health, _ = stores
        assert [row["name"] for row in health.query("meals", {"user_id": "u1"})] == ["Skyr"]
        assert session.build_context().snapshot.daily_totals["calories"] == 130

    asyncio.run(_run())


def test_reject_discards_without_persisting(stores):
    async def _run() -> None:
        session = _session(stores, _ScriptedRunner())
        await session.send("Skyr gegessen")
        (action,) = session.pending_actions()

        assert session.reject(action.id).status == "rejected"
        assert session.pending_actions() == []
        health, _ = stores
        assert health.query("meals") == []

    asyncio.run(_run())


def test_active_thread_forces_domain_and_history(stores):
    async def _run() -> None:
        runner = _ScriptedRunner(reply="Gute Wahl.")
        session = _session(stores, runner)
        session.switch("training")
        await session.send("Kniebeugen heute?")
        await session.send("Und morgen?")

        assert [domain for domain, _ in runner.calls] == ["training", "training"]
        second_context = runner.calls[1][1]
        assert [turn["content"] for turn in second_context.history] == [
            "Kniebeugen heute?",
            "Gute Wahl.",
            "Und morgen?",
        ]
        assert len(session.threads.messages("training")) == 4
        assert session.threads.messages("general") == []

    asyncio.run(_run())


def test_provider_failure_marks_message_as_error(stores):
    async def _run() -> None:
        session = _session(stores, _ScriptedRunner(fail=True))
        final = await session.send("Hallo?")

        assert final.is_error
        assert final.content.startswith("Verbindungsfehler: timed out.")
        assert session.threads.history() == [{"role": "user", "content": "Hallo?"}]
        _, history = stores
        assert history.load_threads("u1")["general"] == []

    asyncio.run(_run())


def test_lookup_summary_becomes_session_note(stores):
    async def _run() -> None:
        reply = 'Moment.\n\n```ACTION:search_product\n{"query": "Kölln Haferflocken"}\n```'
        session = _session(stores, _ScriptedRunner(reply=reply), lookup=_Lookup())
        session.switch("nutrition")

        final = await session.send("Kalorien von Kölln Haferflocken?")

        assert final.content == "Kölln: 372 kcal pro 100g."
        assert final.pending_actions == []
        assert session.session_notes == ["Recherche-Ergebnis: Kölln Haferflocken"]
        assert session.build_context().session_notes == session.session_notes

    asyncio.run(_run())


def test_load_snapshot_merges_profile_and_equipment(stores):
    health, _ = stores
    today = date(2026, 3, 1)
    health.insert("profiles", {"user_id": "u1", "height_cm": 183})
    health.insert("profiles", {"user_id": "u1", "birth_year": 1981, "height_cm": 184})
    health.insert("meals", {"user_id": "u1", "date": "2026-03-01", "calories": 400, "protein": 30})
    health.insert("meals", {"user_id": "u1", "date": "2026-03-01", "calories": 250.5, "protein": 10})
    health.insert("meals", {"user_id": "u1", "date": "2026-02-28", "calories": 900, "protein": 50})
    health.insert("user_equipment", {"user_id": "u1", "equipment_names": ["Kurzhanteln", "Bank"], "mode": "add"})
    health.insert("user_equipment", {"user_id": "u1", "equipment_names": ["Bank"], "mode": "remove"})
    health.insert("user_equipment", {"user_id": "u1", "equipment_names": ["Klimmzugstange"], "mode": "add"})
    health.insert("substances", {"user_id": "u1", "name": "Testosteron", "is_active": True})
    health.insert("substances", {"user_id": "u1", "name": "Wegovy", "is_active": False})
    health.insert("daily_checkins", {"user_id": "u1", "date": "2026-03-01", "sleep_quality": 2})

    snapshot = load_snapshot(health, "u1", today=today)

    assert snapshot.profile == {"height_cm": 184, "birth_year": 1981}
    assert snapshot.daily_totals == {"calories": 650.5, "protein": 40.0, "carbs": 0.0, "fat": 0.0}
    assert len(snapshot.recent_meals) == 3
    assert snapshot.equipment == ["Kurzhanteln", "Klimmzugstange"]
    assert [s["name"] for s in snapshot.substances] == ["Testosteron"]
    assert snapshot.checkin["sleep_quality"] == 2
    assert snapshot.active_plan is None
    assert snapshot.blood_work == {}
