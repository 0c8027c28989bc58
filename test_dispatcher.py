from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from intent.router import IntentRouter
from observability.usage import USAGE_TABLE, UsageRecorder
from orchestrator.dispatcher import MultiAgentDispatcher
from shared.models import AgentContext, AgentResult, LookupResult, UserPreferences
from shared.settings import RouterSettings

MULTI_TEXT = "Kekse gegessen und TRT Spritze gesetzt"

SEARCH_REPLY = (
    "Ich schaue kurz nach.\n\n"
    '```ACTION:search_product\n{"query": "Kölln Haferflocken"}\n```'
)


class _FakeRunner:
    def __init__(self, replies: dict[str, str], failing: set[str] | None = None, followup: str | None = None):
        self.replies = replies
        self.failing = failing or set()
        self.followup = followup
        self.stream_calls: list[tuple[str, AgentContext]] = []
        self.execute_calls: list[tuple[str, AgentContext]] = []

    def _result(self, domain: str, content: str, tokens: int) -> AgentResult:
        return AgentResult(
            content=content,
            domain=domain,
            agent_name=domain.capitalize(),
            agent_icon="🤖",
            knowledge_versions={f"{domain}_core": "1.0"},
            tokens_used=tokens,
            model="test-model",
        )

    async def execute_stream(self, domain, context, on_chunk=None, session_id=None):
        self.stream_calls.append((domain, context))
        if domain in self.failing:
            raise ConnectionError("provider offline")
        reply = self.replies[domain]
        half = reply[: len(reply) // 2]
        for snapshot in (half, reply):
            if on_chunk is not None:
                on_chunk(snapshot)
            await asyncio.sleep(0)
        return self._result(domain, reply, 10)

    async def execute(self, domain, context, session_id=None):
        self.execute_calls.append((domain, context))
        if domain in self.failing:
            raise ConnectionError("provider offline")
        if self.followup is not None and context.session_notes:
            return self._result(domain, self.followup, 7)
        return self._result(domain, self.replies[domain], 5)


class _FakeLookup:
    def __init__(self):
        self.queries: list[str] = []

    async def resolve(self, query: str) -> LookupResult:
        self.queries.append(query)
        return LookupResult(found=True, source="openfoodfacts", summary="Pro 100g: 372 kcal | 13.5g P")


class _FakeStore:
    def __init__(self):
        self.batches: list[tuple[str, list[dict]]] = []

    def insert_many(self, table, rows):
        self.batches.append((table, rows))
        return len(rows)


def _context(history=None) -> AgentContext:
    return AgentContext(preferences=UserPreferences(user_id="u1"), history=history or [])


def _dispatcher(runner, **kwargs) -> MultiAgentDispatcher:
    return MultiAgentDispatcher(router=IntentRouter(RouterSettings()), runner=runner, session_id="s1", **kwargs)


def test_forced_domain_bypasses_router():
    dispatcher = _dispatcher(_FakeRunner({}))
    routing = dispatcher.route(MULTI_TEXT, domain="medical")
    assert routing.domains == ["medical"]
    assert routing.decisions[0].confidence == 1.0
    assert routing.decisions[0].reasoning == "Forced by active thread"


def test_single_agent_mode_uses_top_domain_only():
    dispatcher = _dispatcher(_FakeRunner({}), multi_agent_enabled=False)
    assert dispatcher.route(MULTI_TEXT).domains == ["substance"]


def test_multi_agent_turn_streams_primary_then_merges():
    async def _run() -> None:
        runner = _FakeRunner({"substance": "TRT notiert.", "nutrition": "Kekse notiert."})
        store = _FakeStore()
        dispatcher = _dispatcher(runner, usage_recorder=UsageRecorder(store))
        chunks: list[str] = []

        result = await dispatcher.dispatch(
            MULTI_TEXT, _context([{"role": "assistant", "content": "Hallo!"}]), on_chunk=chunks.append
        )
        await dispatcher.drain()

        assert result.status == "success"
        assert result.routing.domains == ["substance", "nutrition"]
        assert result.content == "TRT notiert.\n\n---\n\n🤖 **Nutrition**\n\nKekse notiert."
        assert chunks == ["TRT no", "TRT notiert.", result.content]
        assert result.tokens_used == 15
        assert [r.domain for r in result.results] == ["substance", "nutrition"]

        domain, context = runner.stream_calls[0]
        assert domain == "substance"
        assert context.history[-1] == {"role": "user", "content": MULTI_TEXT}
        assert len(context.history) == 2
        assert runner.execute_calls[0][0] == "nutrition"

        assert len(store.batches) == 1
        table, rows = store.batches[0]
        assert table == USAGE_TABLE
        assert [row["agent_type"] for row in rows] == ["substance", "nutrition"]
        assert rows[0]["session_id"] == "s1"
        assert rows[0]["user_id"] == "u1"
        assert rows[0]["skill_versions"] == {"substance_core": "1.0"}

    asyncio.run(_run())


def test_single_agent_content_is_not_re_emitted():
    async def _run() -> None:
        dispatcher = _dispatcher(_FakeRunner({"training": "Stark!"}))
        chunks: list[str] = []
        result = await dispatcher.dispatch("egal", _context(), on_chunk=chunks.append, domain="training")
        assert result.content == "Stark!"
        assert chunks == ["Sta", "Stark!"]

    asyncio.run(_run())


def test_failing_secondary_is_excluded():
    async def _run() -> None:
        runner = _FakeRunner({"substance": "TRT notiert."}, failing={"nutrition"})
        result = await _dispatcher(runner).dispatch(MULTI_TEXT, _context())
        assert result.status == "success"
        assert result.secondary == []
        assert result.content == "TRT notiert."

    asyncio.run(_run())


def test_primary_failure_returns_failure_result():
    async def _run() -> None:
        store = _FakeStore()
        runner = _FakeRunner({}, failing={"substance"})
        dispatcher = _dispatcher(runner, usage_recorder=UsageRecorder(store))

        result = await dispatcher.dispatch(MULTI_TEXT, _context())
        await dispatcher.drain()

        assert result.status == "failure"
        assert result.content == "Verbindungsfehler: provider offline. Bitte versuche es gleich noch einmal."
        assert result.error == "provider offline"
        assert result.primary is None
        assert runner.execute_calls == []
        assert store.batches == []

    asyncio.run(_run())


def test_failure_message_in_english():
    async def _run() -> None:
        runner = _FakeRunner({}, failing={"training"})
        context = AgentContext(preferences=UserPreferences(language="en"))
        result = await _dispatcher(runner).dispatch("hi", context, domain="training")
        assert result.content.startswith("Connection error: provider offline.")

    asyncio.run(_run())


def test_product_search_grounds_a_follow_up_answer():
    async def _run() -> None:
        runner = _FakeRunner({"nutrition": SEARCH_REPLY}, followup="40g Kölln haben 149 kcal.")
        lookup = _FakeLookup()
        dispatcher = _dispatcher(runner, lookup=lookup)
        chunks: list[str] = []

        result = await dispatcher.dispatch(
            "Wie viele Kalorien haben Kölln Haferflocken?", _context(), on_chunk=chunks.append, domain="nutrition"
        )

        assert lookup.queries == ["Kölln Haferflocken"]
        assert result.content == "40g Kölln haben 149 kcal."
        assert chunks[-1] == "40g Kölln haben 149 kcal."
        assert result.primary.tokens_used == 17
        assert result.lookup.source == "openfoodfacts"

        domain, grounded = runner.execute_calls[0]
        assert domain == "nutrition"
        assert grounded.history[-1] == {"role": "assistant", "content": "Ich schaue kurz nach."}
        assert 'Produktrecherche für "Kölln Haferflocken"' in grounded.session_notes[-1]
        assert "372 kcal" in grounded.session_notes[-1]

    asyncio.run(_run())


def test_failing_lookup_keeps_first_answer():
    async def _run() -> None:
        class _BrokenLookup:
            async def resolve(self, query: str) -> LookupResult:
                raise TypeError("bad nutriment")

        runner = _FakeRunner({"nutrition": SEARCH_REPLY}, followup="unused")
        result = await _dispatcher(runner, lookup=_BrokenLookup()).dispatch("x", _context(), domain="nutrition")

        assert result.status == "success"
        assert result.content == SEARCH_REPLY
        assert result.lookup is None
        assert runner.execute_calls == []

    asyncio.run(_run())


def test_search_without_lookup_service_keeps_first_answer():
    async def _run() -> None:
        runner = _FakeRunner({"nutrition": SEARCH_REPLY})
        result = await _dispatcher(runner).dispatch("x", _context(), domain="nutrition")
        assert result.content == SEARCH_REPLY
        assert result.lookup is None
        assert runner.execute_calls == []

    asyncio.run(_run())


def test_stream_channel_yields_snapshots_and_result():
    async def _run() -> None:
        runner = _FakeRunner({"substance": "TRT notiert.", "nutrition": "Kekse notiert."})
        dispatcher = _dispatcher(runner)

        channel = dispatcher.stream(MULTI_TEXT, _context())
        received = [snapshot async for snapshot in channel]

        assert received[:2] == ["TRT no", "TRT notiert."]
        assert received[-1] == channel.result.content
        assert channel.closed
        assert channel.result.status == "success"
        await dispatcher.drain()

    asyncio.run(_run())


def test_failing_usage_store_does_not_affect_turn():
    store = MagicMock()
    store.insert_many.side_effect = RuntimeError("disk full")

    async def _run() -> None:
        dispatcher = _dispatcher(_FakeRunner({"training": "Ok"}), usage_recorder=UsageRecorder(store))
        result = await dispatcher.dispatch("x", _context(), domain="training")
        await dispatcher.drain()
        assert result.status == "success"
        store.insert_many.assert_called_once()

    asyncio.run(_run())
