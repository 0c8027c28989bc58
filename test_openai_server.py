import asyncio
import json
from types import SimpleNamespace

import httpx

from actions.executor import ActionExecutor
from actions.lifecycle import ActionLifecycleController
from api.openai_server import (
    ChatCompletionRequest,
    _action_view,
    _split_request,
    _sse_line,
    app,
    display_delta,
)
from intent.router import IntentRouter
from memory.health_store import SQLiteHealthStore
from orchestrator.dispatcher import MultiAgentDispatcher
from shared.models import Action, AgentResult, Directive
from shared.settings import CoachSettings

MEAL_BLOCK = (
    "```ACTION:log_meal\n"
    '{"name": "Skyr", "type": "snack", "calories": 130, "protein": 22, "carbs": 8, "fat": 0.4}\n'
    "```"
)
MEAL_SNAPSHOTS = [
    "Notiert!",
    "Notiert!\n\n```ACTION:log_meal\n{\"name\": \"S",
    "Notiert!\n\n" + MEAL_BLOCK,
]


class _SnapshotRunner:
    def __init__(self, snapshots: list[str]):
        self.snapshots = snapshots

    def _result(self, domain: str) -> AgentResult:
        return AgentResult(
            content=self.snapshots[-1],
            domain=domain,
            agent_name="Ernährung",
            agent_icon="🥗",
            tokens_used=12,
            model="test-model",
        )

    async def execute_stream(self, domain, context, on_chunk=None, session_id=None):
        for snapshot in self.snapshots:
            if on_chunk is not None:
                on_chunk(snapshot)
            await asyncio.sleep(0)
        return self._result(domain)

    async def execute(self, domain, context, session_id=None):
        return self._result(domain)


def _install_runtime(monkeypatch, tmp_path, snapshots: list[str]) -> SimpleNamespace:
    settings = CoachSettings()
    store = SQLiteHealthStore(db_path=str(tmp_path / "health.db"))
    runtime = SimpleNamespace(
        settings=settings,
        health_store=store,
        dispatcher=MultiAgentDispatcher(
            router=IntentRouter(settings.router), runner=_SnapshotRunner(snapshots), session_id="api-test"
        ),
        controller=ActionLifecycleController(ActionExecutor(store, user_id=settings.preferences.user_id)),
    )
    monkeypatch.setattr(app.state, "runtime", runtime, raising=False)
    return runtime


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


def _sse_payloads(body: str) -> list:
    events = [block[len("data: "):] for block in body.split("\n\n") if block.startswith("data: ")]
    assert events[-1] == "[DONE]"
    return [json.loads(event) for event in events[:-1]]


def _message(role: str, content) -> dict:
    return {"role": role, "content": content}


def test_split_request_returns_last_user_text_and_prior_turns() -> None:
    request = ChatCompletionRequest(
        messages=[
            _message("system", "ignored"),
            _message("user", "Skyr gegessen"),
            _message("assistant", "Notiert."),
            _message("user", [{"type": "text", "text": "Und"}, {"type": "image_url"}, {"type": "text", "text": "Quark?"}]),
        ],
    )

    text, history = _split_request(request.messages)

    assert text == "Und Quark?"
    assert history == [
        {"role": "user", "content": "Skyr gegessen"},
        {"role": "assistant", "content": "Notiert."},
    ]


def test_split_request_without_trailing_user_message() -> None:
    request = ChatCompletionRequest(messages=[_message("user", "hi"), _message("assistant", "Hallo!")])
    text, history = _split_request(request.messages)
    assert text == ""
    assert len(history) == 2


def test_split_request_skips_empty_turns() -> None:
    request = ChatCompletionRequest(messages=[_message("assistant", None), _message("user", "  Hallo  ")])
    assert _split_request(request.messages) == ("Hallo", [])


def test_display_delta_extends_or_appends_replacement() -> None:
    assert display_delta("", "Hal") == "Hal"
    assert display_delta("Hal", "Hallo") == "lo"
    assert display_delta("Hallo", "Hallo") == ""
    assert display_delta("Ich schaue nach.", "Kölln: 372 kcal") == "\n\nKölln: 372 kcal"


def test_action_view_exposes_display_fields() -> None:
    action = Action(
        message_id="chatcmpl-1",
        directive=Directive(type="log_body", payload={"weight_kg": 84.0}),
    )
    view = _action_view(action, "en")
    assert view["id"] == action.id
    assert view["type"] == "log_body"
    assert view["status"] == "pending"
    assert view["title"] == "Save body measurements?"
    assert view["summary"] == "84 kg"
    assert view["payload"] == {"weight_kg": 84.0}


def test_sse_line_keeps_unicode() -> None:
    line = _sse_line({"content": "Kölln"})
    assert line.startswith("data: ")
    assert line.endswith("\n\n")
    assert json.loads(line[len("data: "):]) == {"content": "Kölln"}
    assert "Kölln" in line


def test_request_defaults() -> None:
    request = ChatCompletionRequest(messages=[_message("user", "hi")])
    assert request.model == "fitcoach"
    assert request.stream is False
    assert request.x_domain is None


def test_streamed_completion_hides_directive_blocks_and_confirms(monkeypatch, tmp_path) -> None:
    async def _run() -> None:
        runtime = _install_runtime(monkeypatch, tmp_path, MEAL_SNAPSHOTS)
        async with _client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json={"messages": [_message("user", "Skyr gegessen")], "stream": True, "x_domain": "nutrition"},
            )
            assert response.status_code == 200
            payloads = _sse_payloads(response.text)

            chunks = [p for p in payloads if p["object"] == "chat.completion.chunk"]
            text = "".join(p["choices"][0]["delta"].get("content", "") for p in chunks)
            assert text == "Notiert!"
            assert chunks[0]["choices"][0]["delta"] == {"role": "assistant"}
            assert chunks[-1]["choices"][0]["finish_reason"] == "stop"

            meta = payloads[-1]
            assert meta["object"] == "chat.completion.meta"
            (action,) = meta["x_actions"]
            assert action["type"] == "log_meal"
            assert action["status"] == "pending"

            confirmed = await client.post(f"/v1/actions/{action['id']}/confirm")
            assert confirmed.status_code == 200
            assert confirmed.json()["status"] == "executed"

        (meal,) = runtime.health_store.query("meals", {"user_id": "local"})
        assert meal["name"] == "Skyr"
        runtime.health_store.close()

    asyncio.run(_run())


def test_blocking_completion_and_reject(monkeypatch, tmp_path) -> None:
    async def _run() -> None:
        runtime = _install_runtime(monkeypatch, tmp_path, MEAL_SNAPSHOTS)
        async with _client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json={"messages": [_message("user", "Skyr gegessen")], "x_domain": "nutrition"},
            )
            body = response.json()
            assert body["choices"][0]["message"]["content"] == "Notiert!"
            assert body["x_agent"]["name"] == "Ernährung"
            assert body["usage"]["total_tokens"] == 12
            (action,) = body["x_actions"]

            rejected = await client.post(f"/v1/actions/{action['id']}/reject")
            assert rejected.json()["status"] == "rejected"
            again = await client.post(f"/v1/actions/{action['id']}/confirm")
            assert again.json()["status"] == "rejected"

        assert runtime.health_store.query("meals", {"user_id": "local"}) == []
        runtime.health_store.close()

    asyncio.run(_run())


def test_unknown_action_and_missing_user_text(monkeypatch, tmp_path) -> None:
    async def _run() -> None:
        runtime = _install_runtime(monkeypatch, tmp_path, ["Hallo!"])
        async with _client() as client:
            assert (await client.post("/v1/actions/nope/confirm")).status_code == 404
            assert (await client.post("/v1/actions/nope/reject")).status_code == 404
            response = await client.post(
                "/v1/chat/completions", json={"messages": [_message("assistant", "Hallo!")]}
            )
            assert response.status_code == 400
        runtime.health_store.close()

    asyncio.run(_run())
