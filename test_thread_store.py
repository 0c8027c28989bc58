from __future__ import annotations

import pytest

from conversation.threads import ThreadStore
from memory import InMemorySessionCache
from shared.models import Action, AgentAttribution, Directive, Message


def _action(message_id: str, name: str = "Skyr") -> Action:
    return Action(
        message_id=message_id,
        directive=Directive(type="log_meal", payload={"name": name, "calories": 130, "protein": 22, "carbs": 8, "fat": 0}),
    )


class _History:
    def __init__(self, threads: dict[str, list[Message]]):
        self.threads = threads
        self.calls = 0

    def load_threads(self, user_id: str, per_domain_limit: int = 30) -> dict[str, list[Message]]:
        self.calls += 1
        return self.threads


@pytest.fixture
def threads() -> ThreadStore:
    return ThreadStore(InMemorySessionCache(), namespace="u1:s1")


def test_starts_on_general_and_switches(threads):
    assert threads.active_domain == "general"
    threads.switch("training")
    assert threads.active_domain == "training"
    with pytest.raises(ValueError):
        threads.switch("astrology")


def test_append_targets_active_thread(threads):
    threads.switch("nutrition")
    message = threads.append(Message(role="user", content="Skyr"))
    assert message.domain == "nutrition"
    assert threads.messages("nutrition") == [message]
    assert threads.messages("general") == []

    other = threads.append(Message(role="user", content="Bankdrücken"), domain="training")
    assert other.domain == "training"
    assert threads.messages() == [message]


def test_history_skips_in_flight_errors_and_prefers_raw(threads):
    threads.append(Message(role="user", content="Skyr gegessen"))
    threads.append(Message(role="assistant", content="Notiert.", raw_content="Notiert.\n```ACTION:log_meal\n{}\n```"))
    threads.append(Message(role="assistant", content="Verbindungsfehler", is_error=True))
    threads.append(Message(role="user", content="Und jetzt?"))
    threads.append(Message(role="assistant", content="", is_loading=True))

    history = threads.history()
    assert [turn["role"] for turn in history] == ["user", "assistant", "user"]
    assert history[1]["content"].startswith("Notiert.\n```ACTION:log_meal")
    assert threads.history(limit=1) == [{"role": "user", "content": "Und jetzt?"}]
    assert threads.history(limit=0) == []


def test_update_message_replaces_whole_message(threads):
    placeholder = threads.append(Message(role="assistant", is_loading=True))
    updated = threads.update_message(placeholder.id, content="Hal", is_loading=False, is_streaming=True)

    assert updated.content == "Hal"
    assert threads.find_message(placeholder.id) == updated
    assert threads.update_message("missing", content="x") is None


def test_update_action_keeps_position_and_drops_terminal(threads):
    message = threads.append(Message(role="assistant", content="Zwei Mahlzeiten"))
    first, second = _action(message.id, "Skyr"), _action(message.id, "Banane")
    threads.update_message(message.id, pending_actions=[first, second])

    threads.update_action(first.model_copy(update={"status": "failed", "error": "locked"}))
    pending = threads.pending_actions()
    assert [a.id for a in pending] == [first.id, second.id]
    assert pending[0].status == "failed"

    threads.update_action(first.model_copy(update={"status": "executed", "error": None}))
    assert [a.id for a in threads.pending_actions()] == [second.id]

    threads.update_action(_action("unknown-message"))
    assert len(threads.pending_actions()) == 1


def test_persist_and_load_round_trip_settled_state():
    cache = InMemorySessionCache()
    store = ThreadStore(cache, namespace="u1:s1")
    store.switch("substance")
    answer = store.append(
        Message(
            role="assistant",
            content="TRT notiert.",
            attribution=AgentAttribution(name="Substanz-Agent", icon="💉", knowledge_versions={"trt": "1.0"}),
        )
    )
    store.update_message(answer.id, pending_actions=[_action(answer.id)], is_error=True)
    store.append(Message(role="assistant", is_streaming=True))
    store.persist()

    restored = ThreadStore(cache, namespace="u1:s1")
    assert restored.load()
    assert restored.active_domain == "substance"
    (message,) = restored.messages("substance")
    assert message.id == answer.id
    assert message.pending_actions == []
    assert message.is_error is False
    assert message.attribution.knowledge_versions == {"trt": "1.0"}

    assert not ThreadStore(cache, namespace="u1:other").load()


def test_snapshot_caps_messages_per_thread():
    store = ThreadStore(InMemorySessionCache(), message_cap=3)
    for index in range(5):
        store.append(Message(role="user", content=f"m{index}"))
    snapshot = store.snapshot()
    assert [item["content"] for item in snapshot["general"]] == ["m2", "m3", "m4"]
    assert snapshot["training"] == []


def test_hydrate_fills_only_empty_threads_once(threads):
    threads.append(Message(role="user", content="lokal"), domain="nutrition")
    source = _History(
        {
            "nutrition": [Message(role="user", content="alt", domain="nutrition")],
            "training": [
                Message(role="user", content="Plan?", domain="training"),
                Message(role="assistant", content="Hier.", domain="training"),
            ],
        }
    )

    assert threads.hydrate(source, "u1") == 2
    assert [m.content for m in threads.messages("nutrition")] == ["lokal"]
    assert [m.content for m in threads.messages("training")] == ["Plan?", "Hier."]
    assert threads.hydrated

    assert threads.hydrate(source, "u1") == 0
    assert source.calls == 1
    assert threads.cache.get("hydrated", namespace="u1:s1") is True


def test_clear_empties_one_thread(threads):
    threads.append(Message(role="user", content="a"))
    threads.append(Message(role="user", content="b"), domain="training")
    threads.clear()
    assert threads.messages() == []
    assert len(threads.messages("training")) == 1
