from __future__ import annotations

from pathlib import Path

import pytest

from memory import InMemorySessionCache, SQLiteHealthStore, SQLiteSessionCache


def test_session_cache_save_get_delete(tmp_path: Path):
    db_path = tmp_path / "session_test.db"
    cache = SQLiteSessionCache(db_path=str(db_path))

    try:
        cache.save("active_domain", "nutrition", namespace="u1:s1")
        cache.save("hydrated", True, namespace="u1:s1")
        cache.save("threads", {"general": [{"role": "user", "content": "Hallo"}]}, namespace="u1:s1")
        cache.save("active_domain", "training", namespace="u1:s2")

        assert cache.get("active_domain", namespace="u1:s1") == "nutrition"
        assert cache.get("active_domain", namespace="u1:s2") == "training"
        assert cache.get("hydrated", namespace="u1:s1") is True
        assert cache.get("threads", namespace="u1:s1")["general"][0]["content"] == "Hallo"

        cache.save("active_domain", "medical", namespace="u1:s1")
        assert cache.get("active_domain", namespace="u1:s1") == "medical"

        cache.delete("hydrated", namespace="u1:s1")
        assert cache.get("hydrated", namespace="u1:s1") is None

        cache.clear("u1:s1")
        assert cache.get("threads", namespace="u1:s1") is None
        assert cache.get("active_domain", namespace="u1:s2") == "training"
    finally:
        cache.close()


def test_session_cache_survives_reopen(tmp_path: Path):
    db_path = str(tmp_path / "session_test.db")
    first = SQLiteSessionCache(db_path=db_path)
    first.save("active_domain", "beauty", namespace="u1:s1")
    first.close()

    second = SQLiteSessionCache(db_path=db_path)
    try:
        assert second.get("active_domain", namespace="u1:s1") == "beauty"
    finally:
        second.close()


def test_in_memory_cache_copies_values():
    cache = InMemorySessionCache()
    value = {"general": []}
    cache.save("threads", value, namespace="n")
    value["general"].append("mutated")

    assert cache.get("threads", namespace="n") == {"general": []}
    with pytest.raises(ValueError):
        cache.save("  ", 1)


def test_health_store_insert_and_query(tmp_path: Path):
    store = SQLiteHealthStore(db_path=str(tmp_path / "health.db"))

    try:
        first = store.insert("meals", {"user_id": "u1", "name": "Skyr", "calories": 130})
        store.insert("meals", {"user_id": "u2", "name": "Banane", "calories": 105})
        store.insert("meals", {"user_id": "u1", "name": "Haferflocken", "calories": 149})

        assert first["id"]
        assert first["created_at"]

        rows = store.query("meals", {"user_id": "u1"})
        assert [row["name"] for row in rows] == ["Haferflocken", "Skyr"]
        assert store.query("meals", {"user_id": "u1"}, limit=1)[0]["name"] == "Haferflocken"
        assert store.query("workouts") == []
    finally:
        store.close()


def test_health_store_insert_many(tmp_path: Path):
    store = SQLiteHealthStore(db_path=str(tmp_path / "health.db"))

    try:
        count = store.insert_many(
            "ai_usage_log",
            [
                {"user_id": "u1", "agent_type": "nutrition", "tokens_used": 120},
                {"user_id": "u1", "agent_type": "training", "tokens_used": 80},
            ],
        )
        assert count == 2
        assert store.insert_many("ai_usage_log", []) == 0
        assert len(store.query("ai_usage_log")) == 2
        with pytest.raises(ValueError):
            store.insert(" ", {"x": 1})
    finally:
        store.close()


def test_health_store_filters_by_value_type(tmp_path: Path):
    store = SQLiteHealthStore(db_path=str(tmp_path / "health.db"))

    try:
        store.insert("substances", {"user_id": "u1", "name": "TRT", "is_active": True, "tags": ["hormone"]})
        store.insert("substances", {"user_id": "u1", "name": "Vitamin D", "is_active": False})
        store.insert("substances", {"user_id": "u1", "name": "Kreatin", "dose_mg": 5000})
        store.insert("substances", {"user_id": "u2", "name": "TRT", "is_active": True})

        assert [r["name"] for r in store.query("substances", {"user_id": "u1", "is_active": True})] == ["TRT"]
        assert [r["name"] for r in store.query("substances", {"user_id": "u1", "dose_mg": 5000.0})] == ["Kreatin"]
        assert [r["name"] for r in store.query("substances", {"user_id": "u1", "is_active": None})] == ["Kreatin"]
        assert [r["user_id"] for r in store.query("substances", {"tags": ["hormone"]})] == ["u1"]
        assert store.query("substances", {"user_id": "u3"}) == []
        assert len(store.query("substances", {"name": "TRT"}, limit=1)) == 1
    finally:
        store.close()
