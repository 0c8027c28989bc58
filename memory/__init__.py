"""Session cache (local tier) and health data store (authoritative tier)."""

from memory.health_store import HealthDataStore, SQLiteHealthStore
from memory.store import InMemorySessionCache, SessionCache, SQLiteSessionCache

__all__ = [
    "HealthDataStore",
    "SQLiteHealthStore",
    "SessionCache",
    "InMemorySessionCache",
    "SQLiteSessionCache",
]
