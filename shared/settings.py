"""
Runtime configuration.

Responsibility:
- Load .env (never overriding real environment variables)
- Expose a frozen CoachSettings object passed explicitly to every layer

Prohibitions:
- No module-level mutable state read by business code
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from shared.models import ModelPolicy, UserPreferences

logger = logging.getLogger(__name__)

DEFAULT_ROUTER_WEIGHTS: dict[str, float] = {
    "nutrition": 0.8,
    "training": 0.8,
    "substance": 0.9,
    "analysis": 0.75,
    "beauty": 0.85,
    "lifestyle": 0.8,
    "medical": 0.85,
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class RouterSettings(BaseModel):
    """Hand-tuned keyword scoring constants."""
    model_config = {"frozen": True}

    confidence_threshold: float = 0.3
    fallback_confidence: float = 0.5
    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_ROUTER_WEIGHTS))


class LookupSettings(BaseModel):
    model_config = {"frozen": True}

    proxy_url: str = "http://localhost:5173/api/off-search/search"
    direct_url: str = "https://search.openfoodfacts.org/search"
    timeout_seconds: float = 8.0
    page_size: int = 10
    langs: str = "de"
    fallback_enabled: bool = True
    fallback_model: str = "gpt-4o-mini"
    fallback_timeout_seconds: float = 15.0


class CoachSettings(BaseModel):
    """Frozen application settings."""
    model_config = {"frozen": True}

    model_base_url: str = "http://localhost:11434"
    chat_model: str = "llama3.1:8b"
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 2048
    connect_timeout_seconds: float = 15.0
    timeout_seconds: float = 120.0
    max_retries: int = 2
    history_turns: int = 8
    thread_message_cap: int = 50
    hydration_limit: int = 30
    multi_agent_enabled: bool = True
    session_db_path: str = "session.db"
    health_db_path: str = "health.db"
    history_db_path: str = "conversations.db"
    router: RouterSettings = Field(default_factory=RouterSettings)
    lookup: LookupSettings = Field(default_factory=LookupSettings)
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    def chat_policy(self) -> ModelPolicy:
        return ModelPolicy(
            model_name=self.chat_model,
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
            timeout_seconds=self.timeout_seconds,
            connect_timeout_seconds=self.connect_timeout_seconds,
            max_retries=max(1, self.max_retries),
            json_mode=False,
        )

    def lookup_policy(self) -> ModelPolicy:
        return ModelPolicy(
            model_name=self.lookup.fallback_model,
            temperature=0.1,
            max_tokens=512,
            timeout_seconds=self.lookup.fallback_timeout_seconds,
            connect_timeout_seconds=min(self.connect_timeout_seconds, self.lookup.fallback_timeout_seconds),
            max_retries=1,
            json_mode=True,
        )


def _router_weights_from_env() -> dict[str, float]:
    weights = dict(DEFAULT_ROUTER_WEIGHTS)
    raw = os.getenv("ROUTER_WEIGHTS", "").strip()
    if not raw:
        return weights
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Ignoring invalid ROUTER_WEIGHTS: %s", e)
        return weights
    if not isinstance(parsed, dict):
        logger.warning("Ignoring ROUTER_WEIGHTS: expected a JSON object")
        return weights
    for domain, value in parsed.items():
        try:
            weights[str(domain)] = float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring ROUTER_WEIGHTS entry %s=%r", domain, value)
    return weights


def load_settings() -> CoachSettings:
    """Build settings from the environment (after loading .env)."""
    load_dotenv(override=False)

    language = os.getenv("COACH_LANGUAGE", "de").strip().lower()
    if language not in ("de", "en"):
        language = "de"
    training_mode = os.getenv("COACH_TRAINING_MODE", "standard").strip().lower()
    if training_mode not in ("standard", "power", "power_plus"):
        training_mode = "standard"

    return CoachSettings(
        model_base_url=os.getenv("MODEL_BASE_URL", "").strip() or os.getenv("OLLAMA_URL", "http://localhost:11434"),
        chat_model=os.getenv("CHAT_MODEL", "llama3.1:8b").strip() or "llama3.1:8b",
        temperature=float(os.getenv("CHAT_TEMPERATURE", "0.7")),
        top_p=float(os.getenv("CHAT_TOP_P", "0.9")),
        max_tokens=int(os.getenv("CHAT_MAX_TOKENS", "2048")),
        connect_timeout_seconds=float(os.getenv("MODEL_CONNECT_TIMEOUT_SECONDS", "15")),
        timeout_seconds=float(os.getenv("MODEL_TIMEOUT_SECONDS", "120")),
        max_retries=int(os.getenv("MODEL_MAX_RETRIES", "2")),
        history_turns=int(os.getenv("HISTORY_TURNS", "8")),
        thread_message_cap=int(os.getenv("THREAD_MESSAGE_CAP", "50")),
        hydration_limit=int(os.getenv("HYDRATION_LIMIT", "30")),
        multi_agent_enabled=_env_bool("MULTI_AGENT_ENABLED", "true"),
        session_db_path=os.getenv("SESSION_DB_PATH", "session.db"),
        health_db_path=os.getenv("HEALTH_DB_PATH", "health.db"),
        history_db_path=os.getenv("DB_PATH", "conversations.db"),
        router=RouterSettings(
            confidence_threshold=float(os.getenv("ROUTER_CONFIDENCE_THRESHOLD", "0.3")),
            fallback_confidence=float(os.getenv("ROUTER_FALLBACK_CONFIDENCE", "0.5")),
            weights=_router_weights_from_env(),
        ),
        lookup=LookupSettings(
            proxy_url=os.getenv("LOOKUP_PROXY_URL", "http://localhost:5173/api/off-search/search"),
            direct_url=os.getenv("LOOKUP_DIRECT_URL", "https://search.openfoodfacts.org/search"),
            timeout_seconds=float(os.getenv("LOOKUP_TIMEOUT_SECONDS", "8")),
            page_size=int(os.getenv("LOOKUP_PAGE_SIZE", "10")),
            langs=os.getenv("LOOKUP_LANGS", "de"),
            fallback_enabled=_env_bool("LOOKUP_FALLBACK_ENABLED", "true"),
            fallback_model=os.getenv("LOOKUP_FALLBACK_MODEL", "gpt-4o-mini"),
            fallback_timeout_seconds=float(os.getenv("LOOKUP_FALLBACK_TIMEOUT_SECONDS", "15")),
        ),
        preferences=UserPreferences(
            user_id=os.getenv("COACH_USER_ID", "local").strip() or "local",
            language=language,
            training_mode=training_mode,
        ),
    )
