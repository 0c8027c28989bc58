"""
Shared Pydantic models for all layers.
All contexts are immutable (frozen) after creation; updates go through model_copy.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


DOMAINS: tuple[str, ...] = (
    "nutrition",
    "training",
    "substance",
    "analysis",
    "beauty",
    "lifestyle",
    "medical",
    "general",
)
DEFAULT_DOMAIN = "general"
ANALYSIS_DOMAIN = "analysis"

DirectiveType = Literal[
    "log_meal",
    "log_workout",
    "log_body",
    "log_blood_pressure",
    "log_substance",
    "save_training_plan",
    "save_product",
    "add_substance",
    "add_reminder",
    "update_profile",
    "update_equipment",
    "search_product",
]
ActionStatus = Literal["pending", "executing", "executed", "failed", "rejected"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"executed", "rejected"})


def new_id() -> str:
    return uuid.uuid4().hex[:12]


# ─── Model Layer ──────────────────────────────────────────────

class ModelPolicy(BaseModel):
    """Reliability and sampling policy for one provider call."""
    model_config = {"frozen": True}

    model_name: str
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 2048
    timeout_seconds: float = 120.0
    connect_timeout_seconds: float = 15.0
    max_retries: int = 1
    json_mode: bool = False


class GenerationResult(BaseModel):
    """Final aggregate of a provider call (streaming or not)."""
    model_config = {"frozen": True}

    content: str
    tokens_used: int = 0
    model: str = ""


# ─── Routing ──────────────────────────────────────────────────

class RoutingDecision(BaseModel):
    model_config = {"frozen": True}

    domain: str = Field(..., description="Target agent domain")
    confidence: float = Field(..., ge=0.0, le=1.0)
    matched_keywords: list[str] = Field(default_factory=list)
    reasoning: str | None = None


class MultiRoutingDecision(BaseModel):
    """Ordered routing decisions (confidence descending) plus the primary domain."""
    model_config = {"frozen": True}

    decisions: list[RoutingDecision]
    primary: str

    @property
    def domains(self) -> list[str]:
        return [decision.domain for decision in self.decisions]


# ─── Directives & Actions ─────────────────────────────────────

class Directive(BaseModel):
    """A validated command parsed from a fenced ACTION block."""
    model_config = {"frozen": True}

    type: DirectiveType
    payload: dict[str, Any] = Field(default_factory=dict)
    raw: str = Field(default="", description="Source block text the directive was parsed from")


class Action(BaseModel):
    """Runtime wrapper tracking a directive through confirm/execute."""
    model_config = {"frozen": True}

    id: str = Field(default_factory=new_id)
    message_id: str = ""
    directive: Directive
    status: ActionStatus = "pending"
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ─── Conversation ─────────────────────────────────────────────

class AgentAttribution(BaseModel):
    model_config = {"frozen": True}

    name: str
    icon: str = ""
    knowledge_versions: dict[str, str] = Field(default_factory=dict)


class Message(BaseModel):
    """One chat message inside a domain thread."""
    model_config = {"frozen": True}

    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant"]
    content: str = ""
    raw_content: str | None = Field(default=None, description="Content including directive blocks, for history replay")
    timestamp: datetime = Field(default_factory=datetime.now)
    domain: str = DEFAULT_DOMAIN
    attribution: AgentAttribution | None = None
    pending_actions: list[Action] = Field(default_factory=list)
    is_streaming: bool = False
    is_loading: bool = False
    is_error: bool = False

    @property
    def in_flight(self) -> bool:
        return self.is_streaming or self.is_loading

    def history_text(self) -> str:
        return self.raw_content if self.raw_content is not None else self.content


# ─── Knowledge Lookup ─────────────────────────────────────────

class ProductRecord(BaseModel):
    model_config = {"frozen": True}

    name: str
    brand: str | None = None
    calories_per_100g: float
    protein_per_100g: float = 0.0
    carbs_per_100g: float = 0.0
    fat_per_100g: float = 0.0
    fiber_per_100g: float | None = None
    serving_size_g: float | None = None
    serving_label: str | None = None
    calories_per_serving: float | None = None
    protein_per_serving: float | None = None
    carbs_per_serving: float | None = None
    fat_per_serving: float | None = None


class LookupResult(BaseModel):
    model_config = {"frozen": True}

    found: bool
    source: Literal["openfoodfacts", "websearch", "none"] = "none"
    product: ProductRecord | None = None
    summary: str = ""


# ─── User context ─────────────────────────────────────────────

class CommunicationStyle(BaseModel):
    model_config = {"frozen": True}

    verbosity: Literal["short", "normal", "detailed"] = "normal"
    expertise: Literal["beginner", "intermediate", "expert"] = "intermediate"
    tone: str | None = None


class NotificationPreferences(BaseModel):
    model_config = {"frozen": True}

    reminders_enabled: bool = True
    proactive_warnings: bool = True


class UserPreferences(BaseModel):
    """Per-user configuration loaded at session start and passed explicitly."""
    model_config = {"frozen": True}

    user_id: str = "local"
    language: Literal["de", "en"] = "de"
    training_mode: Literal["standard", "power", "power_plus"] = "standard"
    communication_style: CommunicationStyle | None = None
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)


class HealthSnapshot(BaseModel):
    """Live user data the agents summarize into their instructions."""
    model_config = {"frozen": True}

    profile: dict[str, Any] = Field(default_factory=dict)
    daily_totals: dict[str, float] = Field(default_factory=dict)
    recent_meals: list[dict[str, Any]] = Field(default_factory=list)
    recent_workouts: list[dict[str, Any]] = Field(default_factory=list)
    body_measurements: list[dict[str, Any]] = Field(default_factory=list)
    blood_pressure: list[dict[str, Any]] = Field(default_factory=list)
    substances: list[dict[str, Any]] = Field(default_factory=list)
    substance_logs: list[dict[str, Any]] = Field(default_factory=list)
    active_plan: dict[str, Any] | None = None
    equipment: list[str] = Field(default_factory=list)
    known_products: list[dict[str, Any]] = Field(default_factory=list)
    checkin: dict[str, Any] = Field(default_factory=dict)
    blood_work: dict[str, Any] = Field(default_factory=dict)


class AgentContext(BaseModel):
    """Everything an agent needs to build its provider input."""
    model_config = {"frozen": True}

    preferences: UserPreferences = Field(default_factory=UserPreferences)
    snapshot: HealthSnapshot = Field(default_factory=HealthSnapshot)
    history: list[dict[str, str]] = Field(default_factory=list, description="Role-tagged turns, oldest first")
    session_notes: list[str] = Field(default_factory=list)
    now: datetime | None = None


# ─── Agent & Dispatch results ─────────────────────────────────

class AgentResult(BaseModel):
    model_config = {"frozen": True}

    content: str
    domain: str
    agent_name: str
    agent_icon: str = ""
    knowledge_versions: dict[str, str] = Field(default_factory=dict)
    tokens_used: int = 0
    model: str = ""

    def attribution(self) -> AgentAttribution:
        return AgentAttribution(
            name=self.agent_name,
            icon=self.agent_icon,
            knowledge_versions=dict(self.knowledge_versions),
        )


class DispatchResult(BaseModel):
    """Outcome of one conversation turn. Never raised, always returned."""
    model_config = {"frozen": True}

    status: Literal["success", "failure"]
    content: str
    routing: MultiRoutingDecision
    primary: AgentResult | None = None
    secondary: list[AgentResult] = Field(default_factory=list)
    tokens_used: int = 0
    lookup: LookupResult | None = None
    error: str | None = None

    @property
    def results(self) -> list[AgentResult]:
        return ([self.primary] if self.primary else []) + list(self.secondary)
