"""
Directive schemas — strict per-type payload validation.

Responsibility:
- One pydantic model per directive type (required fields, defaults, closed enums)
- Cross-field refinements (at-least-one measurement, strength/endurance exercise pair)
- Normalize loose free-text values (reminder cadence, category synonyms) into the closed vocabulary

Prohibitions:
- No persistence, no I/O
- A failing payload is rejected whole, never partially applied
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]


def _today() -> str:
    return date.today().isoformat()


def _now_hhmm() -> str:
    return datetime.now().strftime("%H:%M")


def infer_meal_type(hour: int | None = None) -> str:
    """Meal bucket for the given hour (defaults to the current hour)."""
    if hour is None:
        hour = datetime.now().hour
    if hour < 10:
        return "breakfast"
    if hour < 14:
        return "lunch"
    if hour < 17:
        return "snack"
    return "dinner"


def _lowered(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class DirectivePayload(BaseModel):
    model_config = {"extra": "ignore"}


# ─── Logging directives ───────────────────────────────────────

class LogMealPayload(DirectivePayload):
    date: str = Field(default_factory=_today)
    name: str = Field(..., min_length=1)
    type: Literal["breakfast", "lunch", "dinner", "snack"] = Field(default_factory=infer_meal_type)
    calories: float = Field(..., ge=0)
    protein: float = Field(..., ge=0)
    carbs: float = Field(..., ge=0)
    fat: float = Field(..., ge=0)
    fiber: float | None = Field(default=None, ge=0)
    source: str = "ai"

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return _lowered(value)


class WorkoutExercise(DirectivePayload):
    name: str = Field(..., min_length=1)
    sets: int | None = Field(default=None, ge=1)
    reps: str | None = None
    weight_kg: float | None = Field(default=None, ge=0)
    duration_minutes: float | None = Field(default=None, ge=0)
    distance_km: float | None = Field(default=None, ge=0)

    @field_validator("reps", mode="before")
    @classmethod
    def _reps_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value


class LogWorkoutPayload(DirectivePayload):
    date: str = Field(default_factory=_today)
    name: str | None = None
    type: Literal["strength", "cardio", "flexibility", "hiit", "sports", "other"] = "strength"
    duration_minutes: float | None = Field(default=None, ge=0)
    calories_burned: float | None = Field(default=None, ge=0)
    met_value: float | None = Field(default=None, ge=0)
    exercises: list[WorkoutExercise] = Field(default_factory=list)
    notes: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return _lowered(value)


BODY_MEASUREMENT_FIELDS = (
    "weight_kg",
    "body_fat_pct",
    "muscle_mass_kg",
    "water_pct",
    "waist_cm",
    "chest_cm",
    "arm_cm",
    "leg_cm",
)


class LogBodyPayload(DirectivePayload):
    date: str = Field(default_factory=_today)
    weight_kg: float | None = Field(default=None, gt=0, le=400)
    body_fat_pct: float | None = Field(default=None, ge=1, le=60)
    muscle_mass_kg: float | None = Field(default=None, gt=0)
    water_pct: float | None = Field(default=None, ge=20, le=80)
    waist_cm: float | None = Field(default=None, gt=0)
    chest_cm: float | None = Field(default=None, gt=0)
    arm_cm: float | None = Field(default=None, gt=0)
    leg_cm: float | None = Field(default=None, gt=0)
    notes: str | None = None

    @model_validator(mode="after")
    def _require_measurement(self) -> "LogBodyPayload":
        if all(getattr(self, name) is None for name in BODY_MEASUREMENT_FIELDS):
            raise ValueError("at least one measurement is required")
        return self


class LogBloodPressurePayload(DirectivePayload):
    date: str = Field(default_factory=_today)
    time: str = Field(default_factory=_now_hhmm, pattern=r"^\d{1,2}:\d{2}$")
    systolic: int = Field(..., ge=60, le=300)
    diastolic: int = Field(..., ge=30, le=200)
    pulse: int | None = Field(default=None, ge=30, le=250)
    notes: str | None = None

    @model_validator(mode="after")
    def _systolic_above_diastolic(self) -> "LogBloodPressurePayload":
        if self.systolic <= self.diastolic:
            raise ValueError("systolic must be greater than diastolic")
        return self


InjectionSite = Literal[
    "glute_left",
    "glute_right",
    "delt_left",
    "delt_right",
    "quad_left",
    "quad_right",
    "ventro_glute_left",
    "ventro_glute_right",
    "abdomen",
    "other",
]


class LogSubstancePayload(DirectivePayload):
    date: str = Field(default_factory=_today)
    substance_name: str = Field(..., min_length=1)
    dosage_taken: str | None = None
    unit: str | None = None
    site: InjectionSite | None = None
    notes: str | None = None

    @field_validator("site", mode="before")
    @classmethod
    def _normalize_site(cls, value: Any) -> Any:
        return _lowered(value)

    @field_validator("dosage_taken", mode="before")
    @classmethod
    def _dosage_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value


# ─── Training plan ────────────────────────────────────────────

class PlanExercise(DirectivePayload):
    name: str = Field(..., min_length=1)
    sets: int | None = Field(default=None, ge=1, le=20)
    reps: str | None = None
    weight_kg: float | None = Field(default=None, ge=0)
    rest_seconds: int | None = Field(default=None, ge=0)
    duration_minutes: float | None = Field(default=None, gt=0)
    distance_km: float | None = Field(default=None, gt=0)
    pace: str | None = None
    intensity: str | None = None
    exercise_type: Literal["strength", "cardio", "flexibility", "functional", "other"] = "strength"
    notes: str | None = None

    @field_validator("exercise_type", mode="before")
    @classmethod
    def _normalize_exercise_type(cls, value: Any) -> Any:
        return _lowered(value)

    @field_validator("reps", mode="before")
    @classmethod
    def _reps_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value

    @model_validator(mode="after")
    def _strength_or_endurance(self) -> "PlanExercise":
        has_strength = self.sets is not None and bool(self.reps)
        has_endurance = self.duration_minutes is not None or self.distance_km is not None
        if not (has_strength or has_endurance):
            raise ValueError("exercise needs sets/reps (strength) or duration/distance (endurance)")
        return self


class PlanDay(DirectivePayload):
    day_number: int = Field(..., ge=1, le=7)
    name: str = Field(..., min_length=1)
    focus: str | None = None
    exercises: list[PlanExercise] = Field(..., min_length=1)


class SaveTrainingPlanPayload(DirectivePayload):
    name: str = Field(..., min_length=1)
    split_type: Literal[
        "ppl",
        "upper_lower",
        "full_body",
        "custom",
        "running",
        "swimming",
        "cycling",
        "yoga",
        "martial_arts",
        "mixed",
    ] = "custom"
    days_per_week: int = Field(..., ge=1, le=7)
    days: list[PlanDay] = Field(..., min_length=1)
    notes: str | None = None

    @field_validator("split_type", mode="before")
    @classmethod
    def _normalize_split(cls, value: Any) -> Any:
        return _lowered(value)


# ─── Products & substances ────────────────────────────────────

PRODUCT_CATEGORY_SYNONYMS = {
    "getreide": "grain",
    "cereal": "grain",
    "milchprodukt": "dairy",
    "milch": "dairy",
    "fleisch": "meat",
    "fisch": "fish",
    "obst": "fruit",
    "gemüse": "vegetable",
    "getränk": "beverage",
    "drink": "beverage",
    "supplements": "supplement",
    "nahrungsergänzung": "supplement",
    "süßigkeit": "snack",
    "sweets": "snack",
}


class SaveProductPayload(DirectivePayload):
    name: str = Field(..., min_length=1)
    brand: str | None = None
    category: Literal[
        "grain",
        "dairy",
        "meat",
        "fish",
        "fruit",
        "vegetable",
        "snack",
        "beverage",
        "supplement",
        "general",
    ] = "general"
    serving_size_g: float = Field(..., gt=0)
    serving_label: str | None = None
    calories_per_100g: float = Field(..., ge=0)
    protein_per_100g: float = Field(default=0, ge=0)
    carbs_per_100g: float = Field(default=0, ge=0)
    fat_per_100g: float = Field(default=0, ge=0)
    fiber_per_100g: float | None = Field(default=None, ge=0)
    aliases: list[str] = Field(default_factory=list)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        value = _lowered(value)
        if not value:
            return "general"
        return PRODUCT_CATEGORY_SYNONYMS.get(value, value)


SUBSTANCE_CATEGORY_SYNONYMS = {
    "testosterone": "trt",
    "testosteron": "trt",
    "hormone": "trt",
    "glp-1": "glp1",
    "glp1": "glp1",
    "semaglutide": "glp1",
    "anabolic": "ppi",
    "anabolika": "ppi",
    "steroid": "ppi",
    "supplements": "supplement",
    "nahrungsergänzung": "supplement",
    "medikament": "medication",
    "medicine": "medication",
}


class AddSubstancePayload(DirectivePayload):
    name: str = Field(..., min_length=1)
    category: Literal["trt", "glp1", "ppi", "supplement", "medication", "other"] = "other"
    type: Literal["injection", "oral", "transdermal", "subcutaneous", "other"] = "other"
    dosage: str | None = None
    unit: str | None = None
    frequency: str | None = None
    ester: str | None = None
    half_life_hours: float | None = Field(default=None, gt=0)
    notes: str | None = None
    is_active: bool = True

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return _lowered(value)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        value = _lowered(value)
        if not value:
            return "other"
        return SUBSTANCE_CATEGORY_SYNONYMS.get(value, value)

    @field_validator("dosage", mode="before")
    @classmethod
    def _dosage_as_text(cls, value: Any) -> Any:
        return str(value) if isinstance(value, (int, float)) else value


# ─── Reminders ────────────────────────────────────────────────

REMINDER_CATEGORY_SYNONYMS = {
    "substance": "substance",
    "injection": "substance",
    "injektion": "substance",
    "spritze": "substance",
    "medication": "substance",
    "medikament": "substance",
    "supplement": "substance",
    "blood_pressure": "blood_pressure",
    "blutdruck": "blood_pressure",
    "bp": "blood_pressure",
    "body_measurement": "body_measurement",
    "weight": "body_measurement",
    "wiegen": "body_measurement",
    "gewicht": "body_measurement",
    "measurement": "body_measurement",
}

_DAILY_RE = re.compile(r"^\d+x\s*/\s*tag")
_WEEKLY_RE = re.compile(r"^1x\s*/\s*woche")
_EVERY_N_DAYS_RE = re.compile(r"alle\s+(\d+)\s+tage|every\s+(\d+)\s+days")
_PER_WEEK_RE = re.compile(r"^(\d+)x\s*/\s*woche")
MAX_INTERVAL_DAYS = 90


def parse_frequency(text: str | None) -> dict[str, Any] | None:
    """Map a free-text cadence ("täglich", "2x/Woche", "alle 3 Tage") onto repeat settings."""
    if not text:
        return None
    lower = text.strip().lower()

    if lower in ("täglich", "taeglich", "daily", "every day", "jeden tag") or _DAILY_RE.match(lower):
        return {"repeat_mode": "weekly", "days_of_week": list(ALL_DAYS)}

    if lower in ("wöchentlich", "woechentlich", "weekly") or _WEEKLY_RE.match(lower):
        return {"repeat_mode": "interval", "interval_days": 7}

    interval = _EVERY_N_DAYS_RE.search(lower)
    if interval:
        days = int(interval.group(1) or interval.group(2))
        return {"repeat_mode": "interval", "interval_days": min(max(days, 1), MAX_INTERVAL_DAYS)}

    per_week = _PER_WEEK_RE.match(lower)
    if per_week and int(per_week.group(1)) >= 2:
        return {"repeat_mode": "interval", "interval_days": round(7 / int(per_week.group(1)))}

    # unparseable cadence text falls back to daily
    return {"repeat_mode": "weekly", "days_of_week": list(ALL_DAYS)}


class AddReminderPayload(DirectivePayload):
    title: str = Field(..., min_length=1)
    category: Literal["substance", "blood_pressure", "body_measurement", "custom"] = "custom"
    description: str | None = None
    time: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}$")
    time_period: Literal["morning", "noon", "evening", "night"] | None = None
    repeat_mode: Literal["weekly", "interval"] = "weekly"
    days_of_week: list[int] = Field(default_factory=lambda: list(ALL_DAYS))
    interval_days: int | None = Field(default=None, ge=1, le=MAX_INTERVAL_DAYS)
    substance_name: str | None = None

    @field_validator("time_period", mode="before")
    @classmethod
    def _normalize_period(cls, value: Any) -> Any:
        return _lowered(value)

    @model_validator(mode="before")
    @classmethod
    def _normalize_loose_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_category = data.pop("type", None) if "category" not in data else data.get("category")
        category = _lowered(raw_category)
        if category:
            data["category"] = REMINDER_CATEGORY_SYNONYMS.get(category, "custom")

        cadence = data.pop("frequency", None)
        repeat = _lowered(data.get("repeat_mode"))
        if repeat not in (None, "weekly", "interval"):
            cadence = cadence or repeat
            data.pop("repeat_mode")
        if cadence and "interval_days" not in data and "days_of_week" not in data:
            parsed = parse_frequency(str(cadence))
            if parsed:
                data.update(parsed)
        return data

    @field_validator("days_of_week")
    @classmethod
    def _valid_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week entries must be between 0 (Sunday) and 6")
        return sorted(set(value))

    @model_validator(mode="after")
    def _cadence_complete(self) -> "AddReminderPayload":
        if self.repeat_mode == "interval" and self.interval_days is None:
            raise ValueError("interval reminders need interval_days")
        if self.repeat_mode == "weekly" and not self.days_of_week:
            raise ValueError("weekly reminders need at least one day")
        return self


# ─── Profile & equipment ──────────────────────────────────────

GENDER_SYNONYMS = {
    "m": "male",
    "mann": "male",
    "männlich": "male",
    "w": "female",
    "f": "female",
    "frau": "female",
    "weiblich": "female",
    "divers": "other",
    "d": "other",
}

PROFILE_FIELDS = (
    "display_name",
    "height_cm",
    "birth_year",
    "gender",
    "activity_level",
    "daily_calories_goal",
    "daily_protein_goal",
    "weight_goal_kg",
)


class UpdateProfilePayload(DirectivePayload):
    display_name: str | None = Field(default=None, min_length=1)
    height_cm: float | None = Field(default=None, ge=100, le=250)
    birth_year: int | None = Field(default=None, ge=1900, le=date.today().year)
    gender: Literal["male", "female", "other"] | None = None
    activity_level: float | None = Field(default=None, ge=1.2, le=1.9)
    daily_calories_goal: int | None = Field(default=None, ge=800, le=8000)
    daily_protein_goal: int | None = Field(default=None, ge=20, le=500)
    weight_goal_kg: float | None = Field(default=None, gt=0, le=400)

    @field_validator("gender", mode="before")
    @classmethod
    def _normalize_gender(cls, value: Any) -> Any:
        value = _lowered(value)
        return GENDER_SYNONYMS.get(value, value) if value else None

    @model_validator(mode="after")
    def _require_field(self) -> "UpdateProfilePayload":
        if all(getattr(self, name) is None for name in PROFILE_FIELDS):
            raise ValueError("at least one profile field is required")
        return self


class UpdateEquipmentPayload(DirectivePayload):
    equipment_names: list[str] = Field(..., min_length=1)
    mode: Literal["add", "remove", "replace"] = "add"

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        return _lowered(value)

    @field_validator("equipment_names")
    @classmethod
    def _strip_names(cls, value: list[str]) -> list[str]:
        names = [name.strip() for name in value if name and name.strip()]
        if not names:
            raise ValueError("equipment_names must contain at least one name")
        return names


class SearchProductPayload(DirectivePayload):
    query: str = Field(..., min_length=1)

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


# ─── Registry ─────────────────────────────────────────────────

DIRECTIVE_SCHEMAS: dict[str, type[DirectivePayload]] = {
    "log_meal": LogMealPayload,
    "log_workout": LogWorkoutPayload,
    "log_body": LogBodyPayload,
    "log_blood_pressure": LogBloodPressurePayload,
    "log_substance": LogSubstancePayload,
    "save_training_plan": SaveTrainingPlanPayload,
    "save_product": SaveProductPayload,
    "add_substance": AddSubstancePayload,
    "add_reminder": AddReminderPayload,
    "update_profile": UpdateProfilePayload,
    "update_equipment": UpdateEquipmentPayload,
    "search_product": SearchProductPayload,
}


class ValidationOutcome(BaseModel):
    model_config = {"frozen": True}

    ok: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


def _format_errors(error: ValidationError) -> list[str]:
    messages: list[str] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "payload"
        message = str(item.get("msg", "invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location}: {message}")
    return messages


def validate_directive(directive_type: str, payload: Any) -> ValidationOutcome:
    """Validate a raw payload for directive_type; unknown types are rejected."""
    schema = DIRECTIVE_SCHEMAS.get((directive_type or "").strip().lower())
    if schema is None:
        return ValidationOutcome(ok=False, errors=[f"type: unknown directive type '{directive_type}'"])
    if not isinstance(payload, dict):
        return ValidationOutcome(ok=False, errors=["payload: expected a JSON object"])
    try:
        model = schema.model_validate(payload)
    except ValidationError as e:
        return ValidationOutcome(ok=False, errors=_format_errors(e))
    return ValidationOutcome(ok=True, payload=model.model_dump(exclude_none=True))
