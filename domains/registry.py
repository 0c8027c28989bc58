"""
Agent registry — one configuration record per domain.

Responsibility:
- Static agent metadata (names, icon, description, token budget)
- Knowledge blocks and user-data blocks each agent loads
- Role header and one pure rules function per domain

A registry lookup replaces agent subclasses: instruction assembly reads the
record, never the type of an object.
"""

from __future__ import annotations

from typing import Callable

from pydantic import BaseModel, Field

from shared.models import AgentContext

RulesBuilder = Callable[[AgentContext], str | None]


class AgentConfig(BaseModel):
    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    domain: str
    name: str = Field(..., description="German display name")
    name_en: str
    icon: str
    description: str
    knowledge: list[str] = Field(default_factory=list)
    user_data: list[str] = Field(default_factory=list)
    role_de: str
    role_en: str
    max_context_tokens: int = 6000
    rules: RulesBuilder | None = None

    def display_name(self, language: str) -> str:
        return self.name_en if language == "en" else self.name

    def role_header(self, language: str) -> str:
        return self.role_en if language == "en" else self.role_de


# ─── Per-domain rules ─────────────────────────────────────────

def _example(directive_type: str, payload: str) -> str:
    return f"```ACTION:{directive_type}\n{payload}\n```"


_MEAL_EXAMPLE = _example(
    "log_meal",
    '{"name": "Skyr mit Haferflocken", "type": "breakfast", "calories": 420, "protein": 38, "carbs": 52, "fat": 6, "fiber": 5}',
)
_PRODUCT_EXAMPLE = _example(
    "save_product",
    '{"name": "Proteinriegel Cookie", "brand": "ESN", "category": "snack", "serving_size_g": 45, '
    '"calories_per_100g": 380, "protein_per_100g": 44, "carbs_per_100g": 30, "fat_per_100g": 12, "aliases": ["Riegel"]}',
)
_WORKOUT_EXAMPLE = _example(
    "log_workout",
    '{"name": "Push", "type": "strength", "duration_minutes": 60, '
    '"exercises": [{"name": "Bankdrücken", "sets": 4, "reps": "8", "weight_kg": 80}]}',
)
_PLAN_EXAMPLE = _example(
    "save_training_plan",
    '{"name": "Oberkörper/Unterkörper", "split_type": "upper_lower", "days_per_week": 2, "days": ['
    '{"day_number": 1, "name": "Oberkörper", "exercises": [{"name": "Bankdrücken", "sets": 4, "reps": "6-8"}]}, '
    '{"day_number": 4, "name": "Lauf", "exercises": [{"name": "Zone-2-Lauf", "duration_minutes": 40, "exercise_type": "cardio"}]}]}',
)
_EQUIPMENT_EXAMPLE = _example("update_equipment", '{"equipment_names": ["Kurzhanteln", "Klimmzugstange"], "mode": "add"}')
_SUBSTANCE_LOG_EXAMPLE = _example(
    "log_substance",
    '{"substance_name": "Testosteron Enanthat", "dosage_taken": "125", "unit": "mg", "site": "glute_left"}',
)
_SUBSTANCE_ADD_EXAMPLE = _example(
    "add_substance",
    '{"name": "Semaglutid", "category": "glp1", "type": "subcutaneous", "dosage": "0.5", "unit": "mg", "frequency": "1x/Woche"}',
)
_REMINDER_EXAMPLE = _example(
    "add_reminder",
    '{"title": "Semaglutid spritzen", "category": "substance", "time": "08:00", "frequency": "1x/Woche"}',
)
_BLOOD_PRESSURE_EXAMPLE = _example(
    "log_blood_pressure",
    '{"systolic": 128, "diastolic": 82, "pulse": 64, "time": "07:30"}',
)
_BODY_EXAMPLE = _example("log_body", '{"weight_kg": 84.2, "body_fat_pct": 16.5, "waist_cm": 86}')


def _nutrition_rules(context: AgentContext) -> str | None:
    if context.preferences.language == "en":
        return (
            "## RULES\n"
            "- When the user reports food, answer with the estimated macros AND one ACTION:log_meal block.\n"
            "- Meal type is one of breakfast, lunch, dinner, snack.\n"
            "- Unknown packaged product: emit ACTION:search_product with {\"query\": \"<product>\"} instead of guessing.\n"
            "- Use known user products first; they are exact. Store new products with ACTION:save_product.\n\n"
            f"{_MEAL_EXAMPLE}\n\n{_PRODUCT_EXAMPLE}"
        )
    return (
        "## REGELN\n"
        "- Wenn der Nutzer Essen meldet: Makros schätzen UND genau einen ACTION:log_meal Block ausgeben.\n"
        "- Mahlzeit-Typ ist breakfast, lunch, dinner oder snack.\n"
        "- Unbekanntes Markenprodukt: ACTION:search_product mit {\"query\": \"<Produkt>\"} statt raten.\n"
        "- Bekannte User-Produkte zuerst verwenden, deren Werte sind exakt. Neue Produkte mit ACTION:save_product speichern.\n\n"
        f"{_MEAL_EXAMPLE}\n\n{_PRODUCT_EXAMPLE}"
    )


def _training_rules(context: AgentContext) -> str | None:
    if context.preferences.language == "en":
        return (
            "## RULES\n"
            "- Logged sessions → ACTION:log_workout. New or changed plans → ACTION:save_training_plan.\n"
            "- Every plan exercise needs sets + reps (strength) or duration/distance (endurance).\n"
            "- Only use equipment the user has; new equipment → ACTION:update_equipment.\n\n"
            f"{_WORKOUT_EXAMPLE}\n\n{_PLAN_EXAMPLE}\n\n{_EQUIPMENT_EXAMPLE}"
        )
    return (
        "## REGELN\n"
        "- Absolvierte Einheiten → ACTION:log_workout. Neue oder geänderte Pläne → ACTION:save_training_plan.\n"
        "- Jede Plan-Übung braucht Sätze + Wiederholungen (Kraft) oder Dauer/Distanz (Ausdauer).\n"
        "- Nur Geräte einplanen, die der Nutzer hat; neue Geräte → ACTION:update_equipment.\n\n"
        f"{_WORKOUT_EXAMPLE}\n\n{_PLAN_EXAMPLE}\n\n{_EQUIPMENT_EXAMPLE}"
    )


def _substance_rules(context: AgentContext) -> str | None:
    examples = "\n\n".join(
        (_SUBSTANCE_LOG_EXAMPLE, _SUBSTANCE_ADD_EXAMPLE, _REMINDER_EXAMPLE, _BLOOD_PRESSURE_EXAMPLE)
    )
    if context.preferences.language == "en":
        return (
            "## RULES\n"
            "- Injections or intakes → ACTION:log_substance with the injection site when given.\n"
            "- New substances → ACTION:add_substance; recurring intake → ACTION:add_reminder.\n"
            "- Blood pressure readings → ACTION:log_blood_pressure. Safety before performance.\n\n"
            f"{examples}"
        )
    return (
        "## REGELN\n"
        "- Injektionen oder Einnahmen → ACTION:log_substance, mit Injektionsstelle falls genannt.\n"
        "- Neue Substanzen → ACTION:add_substance; wiederkehrende Einnahme → ACTION:add_reminder.\n"
        "- Blutdruckwerte → ACTION:log_blood_pressure. Sicherheit vor Leistung.\n\n"
        f"{examples}"
    )


def _analysis_rules(context: AgentContext) -> str | None:
    if context.preferences.language == "en":
        return "## RULES\n- Numbers first, then at most three recommendations. Do not emit ACTION blocks."
    return "## REGELN\n- Erst Zahlen, dann höchstens drei Empfehlungen. Keine ACTION-Blöcke ausgeben."


def _body_rules(context: AgentContext) -> str | None:
    if context.preferences.language == "en":
        return f"## RULES\n- Reported weight or circumferences → ACTION:log_body.\n\n{_BODY_EXAMPLE}"
    return f"## REGELN\n- Gemeldetes Gewicht oder Umfänge → ACTION:log_body.\n\n{_BODY_EXAMPLE}"


def _medical_rules(context: AgentContext) -> str | None:
    if context.preferences.language == "en":
        return (
            "## RULES\n"
            "- Blood pressure readings → ACTION:log_blood_pressure.\n"
            "- Red flags (chest pain, BP ≥ 180/120, fainting): tell the user to seek emergency care now.\n\n"
            f"{_BLOOD_PRESSURE_EXAMPLE}"
        )
    return (
        "## REGELN\n"
        "- Blutdruckwerte → ACTION:log_blood_pressure.\n"
        "- Warnzeichen (Brustschmerz, Blutdruck ≥ 180/120, Ohnmacht): sofort Notarzt empfehlen.\n\n"
        f"{_BLOOD_PRESSURE_EXAMPLE}"
    )


def _general_rules(context: AgentContext) -> str | None:
    if context.preferences.language == "en":
        return "## RULES\n- Keep it short. Point to the specialist topics (nutrition, training, substances, health) when useful."
    return "## REGELN\n- Kurz halten. Bei Bedarf auf die Fachthemen (Ernährung, Training, Substanzen, Gesundheit) verweisen."


# ─── Registry ─────────────────────────────────────────────────

AGENT_REGISTRY: dict[str, AgentConfig] = {
    config.domain: config
    for config in (
        AgentConfig(
            domain="nutrition",
            name="Ernährungs-Agent",
            name_en="Nutrition Agent",
            icon="🥗",
            description="Mahlzeiten, Makros, Kalorienziele, Supplements",
            knowledge=["nutrition", "supplements"],
            user_data=["profile", "nutrition_log", "known_products", "substance_protocol"],
            role_de="Du bist der Ernährungs-Agent von FitCoach: präzise, pragmatisch, mit echten Zahlen.",
            role_en="You are the FitCoach nutrition agent: precise, pragmatic, working with real numbers.",
            max_context_tokens=8000,
            rules=_nutrition_rules,
        ),
        AgentConfig(
            domain="training",
            name="Trainings-Agent",
            name_en="Training Agent",
            icon="🏋️",
            description="Trainingspläne, Übungen, Progression, Ausdauer",
            knowledge=["training", "sleep"],
            user_data=["profile", "training_log", "active_plan", "available_equipment", "substance_protocol"],
            role_de="Du bist der Trainings-Agent von FitCoach: evidenzbasiert, strukturiert, motivierend.",
            role_en="You are the FitCoach training agent: evidence-based, structured, motivating.",
            max_context_tokens=8000,
            rules=_training_rules,
        ),
        AgentConfig(
            domain="substance",
            name="Substanz-Agent",
            name_en="Substance Agent",
            icon="💉",
            description="TRT, GLP-1, Injektionen, Blutwerte, Harm Reduction",
            knowledge=["substances", "anabolics", "pct"],
            user_data=["profile", "substance_protocol", "body_progress", "blood_pressure"],
            role_de="Du bist der Substanz-Agent von FitCoach: sachlich, sicherheitsorientiert, ohne Moralpredigt.",
            role_en="You are the FitCoach substance agent: factual, safety-first, non-judgmental.",
            max_context_tokens=7000,
            rules=_substance_rules,
        ),
        AgentConfig(
            domain="analysis",
            name="Analyse-Agent",
            name_en="Analysis Agent",
            icon="📊",
            description="Trends, Fortschritt, Bilanzen über alle Bereiche",
            knowledge=["analysis"],
            user_data=["profile", "nutrition_log", "training_log", "body_progress", "substance_protocol", "blood_pressure"],
            role_de="Du bist der Analyse-Agent von FitCoach: du wertest alle Daten ganzheitlich aus.",
            role_en="You are the FitCoach analysis agent: you review all data holistically.",
            max_context_tokens=10000,
            rules=_analysis_rules,
        ),
        AgentConfig(
            domain="beauty",
            name="Beauty-Agent",
            name_en="Beauty Agent",
            icon="✨",
            description="Ästhetische Eingriffe, Lipo, Vorbereitung und Recovery",
            knowledge=["beauty"],
            user_data=["profile", "body_progress", "substance_protocol"],
            role_de="Du bist der Beauty-Agent von FitCoach: ehrlich über Nutzen, Risiken und Kosten ästhetischer Eingriffe.",
            role_en="You are the FitCoach beauty agent: honest about benefits, risks and cost of aesthetic procedures.",
            max_context_tokens=5000,
            rules=_body_rules,
        ),
        AgentConfig(
            domain="lifestyle",
            name="Lifestyle-Agent",
            name_en="Lifestyle Agent",
            icon="😎",
            description="Attraktivität, Ausstrahlung, Stil",
            knowledge=["attractiveness"],
            user_data=["profile", "body_progress"],
            role_de="Du bist der Lifestyle-Agent von FitCoach: direkt, respektvoll, praxisnah.",
            role_en="You are the FitCoach lifestyle agent: direct, respectful, practical.",
            max_context_tokens=5000,
            rules=_body_rules,
        ),
        AgentConfig(
            domain="medical",
            name="Gesundheits-Agent",
            name_en="Health Agent",
            icon="🩺",
            description="Blutwerte, Blutdruck, Symptome, Arztgespräche",
            knowledge=["medical", "sleep", "pct"],
            user_data=["profile", "blood_pressure", "substance_protocol", "body_progress"],
            role_de="Du bist der Gesundheits-Agent von FitCoach: du erklärst Werte verständlich und erkennst Warnzeichen.",
            role_en="You are the FitCoach health agent: you explain values clearly and recognize warning signs.",
            max_context_tokens=7000,
            rules=_medical_rules,
        ),
        AgentConfig(
            domain="general",
            name="FitCoach",
            name_en="FitCoach",
            icon="🤖",
            description="Begrüßung, Smalltalk, Tagesüberblick",
            knowledge=[],
            user_data=["daily_summary"],
            role_de="Du bist FitCoach, ein freundlicher Fitness- und Gesundheitsbegleiter.",
            role_en="You are FitCoach, a friendly fitness and health companion.",
            max_context_tokens=3000,
            rules=_general_rules,
        ),
    )
}


def get_agent_config(domain: str) -> AgentConfig:
    try:
        return AGENT_REGISTRY[domain]
    except KeyError:
        raise KeyError(f"No agent registered for domain '{domain}'") from None


def knowledge_ids(config: AgentConfig, training_mode: str) -> list[str]:
    """Knowledge blocks for an agent, with training-mode extensions applied."""
    ids = list(config.knowledge)
    if training_mode == "power_plus":
        ids = ["anabolics_powerplus" if block_id == "anabolics" else block_id for block_id in ids]
    if config.domain == "training" and training_mode in ("power", "power_plus") and "competition" not in ids:
        ids.append("competition")
    return ids
