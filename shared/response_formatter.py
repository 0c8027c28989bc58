from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from shared.models import AgentResult, Directive

MERGE_SEPARATOR = "\n\n---\n\n"


class ActionDisplay(BaseModel):
    model_config = {"frozen": True}

    icon: str
    title: str
    summary: str


def _num(value: Any) -> str:
    if isinstance(value, float):
        value = round(value, 1)
        if value.is_integer():
            return str(int(value))
    if value is None:
        return "?"
    return str(value)


def _join(parts: list[str | None], fallback: str) -> str:
    return ", ".join(part for part in parts if part) or fallback


_TITLES = {
    "log_meal": ("🍽️", "Mahlzeit speichern?", "Save meal?"),
    "log_workout": ("💪", "Training speichern?", "Save workout?"),
    "log_body": ("⚖️", "Körperwerte speichern?", "Save body measurements?"),
    "log_blood_pressure": ("❤️", "Blutdruck speichern?", "Save blood pressure?"),
    "log_substance": ("💊", "Einnahme loggen?", "Log intake?"),
    "save_training_plan": ("📋", "Trainingsplan speichern?", "Save training plan?"),
    "save_product": ("📦", "Produkt speichern?", "Save product?"),
    "add_substance": ("💊", "Substanz anlegen?", "Add substance?"),
    "add_reminder": ("🔔", "Erinnerung anlegen?", "Create reminder?"),
    "update_profile": ("👤", "Profil aktualisieren?", "Update profile?"),
    "update_equipment": ("🏋️", "Gerätepark aktualisieren?", "Update equipment?"),
    "search_product": ("🔎", "Produkt suchen", "Search product"),
}


def describe_action(directive: Directive, language: str = "de") -> ActionDisplay:
    """Icon, confirmation title and one-line summary for a directive."""
    d = directive.payload
    en = language == "en"
    icon, title_de, title_en = _TITLES.get(directive.type, ("⚙️", "Aktion ausführen?", "Run action?"))

    if directive.type == "log_meal":
        summary = f"{d.get('name', 'Meal' if en else 'Mahlzeit')} | {_num(d.get('calories'))} kcal | {_num(d.get('protein'))}g P"
    elif directive.type == "log_workout":
        summary = d.get("name") or "Workout"
        if d.get("duration_minutes"):
            summary += f" | {_num(d['duration_minutes'])} min"
    elif directive.type == "log_body":
        summary = _join(
            [
                f"{_num(d['weight_kg'])} kg" if d.get("weight_kg") else None,
                f"{_num(d['body_fat_pct'])}% {'BF' if en else 'KFA'}" if d.get("body_fat_pct") else None,
                f"{_num(d['waist_cm'])} cm {'waist' if en else 'Bauch'}" if d.get("waist_cm") else None,
            ],
            "Body measurement" if en else "Körpermessung",
        )
    elif directive.type == "log_blood_pressure":
        summary = f"{_num(d.get('systolic'))}/{_num(d.get('diastolic'))} mmHg"
        if d.get("pulse"):
            summary += f" | {'Pulse' if en else 'Puls'} {_num(d['pulse'])}"
    elif directive.type == "log_substance":
        summary = str(d.get("substance_name", "Substance" if en else "Substanz"))
        if d.get("dosage_taken"):
            summary += f" | {d['dosage_taken']}{d.get('unit') or ''}"
    elif directive.type == "save_training_plan":
        summary = f"{d.get('name', 'Plan')} | {len(d.get('days') or [])} {'days' if en else 'Tage'}"
    elif directive.type == "save_product":
        summary = f"{d.get('name', 'Product' if en else 'Produkt')} | {_num(d.get('serving_size_g'))}g | {_num(d.get('calories_per_100g'))} kcal/100g"
    elif directive.type == "add_substance":
        summary = str(d.get("name", "Substance" if en else "Substanz"))
        if d.get("dosage"):
            summary += f" | {d['dosage']}{d.get('unit') or ''}"
        summary += f" ({d.get('category', 'other')})"
    elif directive.type == "add_reminder":
        summary = str(d.get("title", "Reminder" if en else "Erinnerung"))
        if d.get("time"):
            summary += f" | {d['time']}"
        elif d.get("time_period"):
            summary += f" | {d['time_period']}"
        if d.get("repeat_mode") == "interval" and d.get("interval_days"):
            summary += f" | {'every' if en else 'alle'} {d['interval_days']} {'days' if en else 'Tage'}"
    elif directive.type == "update_profile":
        summary = _join(
            [
                f"{_num(d['height_cm'])} cm" if d.get("height_cm") else None,
                f"{'born' if en else 'Jg.'} {d['birth_year']}" if d.get("birth_year") else None,
                str(d["gender"]) if d.get("gender") else None,
                f"PAL {_num(d['activity_level'])}" if d.get("activity_level") else None,
                f"{d['daily_calories_goal']} kcal" if d.get("daily_calories_goal") else None,
            ],
            "Profile update" if en else "Profil-Update",
        )
    elif directive.type == "update_equipment":
        summary = f"{len(d.get('equipment_names') or [])} {'items' if en else 'Geräte'} ({d.get('mode', 'add')})"
    else:
        summary = str(d.get("query", ""))

    return ActionDisplay(icon=icon, title=title_en if en else title_de, summary=summary)


def format_merged_response(primary: AgentResult, secondary: list[AgentResult]) -> str:
    """Primary content followed by each secondary agent under its own attribution."""
    if not secondary:
        return primary.content
    sections = [primary.content.strip()]
    for result in secondary:
        header = f"{result.agent_icon} **{result.agent_name}**".strip()
        sections.append(f"{header}\n\n{result.content.strip()}")
    return MERGE_SEPARATOR.join(sections)
