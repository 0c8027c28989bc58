"""
User-data blocks — live summaries of the user's logged data.

Each block id maps to a pure function HealthSnapshot → text | None. Agents pick
the ids they need in their registry record; empty blocks are skipped.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Callable

from shared.models import HealthSnapshot


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        value = round(value, 1)
        return str(int(value)) if value.is_integer() else str(value)
    return str(value)


def age_from_birth_year(birth_year: Any, today: date | None = None) -> int | None:
    try:
        year = int(birth_year)
    except (TypeError, ValueError):
        return None
    return (today or date.today()).year - year


def latest_weight(snapshot: HealthSnapshot) -> float | None:
    for entry in snapshot.body_measurements:
        if entry.get("weight_kg") is not None:
            return float(entry["weight_kg"])
    weight = snapshot.profile.get("weight_kg")
    return float(weight) if weight is not None else None


def profile_is_complete(snapshot: HealthSnapshot) -> bool:
    """Height, birth year and a known weight are needed for every calculation."""
    profile = snapshot.profile
    return bool(profile.get("height_cm")) and bool(profile.get("birth_year")) and latest_weight(snapshot) is not None


# ─── Block builders ───────────────────────────────────────────

def profile_block(snapshot: HealthSnapshot) -> str | None:
    profile = snapshot.profile
    if not profile:
        return None
    lines = ["## PROFILE"]
    if profile.get("display_name"):
        lines.append(f"- Name: {profile['display_name']}")
    age = age_from_birth_year(profile.get("birth_year"))
    if age is not None:
        lines.append(f"- Age: {age}")
    if profile.get("gender"):
        lines.append(f"- Gender: {profile['gender']}")
    if profile.get("height_cm"):
        lines.append(f"- Height: {_fmt(profile['height_cm'])} cm")
    weight = latest_weight(snapshot)
    if weight is not None:
        lines.append(f"- Weight: {_fmt(weight)} kg")
    if profile.get("activity_level"):
        lines.append(f"- Activity level (PAL): {_fmt(profile['activity_level'])}")
    goals = [
        f"{_fmt(profile['daily_calories_goal'])} kcal" if profile.get("daily_calories_goal") else None,
        f"{_fmt(profile['daily_protein_goal'])} g protein" if profile.get("daily_protein_goal") else None,
    ]
    goals = [goal for goal in goals if goal]
    if goals:
        lines.append(f"- Daily goals: {', '.join(goals)}")
    return "\n".join(lines) if len(lines) > 1 else None


def nutrition_log_block(snapshot: HealthSnapshot) -> str | None:
    totals = snapshot.daily_totals
    if not totals and not snapshot.recent_meals:
        return None
    lines = ["## NUTRITION TODAY"]
    if totals:
        lines.append(
            f"- Totals: {_fmt(totals.get('calories', 0))} kcal | {_fmt(totals.get('protein', 0))} g P | "
            f"{_fmt(totals.get('carbs', 0))} g C | {_fmt(totals.get('fat', 0))} g F"
        )
    for meal in snapshot.recent_meals[:8]:
        lines.append(
            f"- {meal.get('date', '')} {meal.get('type', '')}: {meal.get('name', '?')} "
            f"({_fmt(meal.get('calories', '?'))} kcal, {_fmt(meal.get('protein', '?'))} g P)".replace("  ", " ")
        )
    return "\n".join(lines)


def training_log_block(snapshot: HealthSnapshot) -> str | None:
    if not snapshot.recent_workouts:
        return None
    lines = ["## RECENT WORKOUTS"]
    for workout in snapshot.recent_workouts[:6]:
        duration = f", {_fmt(workout['duration_minutes'])} min" if workout.get("duration_minutes") else ""
        lines.append(f"- {workout.get('date', '')}: {workout.get('name') or workout.get('type', 'workout')}{duration}")
    return "\n".join(lines)


def body_progress_block(snapshot: HealthSnapshot) -> str | None:
    if not snapshot.body_measurements:
        return None
    lines = ["## BODY PROGRESS"]
    for entry in snapshot.body_measurements[:5]:
        parts = [f"{_fmt(entry['weight_kg'])} kg" if entry.get("weight_kg") is not None else None]
        parts.append(f"{_fmt(entry['body_fat_pct'])} % BF" if entry.get("body_fat_pct") is not None else None)
        parts.append(f"waist {_fmt(entry['waist_cm'])} cm" if entry.get("waist_cm") is not None else None)
        lines.append(f"- {entry.get('date', '')}: {', '.join(part for part in parts if part) or 'n/a'}")
    weights = [float(entry["weight_kg"]) for entry in snapshot.body_measurements if entry.get("weight_kg") is not None]
    if len(weights) >= 2:
        lines.append(f"- Change (newest vs oldest listed): {_fmt(weights[0] - weights[-1])} kg")
    return "\n".join(lines)


def substance_protocol_block(snapshot: HealthSnapshot) -> str | None:
    active = [item for item in snapshot.substances if item.get("is_active", True)]
    if not active:
        return None
    lines = ["## ACTIVE SUBSTANCES"]
    for substance in active:
        dose = f" {substance['dosage']}{substance.get('unit') or ''}" if substance.get("dosage") else ""
        frequency = f", {substance['frequency']}" if substance.get("frequency") else ""
        lines.append(f"- {substance.get('name', '?')} ({substance.get('category', 'other')}){dose}{frequency}")
    for log in snapshot.substance_logs[:5]:
        site = f" @ {log['site']}" if log.get("site") else ""
        lines.append(f"- Last intake {log.get('date', '')}: {log.get('substance_name', '?')} {log.get('dosage_taken', '')}{site}".rstrip())
    return "\n".join(lines)


def blood_pressure_block(snapshot: HealthSnapshot) -> str | None:
    if not snapshot.blood_pressure:
        return None
    lines = ["## BLOOD PRESSURE"]
    for reading in snapshot.blood_pressure[:5]:
        pulse = f", pulse {reading['pulse']}" if reading.get("pulse") else ""
        lines.append(f"- {reading.get('date', '')} {reading.get('time', '')}: {reading.get('systolic')}/{reading.get('diastolic')} mmHg{pulse}")
    return "\n".join(lines)


def active_plan_block(snapshot: HealthSnapshot) -> str | None:
    plan = snapshot.active_plan
    if not plan:
        return None
    lines = [f"## ACTIVE PLAN: {plan.get('name', 'Plan')} ({plan.get('split_type', 'custom')}, {plan.get('days_per_week', '?')}x/week)"]
    for day in plan.get("days") or []:
        names = ", ".join(str(exercise.get("name", "?")) for exercise in day.get("exercises") or [])
        lines.append(f"- Day {day.get('day_number', '?')} {day.get('name', '')}: {names}")
    return "\n".join(lines)


def equipment_block(snapshot: HealthSnapshot) -> str | None:
    if not snapshot.equipment:
        return None
    return "## AVAILABLE EQUIPMENT\n" + ", ".join(snapshot.equipment)


def known_products_block(snapshot: HealthSnapshot) -> str | None:
    if not snapshot.known_products:
        return None
    lines = ["## KNOWN USER PRODUCTS (exact values per 100 g)"]
    for product in snapshot.known_products[:30]:
        aliases = f" ({', '.join(product['aliases'])})" if product.get("aliases") else ""
        lines.append(
            f"- {product.get('name', '?')}{aliases}: {_fmt(product.get('calories_per_100g', '?'))} kcal | "
            f"{_fmt(product.get('protein_per_100g', '?'))} g P | {_fmt(product.get('carbs_per_100g', '?'))} g C | "
            f"{_fmt(product.get('fat_per_100g', '?'))} g F"
        )
    return "\n".join(lines)


def daily_summary_block(snapshot: HealthSnapshot) -> str | None:
    totals = snapshot.daily_totals
    goal = snapshot.profile.get("daily_calories_goal")
    parts: list[str] = []
    if totals:
        consumed = f"{_fmt(totals.get('calories', 0))} kcal"
        parts.append(f"eaten {consumed}" + (f" of {_fmt(goal)}" if goal else ""))
    if snapshot.recent_workouts:
        parts.append(f"last workout {snapshot.recent_workouts[0].get('date', '?')}")
    weight = latest_weight(snapshot)
    if weight is not None:
        parts.append(f"weight {_fmt(weight)} kg")
    if not parts:
        return None
    return "## TODAY\n- " + "; ".join(parts)


USER_DATA_BLOCKS: dict[str, Callable[[HealthSnapshot], str | None]] = {
    "profile": profile_block,
    "nutrition_log": nutrition_log_block,
    "training_log": training_log_block,
    "body_progress": body_progress_block,
    "substance_protocol": substance_protocol_block,
    "blood_pressure": blood_pressure_block,
    "active_plan": active_plan_block,
    "available_equipment": equipment_block,
    "known_products": known_products_block,
    "daily_summary": daily_summary_block,
}


def render_user_data(snapshot: HealthSnapshot, block_ids: list[str]) -> str | None:
    """Concatenate the non-empty blocks in the requested order."""
    sections = [USER_DATA_BLOCKS[block_id](snapshot) for block_id in block_ids]
    rendered = [section for section in sections if section]
    return "\n\n".join(rendered) if rendered else None
