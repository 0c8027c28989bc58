"""
Deviation detection — anomalies in the user's data that agents react to proactively.

Responsibility:
- Evaluate check-in, daily totals, blood pressure, workouts and blood work against thresholds
- Return deviations ordered by priority (1 = highest)
- Render the alert block for one agent

Prohibitions:
- No persistence
- No model calls
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel

from shared.models import HealthSnapshot

DeviationType = Literal["warning", "info", "suggestion"]

DEFAULT_CALORIE_GOAL = 2000
DEFAULT_PROTEIN_GOAL = 150


class Deviation(BaseModel):
    model_config = {"frozen": True}

    type: DeviationType
    domain: str
    message: str
    message_en: str
    priority: int = 3
    icon: str = "⚠️"


def _parse_date(value: object) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _checkin_deviations(checkin: dict, has_plan: bool) -> list[Deviation]:
    found: list[Deviation] = []
    if checkin.get("illness"):
        found.append(Deviation(
            type="warning", domain="training", priority=1, icon="🤒",
            message="User meldet Krankheit: Training pausieren, Erholung priorisieren",
            message_en="User reports illness: pause training, prioritize recovery",
        ))
        found.append(Deviation(
            type="info", domain="nutrition", priority=2, icon="🤒",
            message="User ist krank: leicht verdauliche, nährende Kost empfehlen",
            message_en="User is sick: recommend easily digestible, nourishing food",
        ))
    energy = checkin.get("energy_level")
    if energy is not None and energy <= 2 and has_plan:
        found.append(Deviation(
            type="suggestion", domain="training", priority=2, icon="😴",
            message=f"Energielevel niedrig ({energy}/5): Intensität reduzieren oder Ruhetag empfehlen",
            message_en=f"Low energy ({energy}/5): reduce intensity or suggest a rest day",
        ))
    sleep = checkin.get("sleep_quality")
    if sleep is not None and sleep <= 2:
        found.append(Deviation(
            type="info", domain="training", priority=3, icon="🛌",
            message=f"Schlafqualität schlecht ({sleep}/5): Regeneration beeinträchtigt, Volumen ggf. reduzieren",
            message_en=f"Poor sleep quality ({sleep}/5): recovery impaired, consider lower volume",
        ))
    stress = checkin.get("stress_level")
    if stress is not None and stress >= 4:
        found.append(Deviation(
            type="info", domain="training", priority=3, icon="😰",
            message=f"Hoher Stress ({stress}/5): leichteres Training oder Deload empfehlen",
            message_en=f"High stress ({stress}/5): recommend lighter training or a deload",
        ))
    pain_areas = checkin.get("pain_areas") or []
    if pain_areas:
        areas = ", ".join(pain_areas)
        found.append(Deviation(
            type="warning", domain="training", priority=2, icon="🩹",
            message=f"Schmerzen gemeldet: {areas}. Betroffene Bereiche schonen",
            message_en=f"Pain reported: {areas}. Spare the affected areas",
        ))
        found.append(Deviation(
            type="info", domain="medical", priority=3, icon="🩹",
            message=f"Schmerzen: {areas}. Bei anhaltenden Schmerzen Arzt empfehlen",
            message_en=f"Pain: {areas}. Recommend a doctor if it persists",
        ))
    return found


def _nutrition_deviations(snapshot: HealthSnapshot, hour: int) -> list[Deviation]:
    totals = snapshot.daily_totals
    if not totals:
        return []
    calories = float(totals.get("calories") or 0)
    protein = float(totals.get("protein") or 0)
    calorie_goal = float(snapshot.profile.get("daily_calories_goal") or DEFAULT_CALORIE_GOAL)
    protein_goal = float(snapshot.profile.get("daily_protein_goal") or DEFAULT_PROTEIN_GOAL)
    found: list[Deviation] = []

    if hour >= 14 and calories < calorie_goal * 0.5:
        pct = round(calories / calorie_goal * 100)
        found.append(Deviation(
            type="suggestion", domain="nutrition", priority=3, icon="🍽️",
            message=f"Kalorienaufnahme nur {calories:.0f}/{calorie_goal:.0f} kcal ({pct}%) um {hour} Uhr: nachfragen ob alles OK",
            message_en=f"Calorie intake only {calories:.0f}/{calorie_goal:.0f} kcal ({pct}%) at {hour}:00: check in with the user",
        ))
    if hour >= 18 and 0 < calories < 1200:
        found.append(Deviation(
            type="warning", domain="nutrition", priority=2, icon="⚠️",
            message=f"Kalorienaufnahme kritisch niedrig: nur {calories:.0f} kcal, unter 1200 kcal erhöhtes RED-S-Risiko",
            message_en=f"Calorie intake critically low: only {calories:.0f} kcal, below 1200 kcal raises RED-S risk",
        ))
    if hour >= 18 and calories > 0 and calorie_goal - calories > 1000:
        found.append(Deviation(
            type="warning", domain="nutrition", priority=2, icon="📉",
            message=f"Kaloriendefizit über 1000 kcal: {calorie_goal - calories:.0f} kcal Defizit",
            message_en=f"Calorie deficit above 1000 kcal: {calorie_goal - calories:.0f} kcal",
        ))
    if calories > calorie_goal * 0.7 and protein < protein_goal * 0.6:
        found.append(Deviation(
            type="warning", domain="nutrition", priority=3, icon="🥩",
            message=f"Protein zu niedrig: {protein:.0f} g / {protein_goal:.0f} g bei {round(calories / calorie_goal * 100)}% Kalorien",
            message_en=f"Protein too low: {protein:.0f} g / {protein_goal:.0f} g at {round(calories / calorie_goal * 100)}% of calories",
        ))
    return found


def _blood_pressure_deviations(snapshot: HealthSnapshot) -> list[Deviation]:
    if not snapshot.blood_pressure:
        return []
    latest = snapshot.blood_pressure[0]
    systolic = int(latest.get("systolic") or 0)
    diastolic = int(latest.get("diastolic") or 0)
    reading = f"{systolic}/{diastolic}"
    if systolic >= 180 or diastolic >= 120:
        return [Deviation(
            type="warning", domain="medical", priority=1, icon="🚨",
            message=f"BLUTDRUCK KRITISCH: {reading} mmHg, sofort Arzt/Notarzt!",
            message_en=f"BLOOD PRESSURE CRITICAL: {reading} mmHg, seek emergency care now!",
        )]
    if systolic >= 160 or diastolic >= 100:
        return [
            Deviation(
                type="warning", domain="medical", priority=2, icon="❤️",
                message=f"Blutdruck erhöht: {reading} mmHg. Arzt konsultieren, kein schweres Training",
                message_en=f"Blood pressure elevated: {reading} mmHg. See a doctor, no heavy training",
            ),
            Deviation(
                type="warning", domain="training", priority=2, icon="❤️",
                message=f"Blutdruck {reading}: kein schweres Pressen, Valsalva vermeiden",
                message_en=f"Blood pressure {reading}: no heavy straining, avoid Valsalva",
            ),
        ]
    if systolic >= 130 or diastolic >= 85:
        return [Deviation(
            type="info", domain="medical", priority=4, icon="❤️",
            message=f"Blutdruck hochnormal: {reading} mmHg. Regelmäßig messen",
            message_en=f"Blood pressure high-normal: {reading} mmHg. Measure regularly",
        )]
    return []


def _training_deviations(snapshot: HealthSnapshot, today: date) -> list[Deviation]:
    dates = [d for d in (_parse_date(w.get("date")) for w in snapshot.recent_workouts) if d is not None]
    if not dates:
        return []
    found: list[Deviation] = []
    days_since = (today - max(dates)).days
    if days_since > 3 and not snapshot.checkin.get("illness"):
        found.append(Deviation(
            type="suggestion", domain="training", priority=4, icon="💪",
            message=f"Letztes Training vor {days_since} Tagen: sanfter Hinweis auf den Trainingsplan",
            message_en=f"Last training {days_since} days ago: gentle reminder about the training plan",
        ))
    last_week = sum(1 for d in dates if (today - d).days < 7)
    if last_week >= 7:
        found.append(Deviation(
            type="warning", domain="training", priority=2, icon="🔥",
            message=f"Übertrainings-Risiko: {last_week} Einheiten in 7 Tagen. Ruhetag oder Deload empfehlen",
            message_en=f"Overtraining risk: {last_week} sessions in 7 days. Recommend a rest day or deload",
        ))
    return found


def _blood_work_deviations(blood_work: dict) -> list[Deviation]:
    found: list[Deviation] = []
    hematocrit = blood_work.get("hematocrit")
    if hematocrit is not None and hematocrit >= 54:
        found.append(Deviation(
            type="warning", domain="medical", priority=1, icon="🩸",
            message=f"Hämatokrit GEFÄHRLICH: {hematocrit}% (>=54%). Arzt aufsuchen!",
            message_en=f"Hematocrit DANGEROUS: {hematocrit}% (>=54%). See a doctor!",
        ))
    elif hematocrit is not None and hematocrit >= 52:
        found.append(Deviation(
            type="warning", domain="medical", priority=2, icon="🩸",
            message=f"Hämatokrit erhöht: {hematocrit}% (>=52%). Regelmäßig kontrollieren",
            message_en=f"Hematocrit elevated: {hematocrit}% (>=52%). Monitor regularly",
        ))
    hdl = blood_work.get("hdl")
    if hdl is not None and hdl < 40:
        found.append(Deviation(
            type="warning" if hdl < 25 else "info", domain="medical", priority=1 if hdl < 25 else 3, icon="🫀",
            message=f"HDL niedrig: {hdl} mg/dL (Ziel > 40)",
            message_en=f"HDL low: {hdl} mg/dL (target > 40)",
        ))
    alt = blood_work.get("alt")
    if alt is not None and alt > 150:
        found.append(Deviation(
            type="warning", domain="medical", priority=1, icon="🔬",
            message=f"Leberwert ALT stark erhöht: {alt} U/L (>150). Arzt konsultieren",
            message_en=f"Liver ALT severely elevated: {alt} U/L (>150). Consult a doctor",
        ))
    return found


def analyze_deviations(snapshot: HealthSnapshot, now: datetime | None = None) -> list[Deviation]:
    now = now or datetime.now()
    found: list[Deviation] = []
    found.extend(_checkin_deviations(snapshot.checkin, has_plan=bool(snapshot.active_plan)))
    found.extend(_nutrition_deviations(snapshot, now.hour))
    found.extend(_blood_pressure_deviations(snapshot))
    found.extend(_training_deviations(snapshot, now.date()))
    found.extend(_blood_work_deviations(snapshot.blood_work))
    return sorted(found, key=lambda deviation: deviation.priority)


_TYPE_LABELS = {
    "warning": ("⚠️ WARNUNG", "⚠️ WARNING"),
    "info": ("ℹ️ INFO", "ℹ️ INFO"),
    "suggestion": ("💡 TIPP", "💡 TIP"),
}


def format_deviations(deviations: list[Deviation], domain: str, language: str = "de") -> str | None:
    """Alert block for one agent; general-domain deviations reach every agent."""
    relevant = [d for d in deviations if d.domain in (domain, "general")]
    if not relevant:
        return None
    en = language == "en"
    lines = [
        "## ⚠️ CURRENT ALERTS (automatically detected)" if en else "## ⚠️ AKTUELLE HINWEISE (automatisch erkannt)",
        "> React proactively to these deviations in your response." if en
        else "> Reagiere proaktiv auf diese Abweichungen in deiner Antwort.",
        "",
    ]
    for deviation in relevant:
        label = _TYPE_LABELS[deviation.type][1 if en else 0]
        lines.append(f"- {label}: {deviation.icon} {deviation.message_en if en else deviation.message}")
    return "\n".join(lines)
