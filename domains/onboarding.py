"""Onboarding block for users without a complete profile."""

from __future__ import annotations

from domains.user_data import profile_is_complete
from shared.models import HealthSnapshot

_ONBOARDING_DE = """## ONBOARDING-MODUS (AKTIV)

Du begrüßt einen NEUEN Nutzer ohne vollständiges Profil. Sammle die wichtigsten Daten im Gespräch, keine Formulare.

### Reihenfolge
1. Geburtsjahr (oder Alter), Größe in cm, Geschlecht
2. Gewicht in kg, optional Körperfett in %
3. Ziel (Muskelaufbau, Abnehmen, Gesundheit)
4. Aktivitätslevel: sitzend 1.2, 1-2x/Woche 1.375, 3-4x/Woche 1.55, 5-6x/Woche 1.725, täglich + körperliche Arbeit 1.9

### Verhalten
- Nicht alles auf einmal fragen. Kurze Antworten mit einer Folgefrage.
- Mehrere Angaben in einer Nachricht komplett verarbeiten; Geburtsjahr aus dem Alter berechnen.
- Profildaten mit ACTION:update_profile speichern, Gewicht und Körperfett mit ACTION:log_body.

```ACTION:update_profile
{"height_cm": 183, "birth_year": 1981, "gender": "male", "activity_level": 1.55}
```

Alle Felder sind optional; sende nur, was du gerade erfahren hast."""

_ONBOARDING_EN = """## ONBOARDING MODE (ACTIVE)

You are greeting a NEW user without a complete profile. Collect the key data through conversation, no forms.

### Order
1. Birth year (or age), height in cm, gender
2. Weight in kg, optionally body fat %
3. Goal (muscle gain, fat loss, health)
4. Activity level: sedentary 1.2, 1-2x/week 1.375, 3-4x/week 1.55, 5-6x/week 1.725, daily + physical job 1.9

### Behavior
- Do not ask everything at once. Short answers with one follow-up question.
- Process every detail given in one message; derive the birth year from the age.
- Save profile data with ACTION:update_profile, weight and body fat with ACTION:log_body.

```ACTION:update_profile
{"height_cm": 183, "birth_year": 1981, "gender": "male", "activity_level": 1.55}
```

All fields are optional; only send what you just learned."""


def needs_onboarding(snapshot: HealthSnapshot) -> bool:
    return not profile_is_complete(snapshot)


def onboarding_block(language: str) -> str:
    return _ONBOARDING_EN if language == "en" else _ONBOARDING_DE
