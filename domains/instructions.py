"""
Instruction assembly — turns an agent record plus the turn context into provider input.

Responsibility:
- Build the system instruction in a fixed order
- Append the most recent conversation turns

Prohibitions:
- No model calls
- No persistence
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from domains.deviations import analyze_deviations, format_deviations
from domains.knowledge import knowledge_for
from domains.onboarding import needs_onboarding, onboarding_block
from domains.registry import AgentConfig, knowledge_ids
from domains.user_data import render_user_data
from shared.models import AgentContext, CommunicationStyle

SECTION_SEPARATOR = "\n\n"

_GROUND_RULES_DE = """## GRUNDREGELN
- Antworte auf Deutsch, in Markdown, ohne Floskeln.
- Du ersetzt keinen Arzt. Bei Warnzeichen klar an medizinische Hilfe verweisen.
- Wenn Daten gespeichert werden sollen, hänge genau einen Block pro Aktion an:
```ACTION:<typ>
{ ...JSON... }
```
- Der Nutzer bestätigt jede Aktion selbst. Behaupte nie, etwas sei schon gespeichert.
- Heute ist {today}, aktuelle Uhrzeit {time}."""

_GROUND_RULES_EN = """## GROUND RULES
- Answer in English, in Markdown, without filler.
- You do not replace a doctor. On warning signs, point clearly to medical help.
- When data should be saved, append exactly one block per action:
```ACTION:<type>
{ ...JSON... }
```
- The user confirms every action. Never claim something is already saved.
- Today is {today}, current time {time}."""

_TRAINING_MODES = {
    "standard": (
        None,
        None,
    ),
    "power": (
        "## TRAININGSMODUS: POWER\nAmbitionierter Kraftsportler. Wettkampfvorbereitung und höhere Volumina sind Thema.",
        "## TRAINING MODE: POWER\nAmbitious strength athlete. Competition prep and higher volumes are on the table.",
    ),
    "power_plus": (
        "## TRAININGSMODUS: POWER+\nDer Nutzer nutzt leistungssteigernde Substanzen. Harm Reduction, sachlich und ohne Wertung.",
        "## TRAINING MODE: POWER+\nThe user runs performance-enhancing substances. Harm reduction, factual and non-judgmental.",
    ),
}

_VERBOSITY = {
    "short": ("Antworte knapp, höchstens 3-4 Sätze.", "Keep answers short, at most 3-4 sentences."),
    "normal": (None, None),
    "detailed": ("Antworte ausführlich mit Begründungen.", "Answer in detail and explain your reasoning."),
}
_EXPERTISE = {
    "beginner": ("Erkläre Fachbegriffe einfach.", "Explain technical terms simply."),
    "intermediate": (None, None),
    "expert": ("Fachsprache ist erwünscht.", "Technical language is welcome."),
}
_TONE = {
    "friendly": (None, None),
    "motivating": ("Sei motivierend und energisch.", "Be motivating and energetic."),
    "direct": ("Sei direkt, ohne Smalltalk.", "Be direct, no small talk."),
    "scientific": ("Sei wissenschaftlich und zitiere Evidenz.", "Be scientific and cite evidence."),
}


def _pick(table: dict[str, tuple[str | None, str | None]], key: str, en: bool) -> str | None:
    de_text, en_text = table.get(key, (None, None))
    return en_text if en else de_text


def ground_rules(language: str, now: datetime) -> str:
    template = _GROUND_RULES_EN if language == "en" else _GROUND_RULES_DE
    return template.replace("{today}", now.date().isoformat()).replace("{time}", now.strftime("%H:%M"))


def communication_style_block(style: CommunicationStyle | None, language: str) -> str | None:
    if style is None:
        return None
    en = language == "en"
    hints = [
        _pick(_VERBOSITY, style.verbosity, en),
        _pick(_EXPERTISE, style.expertise, en),
        _pick(_TONE, style.tone or "", en),
    ]
    hints = [hint for hint in hints if hint]
    if not hints:
        return None
    header = "## COMMUNICATION STYLE" if en else "## KOMMUNIKATIONSSTIL"
    return header + "\n" + "\n".join(f"- {hint}" for hint in hints)


def session_notes_block(notes: list[str], language: str) -> str | None:
    if not notes:
        return None
    header = "## SESSION NOTES" if language == "en" else "## SITZUNGSNOTIZEN"
    return header + "\n" + "\n".join(f"- {note}" for note in notes)


def build_instruction(config: AgentConfig, context: AgentContext) -> str:
    prefs = context.preferences
    language = prefs.language
    now = context.now or datetime.now()

    sections: list[str | None] = []
    if needs_onboarding(context.snapshot):
        sections.append(onboarding_block(language))
    sections.append(ground_rules(language, now))
    sections.append(config.role_header(language))
    sections.append(_pick(_TRAINING_MODES, prefs.training_mode, language == "en"))
    sections.append(communication_style_block(prefs.communication_style, language))
    sections.extend(block.render() for block in knowledge_for(knowledge_ids(config, prefs.training_mode)))
    sections.append(render_user_data(context.snapshot, config.user_data))
    if config.rules is not None:
        sections.append(config.rules(context))
    sections.append(format_deviations(analyze_deviations(context.snapshot, now), config.domain, language))
    sections.append(session_notes_block(context.session_notes, language))
    return SECTION_SEPARATOR.join(section for section in sections if section)


def build_messages(config: AgentConfig, context: AgentContext, history_turns: int = 8) -> list[dict[str, Any]]:
    """System instruction followed by the last `history_turns` conversation turns."""
    recent = context.history[-history_turns:] if history_turns > 0 else []
    messages: list[dict[str, Any]] = [{"role": "system", "content": build_instruction(config, context)}]
    messages.extend({"role": turn["role"], "content": turn["content"]} for turn in recent)
    return messages
