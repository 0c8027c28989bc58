from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from actions.parser import extract_all
from actions.schemas import validate_directive
from domains.handler import AgentRunner
from domains.instructions import build_instruction, build_messages, communication_style_block
from domains.registry import AGENT_REGISTRY, get_agent_config, knowledge_ids
from shared.models import (
    DOMAINS,
    AgentContext,
    CommunicationStyle,
    GenerationResult,
    HealthSnapshot,
    ModelPolicy,
    UserPreferences,
)

NOW = datetime(2026, 3, 10, 9, 30)

COMPLETE = HealthSnapshot(
    profile={"height_cm": 183, "birth_year": 1981, "daily_calories_goal": 2400},
    body_measurements=[{"weight_kg": 84.5}],
)


def _context(snapshot: HealthSnapshot = COMPLETE, **prefs) -> AgentContext:
    return AgentContext(preferences=UserPreferences(**prefs), snapshot=snapshot, now=NOW)


def test_every_domain_has_an_agent():
    assert set(AGENT_REGISTRY) == set(DOMAINS)
    for domain in DOMAINS:
        config = get_agent_config(domain)
        assert config.domain == domain
        assert config.rules is not None
    with pytest.raises(KeyError):
        get_agent_config("astrology")


def test_power_plus_swaps_harm_reduction_knowledge():
    substance = get_agent_config("substance")
    assert knowledge_ids(substance, "standard") == ["substances", "anabolics", "pct"]
    assert knowledge_ids(substance, "power_plus") == ["substances", "anabolics_powerplus", "pct"]
    assert knowledge_ids(get_agent_config("training"), "power")[-1] == "competition"
    assert "competition" not in knowledge_ids(get_agent_config("nutrition"), "power")


def test_onboarding_comes_first_for_incomplete_profile():
    instruction = build_instruction(get_agent_config("general"), _context(HealthSnapshot()))
    assert instruction.startswith("## ONBOARDING-MODUS (AKTIV)")
    assert "ACTION:update_profile" in instruction

    complete = build_instruction(get_agent_config("general"), _context())
    assert complete.startswith("## GRUNDREGELN")
    assert "ONBOARDING" not in complete


def test_sections_follow_fixed_order():
    instruction = build_instruction(
        get_agent_config("nutrition"),
        AgentContext(
            preferences=UserPreferences(training_mode="power", communication_style=CommunicationStyle(verbosity="short")),
            snapshot=COMPLETE.model_copy(update={"daily_totals": {"calories": 500, "protein": 20}}),
            session_notes=["Recherche-Ergebnis: Skyr"],
            now=datetime(2026, 3, 10, 19, 0),
        ),
    )
    markers = [
        "## GRUNDREGELN",
        "Du bist der Ernährungs-Agent",
        "## TRAININGSMODUS: POWER",
        "## KOMMUNIKATIONSSTIL",
        "## Nutrition fundamentals (v2.1.0)",
        "## Supplements (v1.2.0)",
        "## PROFILE",
        "## REGELN",
        "## ⚠️ AKTUELLE HINWEISE",
        "## SITZUNGSNOTIZEN",
    ]
    positions = [instruction.index(marker) for marker in markers]
    assert positions == sorted(positions)
    assert "Heute ist 2026-03-10, aktuelle Uhrzeit 19:00." in instruction


def test_english_instruction_uses_english_sections():
    instruction = build_instruction(get_agent_config("substance"), _context(language="en", training_mode="power_plus"))
    assert instruction.startswith("## GROUND RULES")
    assert "## TRAINING MODE: POWER+" in instruction
    assert "## Harm reduction: anabolics (Power+ mode) (v2.0.0)" in instruction
    assert "You are the FitCoach substance agent" in instruction


def test_communication_style_block():
    assert communication_style_block(None, "de") is None
    assert communication_style_block(CommunicationStyle(), "de") is None
    block = communication_style_block(CommunicationStyle(expertise="expert", tone="direct"), "en")
    assert block == "## COMMUNICATION STYLE\n- Technical language is welcome.\n- Be direct, no small talk."


def test_build_messages_keeps_last_turns():
    history = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"t{i}"} for i in range(12)]
    context = _context().model_copy(update={"history": history})
    messages = build_messages(get_agent_config("training"), context, history_turns=4)
    assert messages[0]["role"] == "system"
    assert [m["content"] for m in messages[1:]] == ["t8", "t9", "t10", "t11"]
    assert len(build_messages(get_agent_config("training"), context, history_turns=0)) == 1


@pytest.mark.parametrize(
    "domain, expected",
    [
        ("nutrition", ["log_meal", "save_product"]),
        ("training", ["log_workout", "save_training_plan", "update_equipment"]),
        ("substance", ["log_substance", "add_substance", "add_reminder", "log_blood_pressure"]),
        ("medical", ["log_blood_pressure"]),
        ("beauty", ["log_body"]),
        ("lifestyle", ["log_body"]),
        ("analysis", []),
    ],
)
@pytest.mark.parametrize("language", ["de", "en"])
def test_rules_carry_valid_payload_examples(domain, expected, language):
    rules = get_agent_config(domain).rules(_context(language=language))
    examples = extract_all(rules)
    assert [directive.type for directive in examples] == expected
    for directive in examples:
        outcome = validate_directive(directive.type, directive.payload)
        assert outcome.ok, (directive.type, outcome.errors)


def test_meal_example_names_meal_types():
    rules = get_agent_config("nutrition").rules(_context())
    assert "breakfast, lunch, dinner oder snack" in rules
    meal = extract_all(rules)[0]
    assert meal.payload["type"] == "breakfast"
    reminder = next(d for d in extract_all(get_agent_config("substance").rules(_context())) if d.type == "add_reminder")
    assert validate_directive("add_reminder", reminder.payload).payload["interval_days"] == 7


class _FakeSelector:
    def __init__(self):
        self.calls: list[dict] = []

    async def generate(self, messages, policy, session_id=None):
        self.calls.append({"mode": "generate", "messages": messages})
        return GenerationResult(content="  Antwort  ", tokens_used=33, model="llama3.1:8b")

    async def stream(self, messages, policy, on_chunk=None, session_id=None):
        self.calls.append({"mode": "stream", "messages": messages})
        if on_chunk is not None:
            on_chunk("Ant")
            on_chunk("Antwort")
        return GenerationResult(content="Antwort", tokens_used=21, model="")


def test_agent_runner_attributes_results():
    async def _run() -> None:
        selector = _FakeSelector()
        runner = AgentRunner(selector, ModelPolicy(model_name="default-model"))
        context = _context(language="en", training_mode="power_plus")

        result = await runner.execute("substance", context)
        assert result.content == "Antwort"
        assert result.agent_name == "Substance Agent"
        assert result.agent_icon == "💉"
        assert result.knowledge_versions == {"substances": "1.3.0", "anabolics_powerplus": "2.0.0", "pct": "1.0.0"}
        assert result.model == "llama3.1:8b"

        chunks: list[str] = []
        streamed = await runner.execute_stream("training", _context(), on_chunk=chunks.append)
        assert chunks == ["Ant", "Antwort"]
        assert streamed.agent_name == "Trainings-Agent"
        assert streamed.model == "default-model"
        assert streamed.tokens_used == 21
        assert selector.calls[1]["messages"][0]["role"] == "system"

    asyncio.run(_run())
