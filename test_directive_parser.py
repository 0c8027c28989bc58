from __future__ import annotations

from actions.parser import extract_all, extract_first, has_directive, strip

SKYR_REPLY = """Skyr ist eine super Proteinquelle!

```ACTION:log_meal
{"name": "Skyr", "type": "snack", "calories": 130, "protein": 22, "carbs": 8, "fat": 0.4}
```
"""

TWO_BLOCKS = """Eingetragen:

```ACTION:log_body
{"weight_kg": 84.2}
```

Und dein Blutdruck:

```ACTION:log_blood_pressure
{"systolic": 128, "diastolic": 82, "time": "07:30"}
```
"""


def test_extract_first_parses_meal_block():
    directive = extract_first(SKYR_REPLY)
    assert directive is not None
    assert directive.type == "log_meal"
    assert directive.payload["name"] == "Skyr"
    assert directive.payload["calories"] == 130
    assert directive.payload["source"] == "ai"
    assert directive.raw.startswith("```ACTION:log_meal")


def test_extract_all_keeps_document_order():
    directives = extract_all(TWO_BLOCKS)
    assert [d.type for d in directives] == ["log_body", "log_blood_pressure"]
    assert directives[1].payload["systolic"] == 128


def test_type_keyword_is_case_insensitive():
    text = '```action:LOG_BODY\n{"weight_kg": 80}\n```'
    directive = extract_first(text)
    assert directive is not None
    assert directive.type == "log_body"


def test_malformed_json_is_dropped_without_raising():
    text = '```ACTION:log_meal\n{"name": "Skyr", calories: 130}\n```\n' + TWO_BLOCKS
    directives = extract_all(text)
    assert [d.type for d in directives] == ["log_body", "log_blood_pressure"]


def test_invalid_payload_is_dropped():
    text = '```ACTION:log_blood_pressure\n{"systolic": 80, "diastolic": 120}\n```'
    assert extract_all(text) == []
    assert extract_first(text) is None


def test_unknown_type_is_skipped():
    text = '```ACTION:delete_everything\n{"really": true}\n```'
    assert extract_all(text) == []


def test_extract_first_skips_invalid_leading_block():
    text = '```ACTION:log_body\n{}\n```\n```ACTION:log_body\n{"waist_cm": 90}\n```'
    directive = extract_first(text)
    assert directive is not None
    assert directive.payload["waist_cm"] == 90


def test_strip_removes_blocks_and_trims():
    assert strip(SKYR_REPLY) == "Skyr ist eine super Proteinquelle!"
    assert "ACTION" not in strip(TWO_BLOCKS)
    assert strip(TWO_BLOCKS).endswith("Und dein Blutdruck:")


def test_strip_first_only_keeps_later_blocks():
    stripped = strip(TWO_BLOCKS, first_only=True)
    assert "ACTION:log_body" not in stripped
    assert "ACTION:log_blood_pressure" in stripped


def test_empty_and_none_input():
    assert extract_all("") == []
    assert extract_first(None) is None
    assert strip(None) == ""
    assert has_directive("") is False


def test_has_directive_filters_by_type():
    assert has_directive(TWO_BLOCKS)
    assert has_directive(TWO_BLOCKS, "log_blood_pressure")
    assert not has_directive(TWO_BLOCKS, "log_meal")


def test_skyr_and_oranges_reply_becomes_one_meal_action():
    from datetime import date

    from actions.lifecycle import ActionLifecycleController
    from intent.router import IntentRouter
    from shared.settings import RouterSettings

    text = "500g Skyr und 2 Orangen"
    assert IntentRouter(RouterSettings()).classify(text).domain == "nutrition"

    reply = (
        "Starker Snack mit viel Protein!\n\n"
        "```ACTION:log_meal\n"
        '{"name":"500g Skyr mit 2 Orangen","type":"snack","calories":430,"protein":52,"carbs":58,"fat":2}\n'
        "```"
    )
    (action,) = ActionLifecycleController(executor=None).register("msg-1", extract_all(reply))

    assert action.directive.type == "log_meal"
    assert action.directive.payload == {
        "name": "500g Skyr mit 2 Orangen",
        "type": "snack",
        "calories": 430,
        "protein": 52,
        "carbs": 58,
        "fat": 2,
        "date": date.today().isoformat(),
        "source": "ai",
    }
