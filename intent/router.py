"""
Intent Router — keyword-scored domain routing.

Responsibility:
- Map free text to one or more agent domains without any model call
- Greeting/small-talk short-circuit to the general agent
- Multi-target ranking for messages that touch several domains

Scoring: weight × (matches / √len(keywords)). The square root keeps domains
with larger vocabularies from winning by size alone.

Prohibitions:
- No I/O, no model calls, no suspension
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from shared.models import ANALYSIS_DOMAIN, DEFAULT_DOMAIN, MultiRoutingDecision, RoutingDecision
from shared.settings import RouterSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeywordRule:
    domain: str
    keywords: tuple[str, ...]


# Declaration order is the tie-break order.
ROUTING_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        domain="nutrition",
        keywords=(
            # eating
            "essen", "gegessen", "mahlzeit", "frühstück", "mittagessen", "abendessen",
            "snack", "hunger", "portion", "rezept",
            # macros
            "kalorien", "kcal", "protein", "eiweiß", "kohlenhydrate", "carbs",
            "makros", "nährwert", "ballaststoffe", "ernährung", "diät", "kalorienziel",
            # foods
            "skyr", "quark", "joghurt", "müsli", "haferflocken", "hähnchen", "reis",
            "nudeln", "brot", "kekse", "obst", "orange", "orangen", "banane", "apfel",
            "gemüse", "salat", "lachs", "eier", "shake",
            # english
            "meal", "food", "calories", "macros", "breakfast", "lunch", "dinner",
        ),
    ),
    KeywordRule(
        domain="training",
        keywords=(
            "training", "trainiert", "trainingsplan", "workout", "gym", "fitnessstudio",
            "übung", "bankdrücken", "kniebeugen", "kreuzheben", "klimmzüge", "rudern",
            "deadlift", "squat", "bench", "curl", "latzug",
            "brust", "rücken", "schulter", "beine", "bizeps", "trizeps",
            "push", "pull", "split", "ganzkörper", "sätze", "wiederholungen", "reps",
            "hantel", "cardio", "laufen", "joggen", "radfahren", "schwimmen", "hiit",
            "deload", "hypertrophie", "muskelaufbau", "ausdauer",
            "exercise", "warmup", "lift",
        ),
    ),
    KeywordRule(
        domain="substance",
        keywords=(
            "testosteron", "trt", "enanthat", "cypionat", "propionat", "ester",
            "halbwertszeit", "wegovy", "semaglutid", "ozempic", "mounjaro", "tirzepatid",
            "glp-1", "substanz", "spritze", "gesetzt", "setzen", "injektion", "injiziert",
            "nadel", "ampulle",
            "injektionsstelle", "subkutan", "dosis", "dosierung", "titration",
            "nebenwirkung", "zyklus", "blast", "cruise", "aromatasehemmer", "hcg",
            "hämatokrit", "estradiol", "kreatin", "supplement",
            "injection", "dose", "side effect", "cycle",
        ),
    ),
    KeywordRule(
        domain="analysis",
        keywords=(
            "analyse", "analysiere", "auswertung", "bewertung", "statistik",
            "zusammenfassung", "überblick", "trend", "fortschritt", "entwicklung",
            "verlauf", "vergleich", "durchschnitt", "bmi", "körperfett", "ffmi",
            "gewichtsverlauf", "recomp", "tdee", "grundumsatz", "empfehlung",
            "optimieren", "zeig mir", "bilanz",
            "progress", "summary", "overview", "analyze",
        ),
    ),
    KeywordRule(
        domain="beauty",
        keywords=(
            "liposuktion", "lipo", "vaser", "fettabsaugung", "bauchdeckenstraffung",
            "botox", "filler", "hyaluron", "schönheits-op", "schönheitsop",
            "gynäkomastie", "haartransplantation", "hautstraffung", "narbe",
            "kosmetisch", "eingriff", "chirurg", "aesthetic", "surgery", "cosmetic",
        ),
    ),
    KeywordRule(
        domain="lifestyle",
        keywords=(
            "attraktivität", "attraktiv", "ausstrahlung", "selbstbewusstsein", "dating",
            "stil", "kleidung", "outfit", "körpersprache", "haltung", "aussehen",
            "wirkung", "wirkt", "frauen", "männer", "charisma", "grooming",
            "attractive", "confidence", "style",
        ),
    ),
    KeywordRule(
        domain="medical",
        keywords=(
            "leberwerte", "laborwerte", "blutwerte", "blutbild", "hba1c", "schilddrüse",
            "tsh", "cholesterin", "ldl", "hdl", "triglyceride", "kreatinin", "nieren",
            "blutdruck", "systolisch", "diastolisch", "hypertonie", "puls", "herz",
            "arzt", "symptom", "schmerzen", "medikament", "diagnose", "werte",
            "blood pressure", "blood work", "doctor", "lab",
        ),
    ),
)

GREETING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(hi|hallo|hey|moin|servus|guten\s*(morgen|tag|abend)|na\??|was\s*geht|yo)[\s!?.]*$"),
    re.compile(r"^(hello|good\s*(morning|evening|afternoon))[\s!?.]*$"),
    re.compile(r"^(wie\s*geht'?s|wie\s*geht\s*es\s*dir|alles\s*klar)[\s!?.]*$"),
    re.compile(r"^(danke|vielen\s*dank|thanks|thank\s*you)[\s!?.]*$"),
    re.compile(r"^(tschüss|bye|ciao|bis\s*dann|bis\s*später)[\s!?.]*$"),
)

FALLBACK_REASONING = "No strong keyword match, using general agent"


class IntentRouter:
    """Deterministic keyword router."""

    def __init__(self, settings: RouterSettings | None = None, rules: tuple[KeywordRule, ...] = ROUTING_RULES):
        self.settings = settings or RouterSettings()
        self.rules = rules
        # √len is constant per rule
        self._norms = {rule.domain: math.sqrt(len(rule.keywords)) for rule in rules}

    def classify(self, text: str) -> RoutingDecision:
        """Return the single best domain for text."""
        normalized = self._normalize(text)
        if self._is_greeting(normalized):
            return self._greeting_decision()

        ranked = self._rank(normalized)
        if not ranked:
            return self._fallback_decision()
        return ranked[0]

    def classify_multi(self, text: str) -> MultiRoutingDecision:
        """Return every domain above threshold; analysis always runs alone."""
        normalized = self._normalize(text)
        if self._is_greeting(normalized):
            greeting = self._greeting_decision()
            return MultiRoutingDecision(decisions=[greeting], primary=greeting.domain)

        ranked = self._rank(normalized)
        if not ranked:
            fallback = self._fallback_decision()
            return MultiRoutingDecision(decisions=[fallback], primary=fallback.domain)

        if ranked[0].domain == ANALYSIS_DOMAIN:
            ranked = ranked[:1]
        else:
            ranked = [decision for decision in ranked if decision.domain != ANALYSIS_DOMAIN]

        return MultiRoutingDecision(decisions=ranked, primary=ranked[0].domain)

    # ─── Scoring ──────────────────────────────────────────────

    def score(self, normalized: str) -> list[tuple[str, float, list[str]]]:
        """Raw (domain, score, matches) for every rule with at least one match."""
        scores: list[tuple[str, float, list[str]]] = []
        for rule in self.rules:
            matches = [keyword for keyword in rule.keywords if keyword in normalized]
            if not matches:
                continue
            weight = self.settings.weights.get(rule.domain, 0.0)
            scores.append((rule.domain, weight * (len(matches) / self._norms[rule.domain]), matches))
        return scores

    def _rank(self, normalized: str) -> list[RoutingDecision]:
        threshold = self.settings.confidence_threshold
        passing = [item for item in self.score(normalized) if item[1] > threshold]
        # sorted() is stable: equal scores keep declaration order
        passing = sorted(passing, key=lambda item: item[1], reverse=True)
        return [
            RoutingDecision(domain=domain, confidence=min(score, 1.0), matched_keywords=matches)
            for domain, score, matches in passing
        ]

    # ─── Helpers ──────────────────────────────────────────────

    def _normalize(self, text: str) -> str:
        return (text or "").lower().strip()

    def _is_greeting(self, normalized: str) -> bool:
        return any(pattern.match(normalized) for pattern in GREETING_PATTERNS)

    def _greeting_decision(self) -> RoutingDecision:
        return RoutingDecision(domain=DEFAULT_DOMAIN, confidence=1.0, matched_keywords=["greeting"])

    def _fallback_decision(self) -> RoutingDecision:
        return RoutingDecision(
            domain=DEFAULT_DOMAIN,
            confidence=self.settings.fallback_confidence,
            matched_keywords=[],
            reasoning=FALLBACK_REASONING,
        )
