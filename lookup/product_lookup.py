"""
Knowledge Lookup — product nutrition resolution.

Responsibility:
- Resolve a free-text product query to per-100 g / per-serving macros
- Tier 1: Open Food Facts search-a-licious (local proxy first, direct URL second)
- Tier 2: generative fallback constrained to a fixed JSON shape
- Tier 3: not-found result asking for label values
- Build a summary string that is fed back to the agent as grounding

Prohibitions:
- Never raises; every failing tier falls through to the next one
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from typing import Any

import httpx

from models.selector import ModelSelector, parse_first_json_object
from observability.logger import Observability
from shared.models import LookupResult, ModelPolicy, ProductRecord
from shared.settings import LookupSettings

logger = logging.getLogger(__name__)

NOISE_WORDS = frozenset(
    {
        "ohne", "mit", "und", "oder", "von", "für", "fuer",
        "zucker", "zuckerfrei", "zuckerzusatz",
        "fett", "fettarm", "fettfrei", "fettreduziert",
        "laktosefrei", "glutenfrei", "vegan", "bio",
        "light", "zero", "diet", "sugar", "free",
        "das", "der", "die", "den", "dem", "ein", "eine",
    }
)

_UMLAUTS = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})
_SERVING_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*g", re.IGNORECASE)

FALLBACK_SYSTEM_PROMPT = (
    "You are a nutrition facts database. Look up the packaged food product the user names "
    "and answer with ONE JSON object and nothing else:\n"
    '{"found": true, "name": str, "brand": str|null, "serving_size_g": number|null, '
    '"calories_per_100g": number, "protein_per_100g": number, "carbs_per_100g": number, '
    '"fat_per_100g": number, "fiber_per_100g": number|null}\n'
    'If you do not know the product reliably, answer {"found": false}.'
)


# ─── Text normalization ───────────────────────────────────────

def normalize_text(text: str) -> str:
    """Lowercase, transliterate umlauts, strip remaining diacritics."""
    lowered = (text or "").lower().translate(_UMLAUTS)
    decomposed = unicodedata.normalize("NFKD", lowered)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def query_words(query: str) -> list[str]:
    """Significant query words: longer than 2 chars and not a stop word."""
    return [word for word in (query or "").lower().split() if len(word) > 2 and word not in NOISE_WORDS]


def clean_search_query(query: str) -> str:
    tokens = re.sub(r"[^a-z0-9\s-]", " ", normalize_text(query)).split()
    kept = [token for token in tokens if token not in NOISE_WORDS and normalize_text(token) not in NOISE_WORDS]
    return " ".join(kept) or normalize_text(query).strip()


def _stem(word: str) -> str:
    if len(word) <= 4:
        return word
    return word[: max(4, math.ceil(len(word) * 0.6))]


def _brands_text(hit: dict[str, Any]) -> str:
    brands = hit.get("brands")
    if isinstance(brands, list):
        return " ".join(str(item) for item in brands)
    return str(brands or "")


def _as_float(value: Any) -> float | None:
    """Nutriment values arrive as numbers or numeric strings ("13,5" included)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(",", ".").strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _kcal_per_100g(nutriments: dict[str, Any]) -> float | None:
    return _as_float(nutriments.get("energy-kcal_100g", nutriments.get("energy_kcal_100g")))


def score_hit(hit: dict[str, Any], words: list[str]) -> int:
    """Exact (or transliterated) word hit = 2, stem-prefix hit = 1."""
    combined = f"{hit.get('product_name') or ''} {_brands_text(hit)}".lower()
    combined_norm = normalize_text(combined)
    score = 0
    for word in words:
        word_norm = normalize_text(word)
        if word in combined or word_norm in combined_norm:
            score += 2
        elif _stem(word_norm) in combined_norm:
            score += 1
    return score


def rank_hits(hits: list[dict[str, Any]], query: str) -> list[tuple[int, dict[str, Any]]]:
    """Score hits with usable nutriments, best first; ties keep endpoint order."""
    words = query_words(query)
    usable = [
        hit
        for hit in hits
        if isinstance(hit, dict)
        and isinstance(hit.get("nutriments"), dict)
        and _kcal_per_100g(hit["nutriments"]) is not None
    ]
    scored = [(score_hit(hit, words), hit) for hit in usable]
    return sorted(scored, key=lambda item: item[0], reverse=True)


def minimum_score(query: str) -> int:
    return 3 if len(query_words(query)) >= 3 else 1


def parse_serving_grams(hit: dict[str, Any]) -> float | None:
    quantity = hit.get("serving_quantity")
    if quantity not in (None, ""):
        try:
            grams = float(str(quantity).replace(",", "."))
            return grams if grams > 0 else None
        except ValueError:
            pass
    match = _SERVING_RE.search(str(hit.get("serving_size") or ""))
    if match:
        return float(match.group(1).replace(",", "."))
    return None


def _round1(value: float | None) -> float | None:
    return None if value is None else round(float(value), 1)


def build_product(
    name: str,
    brand: str | None,
    calories: float,
    protein: float | None,
    carbs: float | None,
    fat: float | None,
    fiber: float | None = None,
    serving_g: float | None = None,
    serving_label: str | None = None,
) -> ProductRecord:
    per_serving: dict[str, float | None] = {}
    if serving_g:
        factor = serving_g / 100
        per_serving = {
            "calories_per_serving": float(round(calories * factor)),
            "protein_per_serving": _round1(protein * factor) if protein is not None else None,
            "carbs_per_serving": _round1(carbs * factor) if carbs is not None else None,
            "fat_per_serving": _round1(fat * factor) if fat is not None else None,
        }
    return ProductRecord(
        name=name,
        brand=brand or None,
        calories_per_100g=float(round(calories)),
        protein_per_100g=_round1(protein) or 0.0,
        carbs_per_100g=_round1(carbs) or 0.0,
        fat_per_100g=_round1(fat) or 0.0,
        fiber_per_100g=_round1(fiber),
        serving_size_g=serving_g,
        serving_label=serving_label,
        **per_serving,
    )


def _fmt(value: float | None) -> str:
    if value is None:
        return "?"
    return str(int(value)) if float(value).is_integer() else str(value)


def build_summary(product: ProductRecord, source: str, language: str = "de") -> str:
    en = language == "en"
    title = product.name + (f" ({product.brand})" if product.brand else "")
    if source == "openfoodfacts":
        origin = "Source: Open Food Facts (manufacturer label data)" if en else "Quelle: Open Food Facts (Herstellerangaben von der Verpackung)"
    else:
        origin = "Source: web search estimate, verify against the label" if en else "Quelle: Web-Recherche (Schätzung, bitte mit Verpackung abgleichen)"

    lines = [
        f"## {'Lookup result' if en else 'Recherche-Ergebnis'}: {title}",
        origin,
        "",
        f"{'Per 100g' if en else 'Pro 100g'}: {_fmt(product.calories_per_100g)} kcal | "
        f"{_fmt(product.protein_per_100g)}g P | {_fmt(product.carbs_per_100g)}g C | {_fmt(product.fat_per_100g)}g F",
    ]
    if product.fiber_per_100g is not None:
        lines.append(f"{'Fiber' if en else 'Ballaststoffe'}: {_fmt(product.fiber_per_100g)}g {'per' if en else 'pro'} 100g")
    if product.serving_size_g and product.calories_per_serving is not None:
        label = product.serving_label or f"{_fmt(product.serving_size_g)}g"
        lines.append(
            f"{'Per serving' if en else 'Pro Portion'} ({label}): {_fmt(product.calories_per_serving)} kcal | "
            f"{_fmt(product.protein_per_serving)}g P | {_fmt(product.carbs_per_serving)}g C | {_fmt(product.fat_per_serving)}g F"
        )
    lines.append("")
    lines.append(
        'Use these EXACT values in your answer and mark them as "(label value)".'
        if en
        else 'Verwende diese EXAKTEN Werte in deiner Antwort und markiere sie als "(Herstellerangabe)".'
    )
    lines.append(
        "Create ACTION:save_product + ACTION:log_meal with these values."
        if en
        else "Erstelle ACTION:save_product + ACTION:log_meal mit diesen Werten."
    )
    return "\n".join(lines)


def not_found_summary(query: str, language: str = "de") -> str:
    if language == "en":
        return (
            f'Product "{query}" was found neither in Open Food Facts nor by web search. '
            "Ask the user for the nutrition values from the package."
        )
    return (
        f'Produkt "{query}" konnte weder in Open Food Facts noch per Web-Suche gefunden werden. '
        "Frage den Nutzer nach den Nährwerten von der Verpackung."
    )


# ─── Service ──────────────────────────────────────────────────

class ProductLookup:
    """Three-tier product resolver."""

    def __init__(
        self,
        settings: LookupSettings | None = None,
        model_selector: ModelSelector | None = None,
        fallback_policy: ModelPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        language: str = "de",
        observability: Observability | None = None,
    ):
        self.settings = settings or LookupSettings()
        self.model_selector = model_selector
        self.fallback_policy = fallback_policy or ModelPolicy(
            model_name=self.settings.fallback_model,
            temperature=0.1,
            max_tokens=512,
            timeout_seconds=self.settings.fallback_timeout_seconds,
            max_retries=1,
            json_mode=True,
        )
        self._client = client or httpx.AsyncClient(headers={"Accept": "application/json"})
        self.language = language
        self.observability = observability or Observability()

    async def resolve(self, query: str) -> LookupResult:
        query = (query or "").strip()
        if not query:
            return LookupResult(found=False, source="none", summary=not_found_summary(query, self.language))

        result = await self._try_open_food_facts(query)
        if result is None and self.settings.fallback_enabled and self.model_selector is not None:
            result = await self._try_generative(query)
        if result is None:
            result = LookupResult(found=False, source="none", summary=not_found_summary(query, self.language))

        self.observability.log_lookup(query, result.source, result.found)
        return result

    async def close(self) -> None:
        await self._client.aclose()

    # ─── Tier 1 ───────────────────────────────────────────────

    async def _try_open_food_facts(self, query: str) -> LookupResult | None:
        try:
            with self.observability.measure("lookup_openfoodfacts", {"query": query}):
                data = await self._fetch_hits(clean_search_query(query))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Open Food Facts search failed for '%s': %s", query, e)
            return None

        hits = data.get("hits") if isinstance(data, dict) else None
        if not hits:
            return None

        ranked = rank_hits(hits, query)
        required = minimum_score(query)
        if not ranked or ranked[0][0] < required:
            logger.info(
                "Open Food Facts best score %s < %s for '%s'",
                ranked[0][0] if ranked else 0,
                required,
                query,
            )
            return None

        best = ranked[0][1]
        nutriments = best["nutriments"]
        try:
            product = build_product(
                name=str(best.get("product_name") or query),
                brand=", ".join(str(item) for item in best["brands"]) if isinstance(best.get("brands"), list) else best.get("brands"),
                calories=_kcal_per_100g(nutriments) or 0.0,
                protein=_as_float(nutriments.get("proteins_100g")),
                carbs=_as_float(nutriments.get("carbohydrates_100g")),
                fat=_as_float(nutriments.get("fat_100g")),
                fiber=_as_float(nutriments.get("fiber_100g")),
                serving_g=parse_serving_grams(best),
                serving_label=str(best.get("serving_size") or "") or None,
            )
        except (TypeError, ValueError) as e:
            logger.warning("Open Food Facts hit unusable for '%s': %s", query, e)
            return None
        return LookupResult(
            found=True,
            source="openfoodfacts",
            product=product,
            summary=build_summary(product, "openfoodfacts", self.language),
        )

    async def _fetch_hits(self, cleaned_query: str) -> dict[str, Any]:
        params = {"q": cleaned_query, "page_size": self.settings.page_size, "langs": self.settings.langs}
        timeout = httpx.Timeout(self.settings.timeout_seconds)

        if self.settings.proxy_url:
            try:
                response = await self._client.get(self.settings.proxy_url, params=params, timeout=timeout)
                content_type = response.headers.get("content-type", "").lower()
                if response.is_success and "json" in content_type:
                    return response.json()
                logger.info("Lookup proxy unusable (status=%s, type=%s); trying direct URL", response.status_code, content_type)
            except httpx.HTTPError as e:
                logger.info("Lookup proxy failed (%s); trying direct URL", e)

        response = await self._client.get(self.settings.direct_url, params=params, timeout=timeout)
        response.raise_for_status()
        return response.json()

    # ─── Tier 2 ───────────────────────────────────────────────

    async def _try_generative(self, query: str) -> LookupResult | None:
        messages = [
            {"role": "system", "content": FALLBACK_SYSTEM_PROMPT},
            {"role": "user", "content": query},
        ]
        try:
            generation = await self.model_selector.generate(messages, self.fallback_policy)
        except Exception as e:
            logger.warning("Generative product lookup failed for '%s': %s", query, e)
            return None

        data = parse_first_json_object(generation.content or "")
        if not data or data.get("found") is False:
            return None
        try:
            calories = float(data["calories_per_100g"])
        except (KeyError, TypeError, ValueError):
            logger.info("Generative lookup returned no calorie value for '%s'", query)
            return None

        def optional(key: str) -> float | None:
            try:
                return float(data[key]) if data.get(key) is not None else None
            except (TypeError, ValueError):
                return None

        product = build_product(
            name=str(data.get("name") or query),
            brand=data.get("brand") or None,
            calories=calories,
            protein=optional("protein_per_100g"),
            carbs=optional("carbs_per_100g"),
            fat=optional("fat_per_100g"),
            fiber=optional("fiber_per_100g"),
            serving_g=optional("serving_size_g"),
        )
        return LookupResult(
            found=True,
            source="websearch",
            product=product,
            summary=build_summary(product, "websearch", self.language),
        )
