"""
Static knowledge blocks — versioned domain reference text loaded into agent instructions.

Each block carries a version so every answer can report which knowledge it was
generated with (message attribution).
"""

from __future__ import annotations

from pydantic import BaseModel


class KnowledgeBlock(BaseModel):
    model_config = {"frozen": True}

    id: str
    version: str
    title: str
    content: str

    def render(self) -> str:
        return f"## {self.title} (v{self.version})\n{self.content.strip()}"


KNOWLEDGE_BLOCKS: dict[str, KnowledgeBlock] = {
    block.id: block
    for block in (
        KnowledgeBlock(
            id="nutrition",
            version="2.1.0",
            title="Nutrition fundamentals",
            content="""
- Energy: 1 g protein = 4 kcal, 1 g carbohydrate = 4 kcal, 1 g fat = 9 kcal, 1 g alcohol = 7 kcal.
- Protein target for body recomposition: 1.6–2.2 g per kg body weight; up to 2.5 g/kg in an aggressive deficit.
- Sustainable deficit: 300–500 kcal/day (≈0.5 % body weight per week). Deficits above 1000 kcal/day risk muscle loss.
- Reference values per 100 g: Skyr 63 kcal / 11 g P; Magerquark 67 kcal / 12 g P; chicken breast 110 kcal / 23 g P;
  oats 372 kcal / 13 g P / 59 g C / 7 g F; cooked rice 130 kcal / 2.7 g P / 28 g C; egg (60 g) 90 kcal / 7.5 g P.
- Estimate portions conservatively and say when a value is an estimate.
""",
        ),
        KnowledgeBlock(
            id="supplements",
            version="1.2.0",
            title="Supplements",
            content="""
- Evidence-backed: creatine monohydrate 3–5 g/day, caffeine 3–6 mg/kg pre-workout, vitamin D3 when deficient, omega-3 (EPA+DHA 1–3 g).
- Whey and casein are food, not magic: count them into daily protein.
- Weak evidence: BCAA with sufficient protein intake, most fat burners, testosterone boosters.
""",
        ),
        KnowledgeBlock(
            id="training",
            version="2.0.0",
            title="Training science",
            content="""
- Hypertrophy: 10–20 hard sets per muscle per week, 6–30 reps, 0–3 reps in reserve.
- Strength: 1–6 reps at 80–95 % 1RM, 3–5 min rest.
- Progressive overload: add reps first, then load (2.5–5 %).
- Deload every 4–8 weeks or when performance drops in two consecutive sessions.
- Splits: full body (2–3x/week), upper/lower (4x), push/pull/legs (3–6x).
- Endurance sessions are described by duration or distance plus intensity (pace, heart-rate zone).
""",
        ),
        KnowledgeBlock(
            id="sleep",
            version="1.0.0",
            title="Sleep & recovery",
            content="""
- 7–9 h sleep; under 6 h reduces strength, insulin sensitivity and testosterone.
- Consistent sleep and wake times matter more than the exact hour count.
- Caffeine cutoff about 8 h before bed; alcohol fragments deep sleep.
""",
        ),
        KnowledgeBlock(
            id="competition",
            version="1.0.0",
            title="Competition prep",
            content="""
- Peak week: keep changes small; carb up only if a practice run showed fuller muscles.
- Water and sodium manipulation is dangerous; never recommend diuretics.
- Powerlifting taper: reduce volume 40–60 % in the final 1–2 weeks, keep intensity.
""",
        ),
        KnowledgeBlock(
            id="substances",
            version="1.3.0",
            title="Substances: TRT & GLP-1",
            content="""
- TRT: testosterone enanthate/cypionate, half-life about 4.5–5 days; split weekly dose into 2–3 injections for stable levels.
- Rotate injection sites (glute, delt, quad, ventro-glute); log the site of every injection.
- Monitor hematocrit (< 52 %), estradiol, PSA, lipids and blood pressure every 3–6 months.
- GLP-1 (semaglutide, tirzepatide): titrate slowly; protein intake and resistance training protect lean mass.
- Never give dosing advice beyond the user's prescribed protocol; refer to the prescribing physician.
""",
        ),
        KnowledgeBlock(
            id="anabolics",
            version="1.0.0",
            title="Harm reduction: anabolics",
            content="""
- Harm-reduction stance: no encouragement, factual risk information, blood work before, during and after.
- Cardiovascular risk rises with dose and duration: watch blood pressure, hematocrit and lipids.
""",
        ),
        KnowledgeBlock(
            id="anabolics_powerplus",
            version="2.0.0",
            title="Harm reduction: anabolics (Power+ mode)",
            content="""
- Power+ users run enhanced protocols under their own responsibility; stay factual and safety-first.
- Mandatory checks: blood pressure at least weekly, hematocrit, liver values with oral compounds, lipid panel.
- Post-cycle therapy and recovery planning are part of every protocol discussion.
""",
        ),
        KnowledgeBlock(
            id="pct",
            version="1.0.0",
            title="Post-cycle therapy",
            content="""
- PCT restores natural production after exogenous testosterone; timing depends on the ester half-life.
- Typical markers to follow: LH, FSH, total and free testosterone, estradiol.
""",
        ),
        KnowledgeBlock(
            id="analysis",
            version="1.1.0",
            title="Progress analysis",
            content="""
- Use 7-day moving averages for weight; daily values fluctuate 0.5–2 kg with water and glycogen.
- Compare intake against goals and against actual weight change (7700 kcal ≈ 1 kg fat).
- Report trends with numbers, then give at most three concrete recommendations.
""",
        ),
        KnowledgeBlock(
            id="beauty",
            version="1.0.0",
            title="Aesthetic procedures",
            content="""
- Liposuction and VASER/HD-lipo remove subcutaneous fat locally; they do not replace weight loss.
- Best results at a stable weight close to goal; recovery 2–6 weeks with compression garments.
- Always recommend board-certified surgeons and an in-person consultation.
""",
        ),
        KnowledgeBlock(
            id="attractiveness",
            version="1.0.0",
            title="Attractiveness & presence",
            content="""
- Body fat, shoulder-to-waist ratio, posture and grooming shape first impressions more than absolute muscle mass.
- Confidence shows in posture, eye contact and calm speech; training and sleep support all three.
""",
        ),
        KnowledgeBlock(
            id="medical",
            version="1.1.0",
            title="Medical reference values",
            content="""
- Blood pressure: optimal < 120/80, high normal 130–139/85–89, grade 1 ≥ 140/90, grade 2 ≥ 160/100, crisis ≥ 180/120.
- HbA1c < 5.7 % normal, 5.7–6.4 % prediabetes. TSH roughly 0.4–4.0 mU/l.
- Liver values (ALT/AST) rise after heavy training; retest after 5–7 days of rest before drawing conclusions.
- You are not a doctor: explain values, flag red flags, recommend medical follow-up.
""",
        ),
    )
}


def knowledge_for(block_ids: list[str]) -> list[KnowledgeBlock]:
    """Blocks in the requested order; unknown ids raise KeyError."""
    return [KNOWLEDGE_BLOCKS[block_id] for block_id in block_ids]


def version_map(block_ids: list[str]) -> dict[str, str]:
    return {block.id: block.version for block in knowledge_for(block_ids)}
