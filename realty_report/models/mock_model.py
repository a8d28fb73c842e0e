import json

from .base import Completion, LanguageModel
from ..core.utils import fnv1a_32, seeded_rand

class MockModel(LanguageModel):
    """
    Deterministic placeholder model. Replies the way chat models usually do:
    a line of prose and a fenced JSON object, so the repair path is exercised
    offline. Numbers are plausible but fake; the pipeline overwrites them
    with computed metrics anyway.
    """
    async def complete(self, system: str, user: str) -> Completion:
        seed = fnv1a_32(user)
        r = seeded_rand(seed, 3)
        gross = round(5 + r[0] * 3, 2)
        decision = "RECOMMENDED" if r[1] > 0.5 else "CONDITIONAL"
        analysis = {
            "financial_indicators": {
                "monthly_cash_flow": int(-50_000 + r[2] * 250_000),
                "gross_yield": gross,
                "net_yield": round(gross * 0.75, 2),
                "cap_rate": round(gross * 0.75, 2),
                "break_even": 2_100_000,
                "expected_appreciation": 3.5,
            },
            "location_analysis": {
                "summary": "Established residential area with steady rental demand.",
                "education": ["Colegio cercano (800 m)", "Universidad (3 km)"],
                "commerce": ["Supermercado (500 m)", "Centro comercial (2 km)"],
                "transport": ["Locomoción colectiva a 300 m"],
                "strengths": ["Demanda de arriendo estable"],
            },
            "security_analysis": {
                "security_index": round(5 + r[0] * 4, 1),
                "summary": "Crime levels in line with the commune average.",
                "notes": [],
            },
            "executive_summary": {
                "decision": decision,
                "justification": "Rental income covers operating costs and the mortgage payment.",
                "risk_level": "moderate",
                "highlights": ["Comparable rents support the estimate"],
                "final_recommendation": "Proceed after confirming the appraisal value.",
            },
        }
        text = "Here's the analysis:\n```json\n" + json.dumps(analysis, ensure_ascii=False, indent=2) + "\n```"
        return Completion(text=text, output_tokens=len(text) // 4)
