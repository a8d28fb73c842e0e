import json
from dataclasses import asdict
from typing import Optional, Sequence

from .finance import FinancialMetrics
from ..data.base import ComparableListing, LoanComparison, PropertySnapshot

SYSTEM_PROMPT = (
    "You are a senior real-estate investment analyst for the Chilean market. "
    "You receive scraped listing data, rental comparables, mortgage offers and "
    "pre-computed financial metrics. The metrics are authoritative: explain them, "
    "do not recompute them. Respond ONLY with one valid JSON object, no prose, "
    "no code fences."
)

# Target schema, described rather than enforced; the repairer backfills gaps
OUTPUT_SCHEMA = {
    "financial_indicators": {
        "monthly_cash_flow": "number, CLP",
        "gross_yield": "number, percent",
        "net_yield": "number, percent",
        "cap_rate": "number, percent",
        "break_even": "number, CLP per month",
        "expected_appreciation": "number, percent per year",
    },
    "location_analysis": {
        "summary": "string",
        "education": ["string"],
        "commerce": ["string"],
        "transport": ["string"],
        "strengths": ["string"],
    },
    "security_analysis": {
        "security_index": "number 0-10",
        "summary": "string",
        "notes": ["string"],
    },
    "executive_summary": {
        "decision": "RECOMMENDED | CONDITIONAL | NOT_RECOMMENDED | EVALUATE",
        "justification": "string",
        "risk_level": "low | moderate | high",
        "highlights": ["string"],
        "final_recommendation": "string",
    },
}


def build_prompt(
    snapshot: Optional[PropertySnapshot],
    comparables: Optional[Sequence[ComparableListing]],
    loans: Optional[LoanComparison],
    metrics: FinancialMetrics,
    location: str,
) -> tuple[str, str]:
    """Returns (system, user) messages for one analysis call."""
    bundle = {
        "property": asdict(snapshot) if snapshot else None,
        "location": location,
        "comparables": [asdict(c) for c in comparables or ()],
        "mortgage": asdict(loans) if loans else None,
        "metrics": metrics.to_dict(),
    }
    user = (
        "Analyze this property as a rental investment.\n\n"
        f"DATA:\n{json.dumps(bundle, ensure_ascii=False, default=str)}\n\n"
        "Return a JSON object with exactly this structure:\n"
        f"{json.dumps(OUTPUT_SCHEMA, ensure_ascii=False, indent=2)}\n\n"
        "Missing data is marked null; say so in the text instead of inventing values."
    )
    return SYSTEM_PROMPT, user
