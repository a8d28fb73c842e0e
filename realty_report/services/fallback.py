"""Rule-based analysis used when the model path fails, plus metric splicing."""

from __future__ import annotations

import copy
from typing import Optional

from .finance import FinancialMetrics
from .repair import placeholder_sections
from ..core.utils import format_thousands
from ..data.base import PropertySnapshot

STRONG_CASH_FLOW_CLP = 100_000


def decide(cash_flow: float, net_yield: float) -> str:
    if cash_flow > 0 and net_yield >= 6:
        return "RECOMMENDED"
    if cash_flow > 0 and net_yield >= 4:
        return "CONDITIONAL"
    if cash_flow < 0:
        return "NOT_RECOMMENDED"
    return "EVALUATE"


def risk_level(cash_flow: float, net_yield: float) -> str:
    if cash_flow > STRONG_CASH_FLOW_CLP and net_yield >= 7:
        return "low"
    if cash_flow > 0 and net_yield >= 5:
        return "moderate"
    return "high"


_JUSTIFICATIONS = {
    "RECOMMENDED": "Rent covers operating costs and the mortgage with a solid net yield.",
    "CONDITIONAL": "Cash flow is positive but the net yield is moderate; negotiate the price or financing.",
    "NOT_RECOMMENDED": "Rent does not cover operating costs plus the mortgage payment.",
    "EVALUATE": "Available data is not conclusive; verify rent and financing before deciding.",
}


def highlights_for(metrics: FinancialMetrics) -> list[str]:
    cf = metrics.monthly_cash_flow
    out = [
        f"Monthly cash flow: ${format_thousands(cf.value)}" if cf.value >= 0
        else f"Monthly cash flow: -${format_thousands(-cf.value)}",
        f"Gross yield {metrics.gross_yield:.2f}% / net yield {metrics.net_yield:.2f}%",
        f"Expected appreciation {metrics.expected_appreciation:.1f}% per year",
    ]
    if metrics.basis == "fallback":
        out.append("Metrics are reference values; property data was incomplete")
    if metrics.input_sources.get("rent") == "default":
        out.append("Rent is a market default, not derived from comparables")
    if metrics.input_sources.get("loan_payment") == "default":
        out.append("Mortgage payment is a reference value, not a bank quote")
    return out


def synthesize_fallback(
    metrics: FinancialMetrics,
    snapshot: Optional[PropertySnapshot] = None,
    location: str = "",
) -> dict:
    """Complete four-section analysis built only from computed metrics."""
    cash, net = metrics.monthly_cash_flow.value, metrics.net_yield
    decision = decide(cash, net)
    analysis = placeholder_sections()
    analysis["financial_indicators"].update(metrics.indicators())

    place = location or (snapshot.address if snapshot else "")
    analysis["location_analysis"]["summary"] = (
        f"Property located in {place}. Detailed neighbourhood analysis was not generated."
        if place else "Location could not be determined."
    )
    analysis["security_analysis"]["summary"] = "Security data not evaluated; check local crime statistics."

    analysis["executive_summary"].update({
        "decision": decision,
        "justification": _JUSTIFICATIONS[decision],
        "risk_level": risk_level(cash, net),
        "highlights": highlights_for(metrics),
        "final_recommendation": {
            "RECOMMENDED": "Proceed, confirming the appraisal and final loan terms.",
            "CONDITIONAL": "Proceed only with better price or financing conditions.",
            "NOT_RECOMMENDED": "Do not proceed at the current price and financing.",
            "EVALUATE": "Gather rent and financing data before deciding.",
        }[decision],
    })
    return analysis


def emergency_analysis(error: str) -> dict:
    analysis = placeholder_sections()
    analysis["executive_summary"].update({
        "decision": "REVIEW",
        "justification": "The report could not be generated normally; figures are placeholders.",
        "risk_level": "high",
        "highlights": ["Emergency report"],
        "final_recommendation": "Retry later or review the listing manually.",
        "error": error,
    })
    return analysis


def splice_metrics(analysis: dict, metrics: FinancialMetrics, model_path: bool) -> dict:
    """
    Overwrite financial indicators with computed values. On the model path the
    narrative decision is overridden when the numbers are unambiguous.
    """
    out = copy.deepcopy(analysis)
    out["financial_indicators"].update(metrics.indicators())
    if not model_path or metrics.basis != "computed":
        return out

    summary = out["executive_summary"]
    cash, net = metrics.monthly_cash_flow.value, metrics.net_yield
    if cash < 0:
        summary["decision"] = "NOT_RECOMMENDED"
        summary["risk_level"] = "high"
    elif cash > STRONG_CASH_FLOW_CLP and net >= 7:
        summary["decision"] = "RECOMMENDED"
        summary["risk_level"] = "low"
    return out
