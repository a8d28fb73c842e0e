"""Deterministic investment metrics.

These numbers are the ground truth of a report: the model's narrative is
reconciled against them, never the other way round. Each step raises
``CalculationError`` on unusable input; ``build_metrics_or_fallback`` is the
only place that turns such an error into the labeled fallback set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from .costs import (
    CostBreakdown,
    DOWN_PAYMENT_RATIO,
    acquisition_costs_fallback,
    compute_acquisition_costs,
    compute_operating_costs,
    operating_costs_fallback,
)
from ..core.config import settings
from ..core.errors import CalculationError
from ..core.numbers import parse_locale_number
from ..core.utils import normalize_text, strip_accents
from ..data.base import ComparableListing, LoanComparison, LoanScenario, PropertySnapshot

log = logging.getLogger(__name__)

DEFAULT_RENT_CLP = 2_300_000
DEFAULT_LOAN_PAYMENT_CLP = 1_840_825
DEFAULT_APPRECIATION = 3.5
RENT_RANGE_CLP = (500_000, 10_000_000)
PREFERRED_TERM_YEARS = 30

# Labeled fallback set used when metrics cannot be computed
FALLBACK_GROSS_YIELD = 5.5
FALLBACK_NET_YIELD = 4.8
FALLBACK_BREAK_EVEN = 500_000
# Rough rules applied to the fallback net yield
FALLBACK_ROI_FACTOR = 1.2

PREMIUM_COMMUNES = ("las condes", "vitacura", "providencia")
DEVELOPING_COMMUNES = ("nunoa", "la reina", "santiago centro")


@dataclass(frozen=True)
class CashFlow:
    value: float
    rent: float
    operating_costs: float
    loan_payment: float


@dataclass(frozen=True)
class FinancialMetrics:
    monthly_cash_flow: CashFlow
    gross_yield: float
    net_yield: float
    cap_rate: float
    break_even: float
    expected_appreciation: float
    roi: Optional[float] = None                   # first-year return on cash invested, %
    cash_on_cash: Optional[float] = None          # %
    payback_years: Optional[float] = None         # None while cash flow is not positive
    basis: str = "computed"                       # computed | fallback
    input_sources: dict = field(default_factory=dict)
    operating_costs: Optional[CostBreakdown] = None
    acquisition_costs: Optional[CostBreakdown] = None
    fallback_reason: Optional[str] = None

    def indicators(self) -> dict:
        """Values spliced into the analysis' financial_indicators section."""
        return {
            "monthly_cash_flow": round(self.monthly_cash_flow.value),
            "gross_yield": round(self.gross_yield, 2),
            "net_yield": round(self.net_yield, 2),
            "cap_rate": round(self.cap_rate, 2),
            "break_even": round(self.break_even),
            "expected_appreciation": round(self.expected_appreciation, 2),
            "roi": _round_or_none(self.roi, 2),
            "cash_on_cash": _round_or_none(self.cash_on_cash, 2),
            "payback_years": _round_or_none(self.payback_years, 1),
        }

    def to_dict(self) -> dict:
        cf = self.monthly_cash_flow
        return {
            **self.indicators(),
            "cash_flow_breakdown": {
                "rent": round(cf.rent),
                "operating_costs": round(cf.operating_costs),
                "loan_payment": round(cf.loan_payment),
            },
            "basis": self.basis,
            "fallback_reason": self.fallback_reason,
            "input_sources": dict(self.input_sources),
            "operating_costs": self.operating_costs.to_dict() if self.operating_costs else None,
            "acquisition_costs": self.acquisition_costs.to_dict() if self.acquisition_costs else None,
        }


def _round_or_none(value: Optional[float], digits: int) -> Optional[float]:
    return None if value is None else round(value, digits)


def compute_financial_metrics(
    price_clp: float,
    rent: float,
    loan_payment: float,
    operating_costs: float,
    appreciation: float = DEFAULT_APPRECIATION,
    acquisition_costs: Optional[CostBreakdown] = None,
    operating_breakdown: Optional[CostBreakdown] = None,
    input_sources: Optional[dict] = None,
) -> FinancialMetrics:
    """
    cash flow   = rent - operating costs - loan payment
    gross yield = rent * 12 / price * 100
    net yield   = (rent - operating costs) * 12 / price * 100
    cap rate    = net yield
    break-even  = operating costs + loan payment

    Cash invested is the down payment plus acquisition costs:

    cash-on-cash = cash flow * 12 / cash invested * 100
    roi          = (cash flow * 12 + price * appreciation / 100) / cash invested * 100
    payback      = cash invested / (cash flow * 12), only for positive cash flow

    Acquisition costs never enter the monthly cash flow.
    """
    for name, value in (("price", price_clp), ("rent", rent)):
        if value is None or value <= 0:
            raise CalculationError(f"{name} must be positive, got {value!r}")
    for name, value in (("loan payment", loan_payment), ("operating costs", operating_costs)):
        if value is None or value < 0:
            raise CalculationError(f"{name} must be non-negative, got {value!r}")

    net_yield = (rent - operating_costs) * 12 / price_clp * 100
    cash_flow = rent - operating_costs - loan_payment
    one_time = acquisition_costs.total if acquisition_costs else acquisition_costs_fallback(price_clp).total
    invested = price_clp * DOWN_PAYMENT_RATIO + one_time
    annual = cash_flow * 12
    return FinancialMetrics(
        monthly_cash_flow=CashFlow(
            value=cash_flow,
            rent=rent,
            operating_costs=operating_costs,
            loan_payment=loan_payment,
        ),
        gross_yield=rent * 12 / price_clp * 100,
        net_yield=net_yield,
        cap_rate=net_yield,
        break_even=operating_costs + loan_payment,
        expected_appreciation=appreciation,
        roi=(annual + price_clp * appreciation / 100) / invested * 100,
        cash_on_cash=annual / invested * 100,
        payback_years=invested / annual if annual > 0 else None,
        input_sources=dict(input_sources or {}),
        operating_costs=operating_breakdown,
        acquisition_costs=acquisition_costs,
    )


def fallback_metrics(reason: str, input_sources: Optional[dict] = None) -> FinancialMetrics:
    return FinancialMetrics(
        monthly_cash_flow=CashFlow(value=0.0, rent=0.0, operating_costs=0.0, loan_payment=0.0),
        gross_yield=FALLBACK_GROSS_YIELD,
        net_yield=FALLBACK_NET_YIELD,
        cap_rate=FALLBACK_NET_YIELD,
        break_even=FALLBACK_BREAK_EVEN,
        expected_appreciation=DEFAULT_APPRECIATION,
        roi=FALLBACK_NET_YIELD * FALLBACK_ROI_FACTOR,
        payback_years=round(100 / FALLBACK_NET_YIELD),
        basis="fallback",
        input_sources=dict(input_sources or {}),
        fallback_reason=reason,
    )


# ----- input resolution -----

@dataclass(frozen=True)
class MetricInputs:
    price_uf: Optional[float]
    price_clp: Optional[float]
    rent: float
    loan_payment: float
    appreciation: float
    loan_scenario: Optional[LoanScenario] = None
    sources: dict = field(default_factory=dict)

    @property
    def completeness(self) -> float:
        """Fraction of price, rent and payment taken from real data."""
        real = sum(1 for k in ("price", "rent", "loan_payment") if self.sources.get(k) not in ("default", "missing"))
        return real / 3


def estimate_rent(comparables: Sequence[ComparableListing], uf_value: Optional[float] = None) -> Optional[float]:
    """Interquartile mean of comparable rents in CLP. None without usable listings."""
    uf = uf_value or settings.UF_VALUE_CLP
    rents = []
    for c in comparables:
        value = parse_locale_number(c.price)
        if value is None:
            continue
        if (c.currency or "").upper() == "UF":
            value *= uf
        if RENT_RANGE_CLP[0] <= value <= RENT_RANGE_CLP[1]:
            rents.append(value)
    if not rents:
        return None
    arr = np.sort(np.asarray(rents, dtype=float))
    q = len(arr) // 4
    core = arr[q:len(arr) - q] if len(arr) >= 4 else arr
    return float(core.mean())


def appreciation_for_location(location: str) -> float:
    key = strip_accents(normalize_text(location or ""))
    if any(c in key for c in PREMIUM_COMMUNES):
        return 4.0
    if any(c in key for c in DEVELOPING_COMMUNES):
        return 3.5
    return 3.0


def snapshot_price_uf(snapshot: Optional[PropertySnapshot], uf_value: Optional[float] = None) -> Optional[float]:
    if snapshot is None:
        return None
    price = parse_locale_number(snapshot.price_uf)
    if price:
        return price
    clp = parse_locale_number(snapshot.price_clp)
    if clp:
        return clp / (uf_value or settings.UF_VALUE_CLP)
    return None


def resolve_metric_inputs(
    snapshot: Optional[PropertySnapshot],
    comparables: Optional[Sequence[ComparableListing]],
    loans: Optional[LoanComparison],
    property_price_uf: Optional[float] = None,
    location: str = "",
) -> MetricInputs:
    uf = settings.UF_VALUE_CLP
    sources = {}

    price_uf = snapshot_price_uf(snapshot)
    if price_uf:
        sources["price"] = "extractor"
    elif property_price_uf:
        price_uf = float(property_price_uf)
        sources["price"] = "option"
    else:
        sources["price"] = "missing"

    rent = estimate_rent(comparables or ())
    if rent is None:
        rent = float(DEFAULT_RENT_CLP)
        sources["rent"] = "default"
    else:
        sources["rent"] = "comparables"

    scenario = loans.preferred_offer(PREFERRED_TERM_YEARS) if loans else None
    payment = parse_locale_number(scenario.best_offer.monthly_payment) if scenario else None
    if payment:
        sources["loan_payment"] = "loan_simulator"
    else:
        payment = float(DEFAULT_LOAN_PAYMENT_CLP)
        sources["loan_payment"] = "default"

    return MetricInputs(
        price_uf=price_uf,
        price_clp=price_uf * uf if price_uf else None,
        rent=rent,
        loan_payment=payment,
        appreciation=appreciation_for_location(location or (snapshot.address if snapshot else "")),
        loan_scenario=scenario,
        sources=sources,
    )


def build_metrics_or_fallback(
    inputs: MetricInputs,
    uses_manager: bool = False,
    owner_pays_common_fees: bool = False,
    uses_broker: bool = False,
) -> FinancialMetrics:
    """Single composition point: computed metrics, or the labeled fallback set."""
    sources = dict(inputs.sources)
    try:
        if inputs.price_clp is None:
            raise CalculationError("no property price available")

        try:
            operating = compute_operating_costs(
                inputs.price_clp, inputs.rent,
                uses_manager=uses_manager, owner_pays_common_fees=owner_pays_common_fees,
            )
            sources["operating_costs"] = "itemized"
        except CalculationError as exc:
            log.warning("operating costs fell back", extra={"error": str(exc)})
            operating = operating_costs_fallback(inputs.rent)
            sources["operating_costs"] = "fallback"

        try:
            acquisition = compute_acquisition_costs(inputs.price_clp, inputs.loan_scenario, uses_broker=uses_broker)
        except CalculationError as exc:
            log.warning("acquisition costs fell back", extra={"error": str(exc)})
            acquisition = acquisition_costs_fallback(inputs.price_clp)

        return compute_financial_metrics(
            price_clp=inputs.price_clp,
            rent=inputs.rent,
            loan_payment=inputs.loan_payment,
            operating_costs=operating.total,
            appreciation=inputs.appreciation,
            acquisition_costs=acquisition,
            operating_breakdown=operating,
            input_sources=sources,
        )
    except CalculationError as exc:
        log.warning("financial metrics fell back", extra={"error": str(exc)})
        return fallback_metrics(str(exc), sources)
