"""Itemized cost breakdowns for a rental investment.

Two separate sums that must never be mixed:

* operating costs: recurring, monthly, subtracted from rent
* acquisition costs: paid once at purchase, reported but never part of
  monthly cash flow
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..core.config import settings
from ..core.errors import CalculationError
from ..core.numbers import extract_marked_amount
from ..core.utils import normalize_text, strip_accents
from ..data.base import LoanScenario

log = logging.getLogger(__name__)

DOWN_PAYMENT_RATIO = 0.10

# Monthly operating cost parameters
PROPERTY_TAX_ANNUAL_RATE = 0.001148   # of the property value, paid quarterly
MAINTENANCE_UF_PER_YEAR = 4.0
MANAGEMENT_RATE = 0.08                # of rent, only with a property manager
VACANCY_RATE = 0.05                   # of rent
INSURANCE_UF_PER_YEAR = 1.2
COMMON_FEES_CLP = 80_000              # only when the owner pays them
REPAIR_RESERVE_CLP = 50_000
OPERATING_FALLBACK_RATE = 0.13        # of rent

# One-time acquisition cost parameters
LOAN_STAMP_TAX_RATE = 0.008           # of the financed amount
NOTARY_FEES_CLP = 200_000
REGISTRY_FEE_RATE = 0.002             # of the property value
APPRAISAL_DEFAULT_UF = 2.7
TITLE_SEARCH_DEFAULT_UF = 4.5
BANK_PROCESSING_DEFAULT_UF = 1.0
BROKER_RATE = 0.02
VAT_RATE = 0.19
ACQUISITION_FALLBACK_RATE = 0.06      # of the property value


@dataclass(frozen=True)
class CostBreakdown:
    total: float
    items: dict = field(default_factory=dict)
    basis: str = "itemized"           # itemized | fallback
    sources: dict = field(default_factory=dict)   # item -> "loan_simulator" | "default"

    def to_dict(self) -> dict:
        return {
            "total": round(self.total),
            "items": {k: round(v) for k, v in self.items.items()},
            "basis": self.basis,
            "sources": dict(self.sources),
        }


def compute_operating_costs(
    price_clp: float,
    rent: float,
    uses_manager: bool = False,
    owner_pays_common_fees: bool = False,
    uf_value: Optional[float] = None,
) -> CostBreakdown:
    """Recurring monthly costs. Raises CalculationError on unusable inputs."""
    uf = uf_value or settings.UF_VALUE_CLP
    if not price_clp or price_clp <= 0:
        raise CalculationError("operating costs need a positive property value")
    if not rent or rent <= 0:
        raise CalculationError("operating costs need a positive rent")

    items = {
        "property_tax": price_clp * PROPERTY_TAX_ANNUAL_RATE / 12,
        "maintenance": uf * MAINTENANCE_UF_PER_YEAR / 12,
        "management": rent * MANAGEMENT_RATE if uses_manager else 0.0,
        "vacancy": rent * VACANCY_RATE,
        "insurance": uf * INSURANCE_UF_PER_YEAR / 12,
        "common_fees": float(COMMON_FEES_CLP) if owner_pays_common_fees else 0.0,
        "repair_reserve": float(REPAIR_RESERVE_CLP),
    }
    return CostBreakdown(total=sum(items.values()), items=items)


def operating_costs_fallback(rent: float) -> CostBreakdown:
    return CostBreakdown(total=rent * OPERATING_FALLBACK_RATE, basis="fallback")


# ----- loan one-time cost extraction -----

def clp_from_mixed(text: str, uf_value: Optional[float] = None) -> Optional[float]:
    """Spendable-currency value of "UF 2,98 (equivale a $116.920)", else UF x value."""
    clp = extract_marked_amount(text, "$")
    if clp:
        return clp
    in_uf = extract_marked_amount(text, "UF")
    if in_uf:
        return in_uf * (uf_value or settings.UF_VALUE_CLP)
    return None


# field -> (labels as the simulator writes them, parser)
LOAN_COST_FIELDS: dict[str, tuple[tuple[str, ...], Callable[[str], Optional[float]]]] = {
    "appraisal": (("Tasación",), clp_from_mixed),
    "title_search": (("Estudio de título", "Estudio de títulos"), clp_from_mixed),
    "bank_processing": (("Gastos operacionales", "Gestión bancaria"), clp_from_mixed),
}


def _label_key(label: str) -> str:
    return strip_accents(normalize_text(label))


def extract_loan_cost(scenario: Optional[LoanScenario], field_name: str) -> Optional[float]:
    """Look up a one-time cost on the scenario's best offer. None when absent or unparsable."""
    if scenario is None or scenario.best_offer is None:
        return None
    labels, parser = LOAN_COST_FIELDS[field_name]
    wanted = {_label_key(label) for label in labels}
    for label, raw in scenario.best_offer.one_time_costs.items():
        if _label_key(label) in wanted:
            value = parser(raw)
            if value is None or value <= 0:
                log.warning("unparsable loan cost", extra={"field": field_name, "raw": raw})
                return None
            return value
    return None


def compute_acquisition_costs(
    price_clp: float,
    scenario: Optional[LoanScenario] = None,
    uses_broker: bool = False,
    uf_value: Optional[float] = None,
) -> CostBreakdown:
    """One-time purchase costs. Loan-derived fees win over their defaults."""
    uf = uf_value or settings.UF_VALUE_CLP
    if not price_clp or price_clp <= 0:
        raise CalculationError("acquisition costs need a positive property value")

    financed = price_clp * (1 - DOWN_PAYMENT_RATIO)
    defaults = {
        "appraisal": uf * APPRAISAL_DEFAULT_UF,
        "title_search": uf * TITLE_SEARCH_DEFAULT_UF,
        "bank_processing": uf * BANK_PROCESSING_DEFAULT_UF,
    }
    items = {
        "loan_stamp_tax": financed * LOAN_STAMP_TAX_RATE,
        "notary_fees": float(NOTARY_FEES_CLP),
        "registry_fee": price_clp * REGISTRY_FEE_RATE,
    }
    sources = {}
    for name, default in defaults.items():
        extracted = extract_loan_cost(scenario, name)
        items[name] = extracted if extracted is not None else default
        sources[name] = "loan_simulator" if extracted is not None else "default"
    items["broker_commission"] = price_clp * BROKER_RATE * (1 + VAT_RATE) if uses_broker else 0.0

    return CostBreakdown(total=sum(items.values()), items=items, sources=sources)


def acquisition_costs_fallback(price_clp: float) -> CostBreakdown:
    return CostBreakdown(total=price_clp * ACQUISITION_FALLBACK_RATE, basis="fallback")
