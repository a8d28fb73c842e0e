from typing import Protocol, Optional, Generic, TypeVar, Sequence
from dataclasses import dataclass, field

from ..core.errors import InputValidationError

T = TypeVar("T")

# ----- Data shapes (thin & explicit) -----

@dataclass(frozen=True)
class PropertySnapshot:
    # Raw strings exactly as the portal shows them; parse with core.numbers
    title: str
    price_uf: Optional[str] = None     # e.g. "9.200"
    price_clp: Optional[str] = None    # e.g. "$361.100.000"
    address: str = ""
    bedrooms: Optional[str] = None     # e.g. "4 dormitorios"
    bathrooms: Optional[str] = None    # e.g. "2,5 baños"
    area: Optional[str] = None         # e.g. "184 m2 totales"
    description: str = ""
    features: dict = field(default_factory=dict)   # e.g. {"parking": "2 estacionamientos"}
    link: str = ""

@dataclass(frozen=True)
class ComparableListing:
    title: str
    price: str                  # raw, e.g. "2.300.000" or "58"
    currency: str = "CLP"       # "UF" | "CLP"
    address: str = ""
    bedrooms: Optional[str] = None
    bathrooms: Optional[str] = None
    area: Optional[str] = None
    link: str = ""

@dataclass(frozen=True)
class SearchFilters:
    # Minimums; None means "no constraint"
    min_bedrooms: Optional[float] = None
    min_bathrooms: Optional[float] = None
    min_area_m2: Optional[float] = None
    min_parking: Optional[float] = None

    def as_params(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}

@dataclass(frozen=True)
class LoanOffer:
    lender: str
    monthly_payment: str        # raw, e.g. "$1.841.539"
    rate: str = ""              # raw, e.g. "4,39%"
    one_time_costs: dict = field(default_factory=dict)  # e.g. {"Tasación": "UF 2,98 (equivale a $116.920)"}

@dataclass(frozen=True)
class LoanScenario:
    principal_uf: float
    term_years: int
    best_offer: Optional[LoanOffer] = None
    lenders: tuple = ()
    error: Optional[str] = None

@dataclass(frozen=True)
class LoanComparison:
    principal_uf: float
    scenarios: tuple = ()

    def scenario(self, term_years: int) -> Optional[LoanScenario]:
        for s in self.scenarios:
            if s.term_years == term_years:
                return s
        return None

    def preferred_offer(self, term_years: int = 30) -> Optional[LoanScenario]:
        """Scenario for ``term_years`` if it has an offer, else any scenario with one."""
        preferred = self.scenario(term_years)
        if preferred and preferred.best_offer:
            return preferred
        for s in self.scenarios:
            if s.best_offer:
                return s
        return None

# Bounds enforced by the bank simulator
MIN_PRINCIPAL_UF = 100
MAX_PRINCIPAL_UF = 20_000
MIN_TERM_YEARS = 5
MAX_TERM_YEARS = 40
DEFAULT_TERMS = (15, 20, 30)

@dataclass(frozen=True)
class LoanRequest:
    principal_uf: float
    terms: tuple = DEFAULT_TERMS

    @classmethod
    def from_pairs(cls, pairs: Sequence[tuple]) -> "LoanRequest":
        """
        Validate (principal, term) pairs before anything reaches the simulator:
        exactly three pairs, one shared principal within bounds, terms within bounds.
        """
        if len(pairs) != 3:
            raise InputValidationError("loan_scenarios", f"exactly 3 scenarios required, got {len(pairs)}")
        principals = {float(p) for p, _ in pairs}
        if len(principals) != 1:
            raise InputValidationError("loan_scenarios", "all scenarios must share the same principal")
        principal = principals.pop()
        check_principal(principal)
        terms = tuple(int(t) for _, t in pairs)
        check_terms(terms)
        return cls(principal_uf=principal, terms=terms)

    @classmethod
    def build(cls, principal_uf: float, terms: Sequence[int] = DEFAULT_TERMS) -> "LoanRequest":
        return cls.from_pairs([(principal_uf, t) for t in terms])

    def pairs(self) -> list[tuple]:
        return [(self.principal_uf, t) for t in self.terms]

def check_principal(principal_uf: float) -> None:
    if not MIN_PRINCIPAL_UF <= principal_uf <= MAX_PRINCIPAL_UF:
        raise InputValidationError(
            "principal_uf", f"{principal_uf} UF outside {MIN_PRINCIPAL_UF}-{MAX_PRINCIPAL_UF}"
        )

def check_terms(terms: Sequence[int]) -> None:
    if len(terms) != 3:
        raise InputValidationError("loan_terms", f"exactly 3 terms required, got {len(terms)}")
    for term in terms:
        if not MIN_TERM_YEARS <= int(term) <= MAX_TERM_YEARS:
            raise InputValidationError(
                "loan_terms", f"{term} years outside {MIN_TERM_YEARS}-{MAX_TERM_YEARS}"
            )
    if len(set(terms)) != len(terms):
        raise InputValidationError("loan_terms", "terms must be distinct")

@dataclass
class SourceResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "SourceResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, reason: str) -> "SourceResult[T]":
        return cls(success=False, reason=reason)

# ----- Protocols (interfaces) -----

class PropertyExtractor(Protocol):
    async def extract(self, url: str) -> SourceResult[PropertySnapshot]: ...

class ComparableSearch(Protocol):
    async def search(
        self, property_type: str, operation: str, location: str,
        max_pages: int, filters: SearchFilters,
    ) -> SourceResult[tuple]: ...

class LoanSimulator(Protocol):
    async def compare(self, request: LoanRequest) -> SourceResult[LoanComparison]: ...
