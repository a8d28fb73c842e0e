from dataclasses import asdict, dataclass, field
from typing import ClassVar, Optional, Union

from .finance import FinancialMetrics
from .location import LocationCheck
from .repair import RepairResult
from ..data.base import LoanComparison, PropertySnapshot

SOURCE_NAMES = ("extractor", "search", "loan_simulator")

# ----- analysis variants -----

@dataclass(frozen=True)
class ModelDerived:
    analysis: dict
    repair: RepairResult
    attempts: int = 1
    source: ClassVar[str] = "model"

@dataclass(frozen=True)
class FallbackDerived:
    analysis: dict
    reason: str
    source: ClassVar[str] = "fallback"

@dataclass(frozen=True)
class Emergency:
    analysis: dict
    error: str
    source: ClassVar[str] = "emergency"

AnalysisResult = Union[ModelDerived, FallbackDerived, Emergency]

def analysis_weight(result: AnalysisResult) -> int:
    """Confidence points contributed by where the analysis came from."""
    if isinstance(result, ModelDerived):
        return 30
    if isinstance(result, FallbackDerived):
        return 15
    if isinstance(result, Emergency):
        return 0
    raise TypeError(f"unknown analysis variant {type(result).__name__}")

def confidence_score(source_ratio: float, result: AnalysisResult, completeness: float) -> int:
    """sources x 60 + analysis weight + data completeness x 10, capped at 100."""
    if isinstance(result, Emergency):
        return 0
    return min(100, round(source_ratio * 60 + analysis_weight(result) + completeness * 10))

# ----- orchestration -----

@dataclass
class OrchestrationResult:
    snapshot: Optional[PropertySnapshot] = None
    comparables: Optional[tuple] = None
    loans: Optional[LoanComparison] = None
    success: dict = field(default_factory=lambda: {name: False for name in SOURCE_NAMES})
    failures: dict = field(default_factory=dict)
    search_location: str = ""
    location_check: Optional[LocationCheck] = None
    location_corrected_from: Optional[str] = None

    @property
    def source_ratio(self) -> float:
        return sum(1 for ok in self.success.values() if ok) / len(SOURCE_NAMES)

    @property
    def overall_quality(self) -> float:
        return round(self.source_ratio * 100, 1)

# ----- final artifact -----

@dataclass
class FinalReport:
    analysis: AnalysisResult
    metrics: FinancialMetrics
    metadata: dict
    snapshot: Optional[PropertySnapshot] = None
    comparables: Optional[tuple] = None
    loans: Optional[LoanComparison] = None

    @property
    def is_emergency(self) -> bool:
        return isinstance(self.analysis, Emergency)

    def to_dict(self) -> dict:
        return {
            "property": asdict(self.snapshot) if self.snapshot else None,
            "comparables": [asdict(c) for c in self.comparables] if self.comparables is not None else None,
            "mortgage": asdict(self.loans) if self.loans else None,
            "analysis": self.analysis.analysis,
            "metrics": self.metrics.to_dict(),
            "metadata": dict(self.metadata),
        }
