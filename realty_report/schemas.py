from pydantic import BaseModel, Field

class ReportRequest(BaseModel):
    url: str = Field(min_length=10)
    property_price_uf: float | None = Field(default=None, gt=0)
    loan_terms: list[int] = Field(default_factory=lambda: [15, 20, 30])
    location: str | None = None
    property_type: str | None = None
    max_pages: int = 2
    uses_manager: bool = False
    owner_pays_common_fees: bool = False
    uses_broker: bool = False

class ReportResponse(BaseModel):
    property: dict | None = None
    comparables: list[dict] | None = None
    mortgage: dict | None = None
    analysis: dict
    metrics: dict
    metadata: dict
    disclaimer: str = "Estimates for informational purposes only; not financial advice."
