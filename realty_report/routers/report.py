from fastapi import APIRouter, Depends, HTTPException
from ..schemas import ReportRequest, ReportResponse
from ..services.inputs import ReportOptions
from ..services.report_service import ReportService
from ..core.errors import InputValidationError

router = APIRouter()

_service: ReportService | None = None

def service_dep() -> ReportService:
    # Built once so the model breaker and budget are shared across requests
    global _service
    if _service is None:
        _service = ReportService()
    return _service

@router.post("/report", response_model=ReportResponse)
async def post_report(
    body: ReportRequest,
    svc: ReportService = Depends(service_dep),
):
    options = ReportOptions(
        property_price_uf=body.property_price_uf,
        loan_terms=tuple(body.loan_terms),
        location=body.location,
        property_type=body.property_type,
        max_pages=body.max_pages,
        uses_manager=body.uses_manager,
        owner_pays_common_fees=body.owner_pays_common_fees,
        uses_broker=body.uses_broker,
    )
    try:
        report = await svc.generate_report(body.url, options)
    except InputValidationError as exc:
        raise HTTPException(status_code=400, detail={"field": exc.field, "message": exc.message})
    return report.to_dict()

@router.get("/model/status")
async def model_status(svc: ReportService = Depends(service_dep)):
    """Breaker and token-budget state of the shared model client."""
    return svc.model.snapshot()
