import asyncio
import itertools
import json

import pytest

from realty_report.core.errors import InputValidationError, ModelServiceError
from realty_report.data.base import (
    ComparableListing,
    LoanComparison,
    LoanOffer,
    LoanScenario,
    PropertySnapshot,
)
from realty_report.services.inputs import ReportOptions
from realty_report.services.repair import REQUIRED_SECTIONS
from realty_report.services.report_service import ReportService
from realty_report.services.types import Emergency, FallbackDerived, ModelDerived

from doubles import ScriptedModel, StubExtractor, StubLoans, StubSearch

URL = "https://www.portalinmobiliario.com/venta/casa/las-condes/MLC-123456"
ADDRESS = "Los Castaños 855, Montemar, Concón, Valparaíso"

SNAPSHOT = PropertySnapshot(
    title="Casa en venta 4D 3B",
    price_uf="9.200",
    price_clp="$361.100.000",
    address=ADDRESS,
    bedrooms="4 dormitorios",
    bathrooms="2,5 baños",
    area="184 m2 totales",
    features={"parking": "2 estacionamientos"},
    link=URL,
)


def _comparables(rent="2.300.000", n=6):
    return [ComparableListing(title="Casa en arriendo", price=rent, currency="CLP", address="Concón") for _ in range(n)]


def _loans(payment_30="$1.841.539"):
    return LoanComparison(principal_uf=9_200, scenarios=(
        LoanScenario(9_200, 15, best_offer=LoanOffer("BancoEstado", "$2.650.000", "4,10%")),
        LoanScenario(9_200, 20, best_offer=LoanOffer("BCI", "$2.200.000", "4,25%")),
        LoanScenario(9_200, 30, best_offer=LoanOffer(
            "Santander", payment_30, "4,39%",
            one_time_costs={"Tasación": "UF 2,98 (equivale a $116.920)"},
        )),
    ))


MODEL_REPLY = "```json\n" + json.dumps({
    "financial_indicators": {"monthly_cash_flow": 1, "gross_yield": 7.0},
    "location_analysis": {"summary": "Coastal", "education": ["School"], "commerce": ["Mall"]},
    "security_analysis": {"security_index": 8, "summary": "Safe"},
    "executive_summary": {"decision": "RECOMMENDED", "risk_level": "low", "final_recommendation": "Buy"},
}) + "\n```"


@pytest.fixture
def build_service(make_client):
    def factory(extractor=None, search=None, loans=None, model=None):
        return ReportService(
            extractor=extractor or StubExtractor(SNAPSHOT),
            search=search or StubSearch(_comparables()),
            loans=loans or StubLoans(_loans()),
            model=make_client(model or ScriptedModel(MODEL_REPLY)),
        )
    return factory


def _assert_sections(report):
    analysis = report.to_dict()["analysis"]
    for name in REQUIRED_SECTIONS:
        assert analysis[name], name


@pytest.mark.asyncio
@pytest.mark.parametrize("failing", list(itertools.product([False, True], repeat=3)))
async def test_every_failure_subset_still_yields_a_report(build_service, failing):
    extractor_down, search_down, loans_down = failing
    svc = build_service(
        extractor=StubExtractor(SNAPSHOT, reason="blocked" if extractor_down else None),
        search=StubSearch(_comparables(), reason="captcha" if search_down else None),
        loans=StubLoans(_loans(), reason="bank offline" if loans_down else None),
    )

    report = await svc.generate_report(URL, ReportOptions(property_price_uf=9_200))

    _assert_sections(report)
    meta = report.metadata
    assert meta["sources"] == {
        "extractor": not extractor_down,
        "search": not search_down,
        "loan_simulator": not loans_down,
    }
    ok = 3 - sum(failing)
    real_inputs = 1 + (not search_down) + (not loans_down)   # price always known via option
    assert meta["data_quality"] == round(ok / 3 * 100, 1)
    assert meta["confidence"] == min(100, round(ok / 3 * 60 + 30 + real_inputs / 3 * 10))
    assert meta["analysis_source"] == "model"
    assert set(meta["errors"]) == {name for name, down in zip(("extractor", "search", "loan_simulator"), failing) if down}


@pytest.mark.asyncio
async def test_reference_scenario_on_fallback_path(build_service):
    loans = StubLoans(_loans())
    svc = build_service(loans=loans, model=ScriptedModel(ModelServiceError("overloaded", status=400)))

    report = await svc.generate_report(URL)

    request = loans.requests[0]
    assert request.principal_uf == 9_200
    assert request.terms == (15, 20, 30)

    cf = report.metrics.monthly_cash_flow
    assert cf.rent == 2_300_000
    assert cf.loan_payment == 1_841_539
    assert cf.value == pytest.approx(2_300_000 - cf.operating_costs - 1_841_539)
    assert report.metrics.acquisition_costs.items["appraisal"] == 116_920

    assert isinstance(report.analysis, FallbackDerived)
    assert report.to_dict()["analysis"]["executive_summary"]["decision"] == "RECOMMENDED"
    assert report.metadata["analysis_source"] == "fallback"
    assert report.metadata["confidence"] == 85
    assert "analysis_fallback" in report.metadata["fallbacks_used"]


@pytest.mark.asyncio
async def test_search_location_is_corrected_from_listing_address(build_service):
    search = StubSearch(_comparables())
    svc = build_service(search=search)

    report = await svc.generate_report(URL)

    call = search.calls[0]
    assert call["location"] == "Concón, Valparaíso"
    assert call["operation"] == "Arriendo"
    assert call["property_type"] == "Casa"
    assert call["filters"].min_bedrooms == 4
    assert call["filters"].min_bathrooms == 2.5
    assert call["filters"].min_area_m2 == 184
    assert call["filters"].min_parking == 2
    assert report.metadata["location_check"]["confidence"] == "low"
    assert report.metadata["search_location"] == "Concón, Valparaíso"
    assert "location_corrected" in report.metadata["fallbacks_used"]


@pytest.mark.asyncio
async def test_model_path_keeps_narrative_but_not_numbers(build_service):
    svc = build_service(search=StubSearch(_comparables(rent="1.500.000")))

    report = await svc.generate_report(URL)

    assert isinstance(report.analysis, ModelDerived)
    analysis = report.to_dict()["analysis"]
    assert analysis["financial_indicators"]["monthly_cash_flow"] == round(report.metrics.monthly_cash_flow.value)
    assert report.metrics.monthly_cash_flow.value < 0
    assert analysis["executive_summary"]["decision"] == "NOT_RECOMMENDED"
    assert analysis["location_analysis"]["summary"] == "Coastal"
    assert report.metadata["repair"]["completeness"] == 100


@pytest.mark.asyncio
async def test_undecodable_model_reply_falls_back(build_service):
    svc = build_service(model=ScriptedModel("I cannot produce JSON today."))

    report = await svc.generate_report(URL)

    assert isinstance(report.analysis, FallbackDerived)
    assert report.analysis.reason == "model reply could not be decoded"
    _assert_sections(report)


@pytest.mark.asyncio
async def test_no_price_anywhere_uses_reference_metrics(build_service):
    svc = build_service(extractor=StubExtractor(reason="blocked"))

    report = await svc.generate_report(URL)

    assert report.metadata["sources"]["loan_simulator"] is False
    assert "no property price" in report.metadata["errors"]["loan_simulator"]
    assert report.metrics.basis == "fallback"
    assert "metrics_fallback" in report.metadata["fallbacks_used"]
    _assert_sections(report)


@pytest.mark.asyncio
async def test_out_of_range_scraped_price_skips_to_option(build_service):
    loans = StubLoans(_loans())
    snapshot = PropertySnapshot(title="Casa", price_uf="25.000", address=ADDRESS)
    svc = build_service(extractor=StubExtractor(snapshot), loans=loans)

    await svc.generate_report(URL, ReportOptions(property_price_uf=9_200))

    assert loans.requests[0].principal_uf == 9_200


@pytest.mark.asyncio
async def test_slow_source_times_out_without_blocking_others(build_service):
    class SlowSearch(StubSearch):
        async def search(self, *args, **kwargs):
            await asyncio.sleep(5)

    svc = build_service(search=SlowSearch())
    svc.timeouts["search"] = 0.01

    report = await svc.generate_report(URL)

    assert report.metadata["sources"]["search"] is False
    assert "timed out" in report.metadata["errors"]["search"]
    assert report.metadata["sources"]["loan_simulator"] is True


@pytest.mark.asyncio
async def test_adapter_exception_is_recorded_as_failure(build_service):
    class ExplodingExtractor:
        async def extract(self, url):
            raise ValueError("selector changed")

    svc = build_service(extractor=ExplodingExtractor())

    report = await svc.generate_report(URL, ReportOptions(property_price_uf=9_200))

    assert report.metadata["sources"]["extractor"] is False
    assert "selector changed" in report.metadata["errors"]["extractor"]


@pytest.mark.asyncio
async def test_unexpected_pipeline_error_returns_emergency_report(build_service, monkeypatch):
    def broken_prompt(*args, **kwargs):
        raise RuntimeError("template missing")

    monkeypatch.setattr("realty_report.services.report_service.build_prompt", broken_prompt)
    svc = build_service()

    report = await svc.generate_report(URL)

    assert isinstance(report.analysis, Emergency)
    assert report.is_emergency
    assert report.metadata["is_emergency"] is True
    assert report.metadata["confidence"] == 0
    assert report.metadata["analysis_source"] == "emergency"
    assert "template missing" in report.metadata["errors"]["pipeline"]
    _assert_sections(report)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url, options",
    [
        ("https://www.example.com/casa/1", ReportOptions()),
        ("not a url", ReportOptions()),
        (URL, ReportOptions(property_price_uf=50)),
        (URL, ReportOptions(property_price_uf=25_000)),
        (URL, ReportOptions(loan_terms=(15, 20))),
        (URL, ReportOptions(loan_terms=(15, 20, 45))),
        (URL, ReportOptions(max_pages=4)),
    ],
)
async def test_invalid_input_is_rejected_before_any_call(build_service, url, options):
    extractor = StubExtractor(SNAPSHOT)
    svc = build_service(extractor=extractor)

    with pytest.raises(InputValidationError):
        await svc.generate_report(url, options)
    assert extractor.urls == []


@pytest.mark.asyncio
async def test_undecodable_nested_reply_falls_back_not_emergency(build_service):
    nested = '{"executive_summary": ' + "[" * 100_000 + "]" * 100_000 + "}"
    svc = build_service(model=ScriptedModel(nested))

    report = await svc.generate_report(URL)

    assert isinstance(report.analysis, FallbackDerived)
    assert report.metadata["analysis_source"] == "fallback"
    assert report.metadata["confidence"] > 0
    _assert_sections(report)
