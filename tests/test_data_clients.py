import json

import httpx
import pytest

from realty_report.core.errors import InputValidationError
from realty_report.core.numbers import parse_amount
from realty_report.data.base import LoanRequest, SearchFilters
from realty_report.data.extractor_client import HttpExtractor, MockExtractor
from realty_report.data.loan_client import HttpLoanSimulator, MockLoanSimulator, annuity_payment
from realty_report.data.search_client import COMPARABLES_HARD_CAP, HttpSearch, MockSearch


def _transport(handler):
    return httpx.MockTransport(handler)


def test_annuity_payment_matches_closed_form():
    assert annuity_payment(120_000, 0.0, 10) == pytest.approx(1_000)
    assert annuity_payment(100_000, 0.06, 30) == pytest.approx(599.55, abs=0.01)


@pytest.mark.parametrize(
    "pairs, field",
    [
        ([(3000, 15), (3000, 20)], "loan_scenarios"),
        ([(3000, 15), (3100, 20), (3000, 30)], "loan_scenarios"),
        ([(50, 15), (50, 20), (50, 30)], "principal_uf"),
        ([(3000, 15), (3000, 20), (3000, 41)], "loan_terms"),
        ([(3000, 20), (3000, 20), (3000, 30)], "loan_terms"),
    ],
)
def test_loan_request_rejects_bad_scenarios(pairs, field):
    with pytest.raises(InputValidationError) as exc:
        LoanRequest.from_pairs(pairs)
    assert exc.value.field == field


@pytest.mark.asyncio
async def test_mock_extractor_is_stable_per_url():
    url = "https://www.portalinmobiliario.com/venta/casa/concon/MLC-1"
    a = await MockExtractor().extract(url)
    b = await MockExtractor().extract(url)
    assert a.success and a.data == b.data
    assert a.data.link == url


@pytest.mark.asyncio
async def test_mock_search_respects_cap_and_mixes_currencies():
    result = await MockSearch().search("Casa", "Arriendo", "Concón", 2, SearchFilters(min_bedrooms=3))
    assert result.success
    assert 0 < len(result.data) <= COMPARABLES_HARD_CAP
    assert {c.currency for c in result.data} == {"CLP", "UF"}


@pytest.mark.asyncio
async def test_mock_loans_pick_cheapest_offer_per_term():
    result = await MockLoanSimulator().compare(LoanRequest.build(3_000))
    assert [s.term_years for s in result.data.scenarios] == [15, 20, 30]
    payments = [parse_amount(s.best_offer.monthly_payment) for s in result.data.scenarios]
    assert payments == sorted(payments, reverse=True)


@pytest.mark.asyncio
async def test_http_extractor_maps_listing_fields():
    def handler(request):
        assert request.url.path == "/extract"
        assert json.loads(request.content) == {"url": "https://x.cl/1"}
        return httpx.Response(200, json={"data": {
            "title": "Depto", "price_uf": "5.400", "address": "Providencia, Santiago",
            "bedrooms": "2", "surface": "80 m2",
        }})

    result = await HttpExtractor("http://extractor", transport=_transport(handler)).extract("https://x.cl/1")

    assert result.success
    assert result.data.price_uf == "5.400"
    assert result.data.area == "80 m2"
    assert result.data.link == "https://x.cl/1"


@pytest.mark.asyncio
async def test_http_extractor_failure_is_a_result_not_an_exception():
    transport = _transport(lambda request: httpx.Response(503, json={"error": "blocked"}))
    result = await HttpExtractor("http://extractor", transport=transport).extract("https://x.cl/1")
    assert not result.success
    assert "extractor request failed" in result.reason


@pytest.mark.asyncio
async def test_http_search_sends_filters_and_truncates():
    seen = {}

    def handler(request):
        seen.update(dict(request.url.params))
        items = [{"titulo": f"Casa {i}", "precio": "2.000.000", "moneda": "CLP"} for i in range(40)]
        return httpx.Response(200, json={"data": items})

    search = HttpSearch("http://search", transport=_transport(handler))
    result = await search.search("Casa", "Arriendo", "Concón", 2, SearchFilters(min_bedrooms=3))

    assert seen["tipo"] == "Casa" and seen["operacion"] == "Arriendo" and seen["ubicacion"] == "Concón"
    assert result.success
    assert len(result.data) <= COMPARABLES_HARD_CAP
    assert result.data[0].title == "Casa 0"


@pytest.mark.asyncio
async def test_http_loans_parse_best_offer_per_scenario():
    def handler(request):
        body = json.loads(request.content)
        assert body == {"escenarios": [{"plazo": 15, "monto": 9200.0},
                                       {"plazo": 20, "monto": 9200.0},
                                       {"plazo": 30, "monto": 9200.0}]}
        return httpx.Response(200, json={"data": [
            {
                "escenario": {"plazo": e["plazo"], "monto": e["monto"]},
                "resultado": {
                    "bancos": [{"banco": "Santander"}, {"banco": "BCI"}],
                    "resumenComparativo": {"mejorOferta": {
                        "banco": "Santander",
                        "dividendoMensual": "$1.841.539",
                        "tasaCredito": "4,39%",
                        "detalle": {"valoresUnicaVez": {"Tasación": "UF 2,98 (equivale a $116.920)"}},
                    }},
                },
            }
            for e in body["escenarios"]
        ]})

    sim = HttpLoanSimulator("http://loans", transport=_transport(handler))
    result = await sim.compare(LoanRequest.build(9_200))

    assert result.success
    best = result.data.preferred_offer(30).best_offer
    assert best.lender == "Santander"
    assert best.one_time_costs["Tasación"].startswith("UF 2,98")
    assert result.data.scenario(15).lenders == ("Santander", "BCI")


@pytest.mark.asyncio
async def test_http_loans_without_offers_is_a_failure():
    transport = _transport(lambda request: httpx.Response(200, json={"data": [
        {"escenario": {"plazo": 15, "monto": 9200}, "error": "timeout"},
    ]}))
    result = await HttpLoanSimulator("http://loans", transport=transport).compare(LoanRequest.build(9_200))
    assert not result.success
    assert result.reason == "loan simulator returned no offers"
