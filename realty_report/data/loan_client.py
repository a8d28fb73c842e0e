import logging

import httpx

from .base import LoanSimulator, LoanRequest, LoanComparison, LoanScenario, LoanOffer, SourceResult
from ..core.config import settings
from ..core.numbers import parse_amount
from ..core.utils import fnv1a_32, seeded_rand, format_thousands

log = logging.getLogger(__name__)

_LENDERS = ["Banco de Chile", "BancoEstado", "Santander", "BCI", "Scotiabank", "Itaú"]

def annuity_payment(principal: float, annual_rate: float, years: int) -> float:
    """Standard fixed-rate monthly payment."""
    n = years * 12
    r = annual_rate / 12.0
    if r == 0:
        return principal / n
    return principal * r / (1 - (1 + r) ** -n)

class MockLoanSimulator(LoanSimulator):
    """
    Synthetic bank comparison. Rates drift slightly by lender and term;
    the cheapest payment per term is the best offer.
    """
    async def compare(self, request: LoanRequest) -> SourceResult[LoanComparison]:
        uf = settings.UF_VALUE_CLP
        # 10% down payment is financed out of pocket
        financed_clp = request.principal_uf * uf * 0.9
        scenarios = []
        for term in request.terms:
            offers = []
            for lender in _LENDERS[:4]:
                jitter = seeded_rand(fnv1a_32(f"{lender}|{term}"), 1)[0]
                rate = 0.0395 + jitter * 0.008 + (term - 15) * 0.0002
                payment = annuity_payment(financed_clp, rate, term)
                appraisal_uf = 2.5 + jitter
                offers.append(LoanOffer(
                    lender=lender,
                    monthly_payment="$" + format_thousands(payment),
                    rate=_decimal_comma(rate * 100) + "%",
                    one_time_costs={
                        "Tasación": f"UF {_decimal_comma(appraisal_uf)} (equivale a ${format_thousands(appraisal_uf * uf)})",
                        "Estudio de título": f"UF 4,50 (equivale a ${format_thousands(4.5 * uf)})",
                    },
                ))
            best = min(offers, key=lambda o: parse_amount(o.monthly_payment))
            scenarios.append(LoanScenario(
                principal_uf=request.principal_uf, term_years=term,
                best_offer=best, lenders=tuple(o.lender for o in offers),
            ))
        return SourceResult.ok(LoanComparison(principal_uf=request.principal_uf, scenarios=tuple(scenarios)))

def _decimal_comma(value: float) -> str:
    return f"{value:.2f}".replace(".", ",")

class HttpLoanSimulator(LoanSimulator):
    """
    Client for the bank-simulator microservice. Sends the three
    (term, principal) scenarios in one request.
    """
    def __init__(self, base_url: str, timeout: float = 90, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport  # injectable for tests

    async def compare(self, request: LoanRequest) -> SourceResult[LoanComparison]:
        payload = {"escenarios": [{"plazo": t, "monto": p} for p, t in request.pairs()]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(f"{self.base_url}/compare", json=payload)
                r.raise_for_status()
                body = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("loan simulator request failed", extra={"principal_uf": request.principal_uf, "error": str(exc)})
            return SourceResult.failed(f"loan simulator request failed: {exc}")

        items = body.get("data", body) if isinstance(body, dict) else body
        if not isinstance(items, list):
            return SourceResult.failed("loan simulator returned an unexpected payload")

        scenarios = []
        for item in items:
            escenario = item.get("escenario") or {}
            resultado = item.get("resultado") or {}
            best = (resultado.get("resumenComparativo") or {}).get("mejorOferta")
            offer = None
            if best:
                offer = LoanOffer(
                    lender=best.get("banco", ""),
                    monthly_payment=str(best.get("dividendoMensual", "")),
                    rate=str(best.get("tasaCredito", "")),
                    one_time_costs=dict((best.get("detalle") or {}).get("valoresUnicaVez") or {}),
                )
            scenarios.append(LoanScenario(
                principal_uf=float(escenario.get("monto", request.principal_uf)),
                term_years=int(escenario.get("plazo", 0)),
                best_offer=offer,
                lenders=tuple(b.get("banco", "") for b in resultado.get("bancos") or []),
                error=item.get("error"),
            ))
        if not any(s.best_offer for s in scenarios):
            return SourceResult.failed("loan simulator returned no offers")
        return SourceResult.ok(LoanComparison(principal_uf=request.principal_uf, scenarios=tuple(scenarios)))

def loan_client() -> LoanSimulator:
    if settings.LOAN_PROVIDER == "http" and settings.LOAN_BASE_URL:
        return HttpLoanSimulator(settings.LOAN_BASE_URL, settings.LOAN_TIMEOUT_SECONDS)
    return MockLoanSimulator()
