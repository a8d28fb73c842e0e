import asyncio
import logging
import time
import uuid
from typing import Optional

from .fallback import emergency_analysis, splice_metrics, synthesize_fallback
from .finance import build_metrics_or_fallback, fallback_metrics, resolve_metric_inputs
from .inputs import (
    ReportOptions,
    derive_search_params,
    resolve_principal,
    validate_listing_url,
    validate_options,
)
from .location import reconcile_search_location
from .prompt import build_prompt
from .repair import repair_model_output
from .types import (
    SOURCE_NAMES,
    AnalysisResult,
    Emergency,
    FallbackDerived,
    FinalReport,
    ModelDerived,
    OrchestrationResult,
    confidence_score,
)
from ..core.config import settings
from ..core.errors import SourceUnavailableError
from ..core.logging import request_id_var
from ..core.metrics import REPORT_LATENCY, REPORTS, SOURCE_FAILURES
from ..core.utils import utc_now_iso
from ..data.base import LoanRequest
from ..data.extractor_client import extractor_client
from ..data.loan_client import loan_client
from ..data.search_client import search_client
from ..models.client import ModelClient, ModelFailure, ModelSuccess, model_client

log = logging.getLogger(__name__)

class ReportService:
    """
    Orchestrates:
      url → (extractor ‖ comparable search ‖ loan simulator) → metrics
          → model analysis (retry/breaker/budget) → repair → merge → report
    Every stage after input validation may fail; a report is always returned.
    """
    def __init__(self, extractor=None, search=None, loans=None, model: Optional[ModelClient] = None):
        # Data adapters (mock or HTTP)
        self.extractor = extractor or extractor_client()
        self.search = search or search_client()
        self.loans = loans or loan_client()
        self.model = model or model_client()
        self.timeouts = {
            "extractor": settings.EXTRACTOR_TIMEOUT_SECONDS,
            "search": settings.SEARCH_TIMEOUT_SECONDS,
            "loan_simulator": settings.LOAN_TIMEOUT_SECONDS,
        }

    async def generate_report(self, url: str, options: Optional[ReportOptions] = None) -> FinalReport:
        options = options or ReportOptions()
        # Only input errors reach the caller
        url = validate_listing_url(url)
        validate_options(options)

        started = time.perf_counter()
        deadline = self.model.now() + settings.REPORT_TIMEOUT_SECONDS
        try:
            report = await self._build(url, options, deadline)
        except Exception as exc:
            log.exception("report pipeline failed, returning emergency report", extra={"url": url})
            report = self._emergency(url, exc)
        REPORTS.labels(analysis_source=report.analysis.source).inc()
        REPORT_LATENCY.observe(time.perf_counter() - started)
        return report

    # ----- fan-out -----

    async def _bounded(self, source: str, call):
        timeout = self.timeouts[source]
        try:
            result = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise SourceUnavailableError(source, f"timed out after {timeout:.0f}s") from exc
        if not result.success:
            raise SourceUnavailableError(source, result.reason or "unknown failure")
        return result.data

    @staticmethod
    async def _snapshot_or_none(extract_task: asyncio.Task):
        # Shielded so a cancelled dependent never cancels the shared extraction
        try:
            return await asyncio.shield(extract_task)
        except asyncio.CancelledError:
            if extract_task.cancelled():
                return None
            raise
        except Exception:
            return None

    async def _extract(self, url: str):
        return await self._bounded("extractor", self.extractor.extract(url))

    async def _search(self, url: str, options: ReportOptions, extract_task: asyncio.Task, trace: dict):
        snapshot = await self._snapshot_or_none(extract_task)
        params = derive_search_params(url, snapshot, options)
        decision = reconcile_search_location(snapshot.address if snapshot else None, params.location, params.location_source)
        trace["location"] = decision
        listings = await self._bounded("search", self.search.search(
            params.property_type, params.operation, decision.location, params.max_pages, params.filters,
        ))
        if not listings:
            raise SourceUnavailableError("search", "no comparables found")
        return tuple(listings)

    async def _loans(self, options: ReportOptions, extract_task: asyncio.Task):
        snapshot = await self._snapshot_or_none(extract_task)
        principal = resolve_principal(snapshot, options)
        request = LoanRequest.build(principal, options.loan_terms)
        return await self._bounded("loan_simulator", self.loans.compare(request))

    async def gather_sources(self, url: str, options: ReportOptions) -> OrchestrationResult:
        """Launch all three sources together and keep every outcome."""
        trace: dict = {}
        extract_task = asyncio.create_task(self._extract(url))
        tasks = [
            extract_task,
            asyncio.create_task(self._search(url, options, extract_task, trace)),
            asyncio.create_task(self._loans(options, extract_task)),
        ]
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        out = OrchestrationResult()
        for name, result in zip(SOURCE_NAMES, results):
            if isinstance(result, BaseException):
                reason = result.reason if isinstance(result, SourceUnavailableError) else f"{type(result).__name__}: {result}"
                out.failures[name] = reason
                SOURCE_FAILURES.labels(source=name).inc()
                log.warning("data source failed", extra={"source": name, "reason": reason})
                continue
            out.success[name] = True
            if name == "extractor":
                out.snapshot = result
            elif name == "search":
                out.comparables = result
            else:
                out.loans = result

        decision = trace.get("location")
        if decision is not None:
            out.search_location = decision.location
            out.location_check = decision.check
            out.location_corrected_from = decision.corrected_from
        return out

    # ----- pipeline -----

    async def _analyze(self, data: OrchestrationResult, metrics, deadline: float) -> AnalysisResult:
        system, user = build_prompt(data.snapshot, data.comparables, data.loans, metrics, data.search_location)
        outcome = await self.model.generate(system, user, deadline=deadline)

        if isinstance(outcome, ModelSuccess):
            repaired = repair_model_output(outcome.text)
            if not repaired.skeleton_used:
                return ModelDerived(analysis=repaired.analysis, repair=repaired, attempts=outcome.attempts)
            reason = "model reply could not be decoded"
        elif isinstance(outcome, ModelFailure):
            reason = f"{outcome.kind.value}: {outcome.detail}"
        else:
            raise TypeError(f"unexpected model outcome {outcome!r}")

        return FallbackDerived(
            analysis=synthesize_fallback(metrics, data.snapshot, data.search_location),
            reason=reason,
        )

    async def _build(self, url: str, options: ReportOptions, deadline: float) -> FinalReport:
        data = await self.gather_sources(url, options)

        inputs = resolve_metric_inputs(
            data.snapshot, data.comparables, data.loans,
            property_price_uf=options.property_price_uf, location=data.search_location,
        )
        metrics = build_metrics_or_fallback(
            inputs,
            uses_manager=options.uses_manager,
            owner_pays_common_fees=options.owner_pays_common_fees,
            uses_broker=options.uses_broker,
        )

        result = await self._analyze(data, metrics, deadline)
        analysis = splice_metrics(result.analysis, metrics, model_path=isinstance(result, ModelDerived))
        result = _with_analysis(result, analysis)

        fallbacks = [f"{k}_{v}" for k, v in metrics.input_sources.items() if v in ("default", "missing", "fallback")]
        if metrics.basis == "fallback":
            fallbacks.append("metrics_fallback")
        if isinstance(result, FallbackDerived):
            fallbacks.append("analysis_fallback")
        if data.location_corrected_from:
            fallbacks.append("location_corrected")

        metadata = self._metadata(data, result, inputs.completeness)
        metadata.update({
            "fallbacks_used": fallbacks,
            "data_completeness": round(inputs.completeness * 100, 1),
            "model": self.model.snapshot(),
        })
        log.info("report generated", extra={
            "url": url, "analysis_source": result.source,
            "confidence": metadata["confidence"], "data_quality": data.overall_quality,
        })
        return FinalReport(
            analysis=result, metrics=metrics, metadata=metadata,
            snapshot=data.snapshot, comparables=data.comparables, loans=data.loans,
        )

    def _metadata(self, data: OrchestrationResult, result: AnalysisResult, completeness: float) -> dict:
        metadata = {
            "request_id": request_id_var.get() or str(uuid.uuid4()),
            "generated_at": utc_now_iso(),
            "sources": dict(data.success),
            "errors": dict(data.failures),
            "data_quality": data.overall_quality,
            "analysis_source": result.source,
            "confidence": confidence_score(data.source_ratio, result, completeness),
            "is_emergency": isinstance(result, Emergency),
            "search_location": data.search_location,
            "location_check": data.location_check.to_dict() if data.location_check else None,
        }
        if isinstance(result, ModelDerived):
            metadata["model_outcome"] = {"status": "success", "attempts": result.attempts}
            metadata["repair"] = result.repair.to_dict()
        elif isinstance(result, FallbackDerived):
            metadata["model_outcome"] = {"status": "failed", "reason": result.reason}
        elif isinstance(result, Emergency):
            metadata["model_outcome"] = {"status": "skipped"}
        return metadata

    def _emergency(self, url: str, exc: Exception) -> FinalReport:
        error = f"{type(exc).__name__}: {exc}"
        result = Emergency(analysis=emergency_analysis(error), error=error)
        metadata = self._metadata(OrchestrationResult(), result, 0.0)
        metadata.update({"fallbacks_used": ["emergency"], "data_completeness": 0.0, "url": url})
        metadata["errors"]["pipeline"] = error
        return FinalReport(analysis=result, metrics=fallback_metrics("emergency report"), metadata=metadata)

def _with_analysis(result: AnalysisResult, analysis: dict) -> AnalysisResult:
    if isinstance(result, ModelDerived):
        return ModelDerived(analysis=analysis, repair=result.repair, attempts=result.attempts)
    if isinstance(result, FallbackDerived):
        return FallbackDerived(analysis=analysis, reason=result.reason)
    return Emergency(analysis=analysis, error=result.error)
