"""Error taxonomy for the report pipeline.

Only ``InputValidationError`` is meant to reach the caller. Every other error
is absorbed at a known boundary and turned into degraded-but-valid output:

* ``SourceUnavailableError``: orchestrator fan-out, lowers data quality.
* ``ModelServiceError``: model client, becomes a typed failure outcome.
* ``ResponseMalformedError``: repairer, never leaves it.
* ``CalculationError``: metrics composition point, becomes the fallback set.
"""

from __future__ import annotations


class ReportError(Exception):
    """Base class for every pipeline error."""


class InputValidationError(ReportError):
    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class SourceUnavailableError(ReportError):
    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class ModelServiceError(ReportError):
    def __init__(self, message: str, status: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class ResponseMalformedError(ReportError):
    pass


class CalculationError(ReportError):
    pass
