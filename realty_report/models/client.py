"""Resilient wrapper around a ``LanguageModel``.

Every call returns a ``ModelSuccess`` or a ``ModelFailure``; nothing raises
except task cancellation. Order of checks per call:

1. token budget (rejects without touching the breaker)
2. circuit breaker (short-circuits while open)
3. tenacity retry loop over retryable ``ModelServiceError``s, exponential
   backoff capped at ``backoff_max``, stopped early when the next wait would
   overrun the caller's deadline
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .base import LanguageModel
from .guards import CircuitBreaker, ModelGuards, TokenBudget
from .mock_model import MockModel
from .openai_model import OpenAIModel
from ..core.config import settings
from ..core.errors import ModelServiceError
from ..core.metrics import MODEL_CALLS, MODEL_RETRIES

log = logging.getLogger(__name__)


class FailureKind(str, Enum):
    CIRCUIT_OPEN = "circuit_open"
    BUDGET_EXCEEDED = "budget_exceeded"
    RETRIES_EXHAUSTED = "retries_exhausted"
    NON_RETRYABLE = "non_retryable"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class ModelSuccess:
    text: str
    attempts: int
    output_tokens: int = 0


@dataclass(frozen=True)
class ModelFailure:
    kind: FailureKind
    detail: str
    attempts: int = 0


ModelOutcome = Union[ModelSuccess, ModelFailure]


class _DeadlineExceeded(Exception):
    pass


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ModelServiceError) and exc.retryable


class ModelClient:
    def __init__(
        self,
        model: Optional[LanguageModel],
        guards: ModelGuards,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        backoff_max: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Optional[Callable[[], float]] = None,
    ):
        self.model = model
        self.guards = guards
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep
        self._now = now

    def now(self) -> float:
        if self._now is not None:
            return self._now()
        return asyncio.get_running_loop().time()

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        return None if deadline is None else deadline - self.now()

    async def _sleep_within_deadline(self, seconds: float, deadline: Optional[float]) -> None:
        remaining = self._remaining(deadline)
        if remaining is not None and seconds >= remaining:
            raise _DeadlineExceeded(f"next backoff of {seconds:.1f}s would overrun the deadline")
        await self._sleep(seconds)

    def _before_sleep(self, retry_state) -> None:
        MODEL_RETRIES.inc()
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log.warning(
            "model call failed, retrying",
            extra={
                "attempt": retry_state.attempt_number,
                "wait_s": retry_state.next_action.sleep if retry_state.next_action else None,
                "error": str(exc),
            },
        )

    async def generate(self, system: str, user: str, deadline: Optional[float] = None) -> ModelOutcome:
        """Call the model under budget, breaker and retry policy.

        `deadline` is an absolute time on this client's clock (event-loop
        time by default).
        """
        if self.model is None:
            return self._finish(ModelFailure(FailureKind.NOT_CONFIGURED, "no language model configured"))

        if not await self.guards.budget.has_room():
            return self._finish(ModelFailure(FailureKind.BUDGET_EXCEEDED, "token budget exhausted for current window"))

        if not await self.guards.breaker.acquire():
            return self._finish(ModelFailure(FailureKind.CIRCUIT_OPEN, "circuit breaker open"))

        attempts = 0

        async def attempt():
            nonlocal attempts
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                raise _DeadlineExceeded("deadline reached before attempt")
            attempts += 1
            try:
                return await asyncio.wait_for(self.model.complete(system, user), timeout=remaining)
            except asyncio.TimeoutError as exc:
                raise _DeadlineExceeded("model call overran the deadline") from exc

        async def backoff(seconds):
            await self._sleep_within_deadline(seconds, deadline)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception(_is_retryable),
            sleep=backoff,
            before_sleep=self._before_sleep,
            reraise=True,
        )

        try:
            completion = await retrying(attempt)
        except asyncio.CancelledError:
            await self.guards.breaker.release()
            raise
        except _DeadlineExceeded as exc:
            outcome = ModelFailure(FailureKind.DEADLINE_EXCEEDED, str(exc), attempts)
        except ModelServiceError as exc:
            kind = FailureKind.RETRIES_EXHAUSTED if exc.retryable else FailureKind.NON_RETRYABLE
            outcome = ModelFailure(kind, str(exc), attempts)
        except Exception as exc:
            log.exception("unexpected error from language model")
            outcome = ModelFailure(FailureKind.NON_RETRYABLE, f"{type(exc).__name__}: {exc}", attempts)
        else:
            await self.guards.breaker.record_success()
            await self.guards.budget.consume(completion.output_tokens)
            return self._finish(ModelSuccess(completion.text, attempts, completion.output_tokens))

        await self.guards.breaker.record_failure()
        return self._finish(outcome)

    def _finish(self, outcome: ModelOutcome) -> ModelOutcome:
        label = "success" if isinstance(outcome, ModelSuccess) else outcome.kind.value
        MODEL_CALLS.labels(outcome=label).inc()
        if isinstance(outcome, ModelFailure):
            log.warning("model call failed", extra={"kind": outcome.kind.value, "detail": outcome.detail,
                                                    "attempts": outcome.attempts})
        return outcome

    def snapshot(self) -> dict:
        """Breaker and budget state for debugging endpoints and logs."""
        return {
            "model": type(self.model).__name__ if self.model else None,
            "breaker": self.guards.breaker.snapshot(),
            "token_budget": self.guards.budget.snapshot(),
        }


_shared_guards: Optional[ModelGuards] = None


def shared_guards() -> ModelGuards:
    """Process-wide breaker and budget used by default."""
    global _shared_guards
    if _shared_guards is None:
        _shared_guards = ModelGuards(
            breaker=CircuitBreaker(settings.BREAKER_THRESHOLD, settings.BREAKER_COOLDOWN_SECONDS),
            budget=TokenBudget(settings.TOKEN_BUDGET_PER_WINDOW, settings.TOKEN_BUDGET_WINDOW_SECONDS),
        )
    return _shared_guards


def language_model() -> Optional[LanguageModel]:
    # Pick model provider based on env
    provider = settings.MODEL_PROVIDER
    if provider == "openai":
        if not settings.OPENAI_API_KEY:
            log.warning("MODEL_PROVIDER=openai but OPENAI_API_KEY is not set; model analysis disabled")
            return None
        return OpenAIModel()
    return MockModel()


def model_client(guards: Optional[ModelGuards] = None) -> ModelClient:
    return ModelClient(
        language_model(),
        guards or shared_guards(),
        max_retries=settings.MODEL_MAX_RETRIES,
        backoff_base=settings.MODEL_BACKOFF_BASE_SECONDS,
        backoff_max=settings.MODEL_BACKOFF_MAX_SECONDS,
    )
