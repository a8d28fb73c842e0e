"""Shared protection state for language-model calls.

Both objects are plain instances handed to ``ModelClient``; the process-wide
pair is built once by ``models.client.model_client()``. Each one owns an
``asyncio.Lock`` so concurrent reports see consistent counters. Clocks are
injectable so tests can move time without sleeping.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

log = logging.getLogger(__name__)

Clock = Callable[[], float]


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure breaker.

    CLOSED lets every call through. After ``threshold`` consecutive failures
    it goes OPEN and short-circuits calls. Once ``cooldown`` seconds have
    passed since the last failure it lets exactly one trial call through
    (HALF_OPEN); that call closes the breaker on success or reopens it on
    failure, and other callers keep short-circuiting while it runs.
    """

    def __init__(self, threshold: int = 5, cooldown: float = 300.0, clock: Clock = time.monotonic):
        self.threshold = threshold
        self.cooldown = cooldown
        self.clock = clock
        self.failures = 0
        self.last_failure_at: float | None = None
        self.trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> BreakerState:
        if self.failures < self.threshold:
            return BreakerState.CLOSED
        if self.trial_in_flight or self._cooled_down():
            return BreakerState.HALF_OPEN
        return BreakerState.OPEN

    def _cooled_down(self) -> bool:
        return self.last_failure_at is not None and self.clock() - self.last_failure_at >= self.cooldown

    async def acquire(self) -> bool:
        """True when the caller may contact the service."""
        async with self._lock:
            if self.failures < self.threshold:
                return True
            if self.trial_in_flight or not self._cooled_down():
                return False
            self.trial_in_flight = True
            log.info("circuit breaker half-open, allowing trial call")
            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self.failures >= self.threshold:
                log.info("circuit breaker closed after successful trial")
            self.failures = 0
            self.last_failure_at = None
            self.trial_in_flight = False

    async def record_failure(self) -> None:
        async with self._lock:
            self.failures += 1
            self.last_failure_at = self.clock()
            self.trial_in_flight = False
            if self.failures == self.threshold:
                log.warning("circuit breaker opened", extra={"failures": self.failures})

    async def release(self) -> None:
        """Give back a trial slot without recording an outcome (e.g. cancellation)."""
        async with self._lock:
            self.trial_in_flight = False

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "threshold": self.threshold,
            "last_failure_at": self.last_failure_at,
        }


class TokenBudget:
    """Rolling-window cap on output tokens, independent of the breaker."""

    def __init__(self, max_tokens: int = 50_000, window: float = 3600.0, clock: Clock = time.monotonic):
        self.max_tokens = max_tokens
        self.window = window
        self.clock = clock
        self.window_start = clock()
        self.used = 0
        self._lock = asyncio.Lock()

    def _roll(self) -> None:
        now = self.clock()
        if now - self.window_start >= self.window:
            self.window_start = now
            self.used = 0

    async def has_room(self) -> bool:
        async with self._lock:
            self._roll()
            return self.used < self.max_tokens

    async def consume(self, tokens: int) -> None:
        async with self._lock:
            self._roll()
            self.used += max(0, tokens)

    def snapshot(self) -> dict:
        return {"used": self.used, "max": self.max_tokens, "window_start": self.window_start}


@dataclass
class ModelGuards:
    breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    budget: TokenBudget = field(default_factory=TokenBudget)
