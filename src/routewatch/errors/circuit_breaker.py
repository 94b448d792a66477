"""Per-component circuit breakers: CLOSED -> OPEN -> HALF_OPEN -> CLOSED."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel

from routewatch.config.schema import CircuitBreakerConfig
from routewatch.errors.exceptions import CircuitOpenFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitBreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerInfo(BaseModel):
    state: CircuitBreakerState = CircuitBreakerState.CLOSED
    failure_count: int = 0
    consecutive_successes: int = 0
    last_failure_time: float | None = None
    next_attempt_time: float | None = None
    trial_in_flight: bool = False


class CircuitBreakerRegistry:
    """Table of breakers keyed by component name.

    Unknown components start CLOSED. All transitions are synchronous.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreakerInfo] = {}

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    def state(self, component: str) -> CircuitBreakerInfo:
        """Return a copy of the breaker for ``component``."""
        return self._get(component).model_copy()

    def allow(self, component: str) -> bool:
        """Whether a call may proceed now.

        An OPEN breaker past its next_attempt_time moves to HALF_OPEN and lets
        exactly one trial call through.
        """
        breaker = self._get(component)
        if breaker.state == CircuitBreakerState.CLOSED:
            return True
        if breaker.state == CircuitBreakerState.OPEN:
            if breaker.next_attempt_time is not None and self._clock() >= breaker.next_attempt_time:
                breaker.state = CircuitBreakerState.HALF_OPEN
                breaker.trial_in_flight = True
                logger.info("Circuit '%s' half-open, allowing trial call", component)
                return True
            return False
        # HALF_OPEN
        if breaker.trial_in_flight:
            return False
        breaker.trial_in_flight = True
        return True

    def record_success(self, component: str) -> None:
        """Count a success. An OPEN breaker ignores it until its trial is allowed."""
        breaker = self._get(component)
        if breaker.state == CircuitBreakerState.OPEN:
            return
        breaker.trial_in_flight = False
        if breaker.state == CircuitBreakerState.HALF_OPEN:
            breaker.state = CircuitBreakerState.CLOSED
            breaker.failure_count = 0
            breaker.next_attempt_time = None
            breaker.consecutive_successes += 1
            logger.info("Circuit '%s' closed after successful trial", component)
            return
        breaker.consecutive_successes += 1
        if breaker.consecutive_successes >= self._config.success_reset_threshold:
            breaker.failure_count = 0

    def record_failure(self, component: str, *, force: bool = False) -> None:
        """Count a failure. With ``force`` the count also grows while not CLOSED."""
        breaker = self._get(component)
        now = self._clock()
        breaker.consecutive_successes = 0
        breaker.last_failure_time = now
        breaker.trial_in_flight = False
        if breaker.state != CircuitBreakerState.CLOSED:
            if force:
                breaker.failure_count += 1
            if breaker.state == CircuitBreakerState.HALF_OPEN:
                self._open(component, breaker, now)
            return
        breaker.failure_count += 1
        if breaker.failure_count >= self._config.failure_threshold:
            self._open(component, breaker, now)

    async def call(self, component: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under the breaker, recording the outcome.

        Raises CircuitOpenFailure without calling ``fn`` when not allowed.
        """
        if not self.allow(component):
            breaker = self._get(component)
            raise CircuitOpenFailure(
                f"Circuit '{component}' is {breaker.state.value}",
                component=component,
                next_attempt_time=breaker.next_attempt_time,
            )
        try:
            result = await fn()
        except Exception:
            self.record_failure(component)
            raise
        except BaseException:
            # cancelled without an outcome
            self.release(component)
            raise
        self.record_success(component)
        return result

    def release(self, component: str) -> None:
        """Give up a claimed trial without recording an outcome."""
        self._get(component).trial_in_flight = False

    def reset(self, component: str) -> None:
        """Force CLOSED with zero counters."""
        self._breakers[component] = CircuitBreakerInfo()
        logger.info("Circuit '%s' reset", component)

    def reset_all(self) -> None:
        self._breakers.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {
            name: info.model_dump(mode="json") for name, info in sorted(self._breakers.items())
        }

    def _get(self, component: str) -> CircuitBreakerInfo:
        breaker = self._breakers.get(component)
        if breaker is None:
            breaker = CircuitBreakerInfo()
            self._breakers[component] = breaker
        return breaker

    def _open(self, component: str, breaker: CircuitBreakerInfo, now: float) -> None:
        breaker.state = CircuitBreakerState.OPEN
        breaker.next_attempt_time = now + self._config.recovery_timeout
        logger.warning(
            "Circuit '%s' opened after %d failures, retry after %.1fs",
            component,
            breaker.failure_count,
            self._config.recovery_timeout,
        )
