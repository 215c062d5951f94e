"""
ChartSage - Circuit Breaker

Stops hammering the vision model once it keeps failing.

    CLOSED    → calls pass; consecutive failures are counted
    OPEN      → calls are rejected until ``recovery_timeout`` elapses
    HALF_OPEN → a single trial call; others are rejected until it settles,
                success closes, failure re-opens

Usage::

    breaker = CircuitBreaker("gemini_vision", failure_threshold=3)
    result = await breaker.call(lambda: llm.ainvoke(messages))
"""

from __future__ import annotations

import threading
import time
from enum import Enum, auto
from typing import Awaitable, Callable, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = auto()
    OPEN = auto()
    HALF_OPEN = auto()


class CircuitOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""

    def __init__(self, service: str, retry_after: float):
        self.service = service
        self.retry_after = retry_after
        super().__init__(f"Circuit open for '{service}', retry after {retry_after:.0f}s")


class CircuitBreaker:
    """Consecutive-failure breaker around an async callable."""

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_name = service_name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._refresh_state()

    def _refresh_state(self) -> CircuitState:
        # Caller holds _lock
        if self._state == CircuitState.OPEN and self._cooled_down():
            self._state = CircuitState.HALF_OPEN
            log.info("circuit_breaker.half_open", service=self.service_name)
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _cooled_down(self) -> bool:
        return self._clock() - self._opened_at >= self.recovery_timeout

    def _admit(self) -> None:
        """Let a call through or raise CircuitOpenError."""
        with self._lock:
            state = self._refresh_state()
            if state == CircuitState.OPEN:
                retry_after = self.recovery_timeout - (self._clock() - self._opened_at)
                raise CircuitOpenError(self.service_name, max(0.0, retry_after))
            if state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.service_name, 0.0)
                self._trial_in_flight = True

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Await ``func()`` through the breaker.

        Raises:
            CircuitOpenError: the circuit is open, or half-open with a trial
                call already running.
        """
        self._admit()

        try:
            result = await func()
        except BaseException as exc:
            # Cancellation from a caller's timeout counts as a failure too
            self.record_failure(exc)
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        with self._lock:
            self._trial_in_flight = False
            if self._state != CircuitState.CLOSED:
                log.info("circuit_breaker.closed", service=self.service_name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0

    def record_failure(self, exc: BaseException) -> None:
        with self._lock:
            self._trial_in_flight = False
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    log.warning(
                        "circuit_breaker.opened",
                        service=self.service_name,
                        failures=self._failure_count,
                        error=str(exc) or type(exc).__name__,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()

    def reset(self) -> None:
        """Manually close the circuit."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = 0.0
            self._trial_in_flight = False
