"""
Circuit Breaker pattern implementation for resilience.

Stops calling a chronically failing operation and gives it time to recover,
while letting a probe through once the cooldown has elapsed.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from japanese_parser.errors import BreakerOpenError
from japanese_parser.observability.logging import get_logger
from japanese_parser.observability.metrics import (
    circuit_breaker_rejections_total,
    circuit_breaker_state,
)


logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Next call is a recovery probe


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    cooldown_ms: float = 60_000
    expected_exception: type = Exception

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.cooldown_ms < 0:
            raise ValueError("cooldown_ms must not be negative")


class CircuitBreaker:
    """
    Circuit breaker guarding one category of operation.

    States:
    - CLOSED: operations run; ``failure_threshold`` consecutive failures open it
    - OPEN: calls fail with BreakerOpenError until ``cooldown_ms`` has passed
      since the last failure, then the next call moves it to HALF_OPEN
    - HALF_OPEN: the next outcome decides; success closes, failure reopens

    State is read and written under a lock, but the operation itself runs
    outside it, so concurrent failures may push ``failure_count`` past the
    threshold.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()

        self._clock = clock or time.time
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._lock = asyncio.Lock()
        circuit_breaker_state.labels(breaker=name).set(0)

    async def __aenter__(self):
        await self._check_state()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self._on_success()
        elif issubclass(exc_type, self.config.expected_exception):
            await self._on_failure(exc_val)
        return False  # Don't suppress exceptions

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _set_state(self, state: CircuitState) -> None:
        if state is not self._state:
            logger.info(
                f"Circuit breaker '{self.name}' {self._state.value} -> {state.value}",
                breaker=self.name,
                failure_count=self._failure_count,
            )
        self._state = state
        circuit_breaker_state.labels(breaker=self.name).set(_STATE_GAUGE_VALUES[state])

    async def _check_state(self) -> None:
        async with self._lock:
            if self._state is not CircuitState.OPEN:
                return
            if self._cooldown_elapsed():
                self._set_state(CircuitState.HALF_OPEN)
                return

        circuit_breaker_rejections_total.labels(breaker=self.name).inc()
        raise BreakerOpenError(
            "Circuit breaker is OPEN - service unavailable",
            details={"breaker": self.name, "failure_count": self._failure_count},
        )

    def _cooldown_elapsed(self) -> bool:
        if self._last_failure_at is None:
            return True
        return self._now_ms() - self._last_failure_at > self.config.cooldown_ms

    async def _on_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            self._set_state(CircuitState.CLOSED)

    async def _on_failure(self, error: Optional[BaseException] = None) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._now_ms()

            if self._state is CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
            elif self._failure_count >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

        logger.debug(
            f"Circuit breaker '{self.name}' recorded failure",
            breaker=self.name,
            failure_count=self._failure_count,
            error_type=type(error).__name__ if error else None,
        )

    def reset(self) -> None:
        """Reset circuit breaker to closed state."""
        self._failure_count = 0
        self._last_failure_at = None
        self._set_state(CircuitState.CLOSED)

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_at(self) -> Optional[float]:
        """Time of the last recorded failure in milliseconds."""
        return self._last_failure_at

    @property
    def is_open(self) -> bool:
        return self._state is CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state is CircuitState.CLOSED

    @property
    def is_half_open(self) -> bool:
        return self._state is CircuitState.HALF_OPEN

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.config.failure_threshold,
            "cooldown_ms": self.config.cooldown_ms,
            "last_failure_at": self._last_failure_at
        }

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation()`` under breaker protection.

        Errors raised by the operation propagate unchanged after being
        recorded; an open breaker raises BreakerOpenError without calling it.
        """
        async with self:
            return await operation()

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        async with self:
            if asyncio.iscoroutinefunction(func):
                return await func(*args, **kwargs)
            return func(*args, **kwargs)
