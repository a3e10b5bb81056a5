# ==== SHARED TEST FIXTURES AND CONFIGURATION ==== #

"""
Shared test fixtures for the Japanese parser.

Provides controllable clocks, isolated settings, and stand-ins for the
Ichiran engine so the resilience layer can be exercised without Docker.
"""

import os
import sys
from typing import List, Sequence

import pytest


# ==== FORCE ENVIRONMENT SETUP BEFORE ANY IMPORTS ==== #

os.environ.update({
    "APP_ENV": "test",
    "LOG_LEVEL": "WARNING",
})

from japanese_parser.errors import FailureKind  # noqa: E402
from japanese_parser.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig  # noqa: E402
from japanese_parser.resilience.rate_limiter import RateLimiter  # noqa: E402
from japanese_parser.services.process_bridge import (  # noqa: E402
    EngineFailure,
    EngineSuccess,
    ProcessBridge,
)
from japanese_parser.settings import Settings  # noqa: E402


# ==== CLOCK FIXTURES ==== #


class FakeClock:
    """Manually advanced clock returning seconds, like ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, milliseconds: float) -> None:
        self.now += milliseconds / 1000.0


@pytest.fixture
def clock():
    """Controllable clock shared by the limiter and breaker under test."""
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(max_requests=60, window_ms=60_000, clock=clock)


@pytest.fixture
def circuit_breaker(clock):
    return CircuitBreaker(
        "test_service",
        CircuitBreakerConfig(failure_threshold=2, cooldown_ms=60_000),
        clock=clock,
    )


# ==== SETTINGS FIXTURES ==== #


@pytest.fixture
def test_settings():
    """Settings isolated from any ``.env`` file."""
    return Settings(
        _env_file=None,
        APP_ENV="test",
        ICHIRAN_TIMEOUT=2_000,
        HEALTH_CHECK_TIMEOUT=1_000,
        RATE_LIMIT_MAX=3,
        CIRCUIT_BREAKER_FAILURE_THRESHOLD=2,
    )


# ==== ENGINE STAND-INS ==== #


class ScriptedBridge(ProcessBridge):
    """Bridge whose results are scripted instead of produced by a subprocess."""

    def __init__(self, results: Sequence = ()):
        super().__init__(container_name="test-container")
        self.results: List = list(results)
        self.calls: List[List[str]] = []

    def queue(self, *results) -> None:
        self.results.extend(results)

    async def invoke(self, argv, timeout_ms=None):
        self.calls.append(list(argv))
        if not self.results:
            return EngineFailure(FailureKind.EXECUTION_ERROR, "no scripted result")
        result = self.results.pop(0)
        if isinstance(result, str):
            return EngineSuccess(result)
        return result


@pytest.fixture
def scripted_bridge():
    return ScriptedBridge()


@pytest.fixture
def python_command():
    """Prefix that runs an inline Python script in place of ``docker exec``."""
    def build(script: str) -> List[str]:
        return [sys.executable, "-c", script]
    return build
