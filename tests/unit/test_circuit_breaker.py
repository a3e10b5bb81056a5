"""Unit tests for the circuit breaker."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from japanese_parser.errors import BreakerOpenError, CommandFailedError
from japanese_parser.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


async def failing_func():
    raise ValueError("Test error")


async def success_func():
    return "success"


async def trip(breaker, times=2):
    for _ in range(times):
        with pytest.raises(ValueError):
            await breaker.execute(failing_func)


@pytest.mark.unit
class TestCircuitBreaker:
    """Test circuit breaker state transitions."""

    @pytest.mark.asyncio
    async def test_closed_state_passes_result_through(self, circuit_breaker):
        result = await circuit_breaker.execute(success_func)

        assert result == "success"
        assert circuit_breaker.is_closed
        assert circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self, circuit_breaker):
        """Closed -> Closed -> Open with a threshold of 2."""
        with pytest.raises(ValueError):
            await circuit_breaker.execute(failing_func)
        assert circuit_breaker.state is CircuitState.CLOSED
        assert circuit_breaker.failure_count == 1

        with pytest.raises(ValueError):
            await circuit_breaker.execute(failing_func)
        assert circuit_breaker.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, circuit_breaker):
        with pytest.raises(ValueError):
            await circuit_breaker.execute(failing_func)

        await circuit_breaker.execute(success_func)

        assert circuit_breaker.failure_count == 0
        with pytest.raises(ValueError):
            await circuit_breaker.execute(failing_func)
        assert circuit_breaker.is_closed

    @pytest.mark.asyncio
    async def test_rejects_without_invoking_when_open(self, circuit_breaker):
        await trip(circuit_breaker)
        operation = AsyncMock(return_value="never")

        with pytest.raises(BreakerOpenError) as exc_info:
            await circuit_breaker.execute(operation)

        operation.assert_not_called()
        assert exc_info.value.code == "BREAKER_OPEN"

    @pytest.mark.asyncio
    async def test_stays_open_until_cooldown_exceeded(self, circuit_breaker, clock):
        await trip(circuit_breaker)

        clock.advance_ms(60_000)
        with pytest.raises(BreakerOpenError):
            await circuit_breaker.execute(success_func)

        clock.advance_ms(1)
        assert await circuit_breaker.execute(success_func) == "success"

    @pytest.mark.asyncio
    async def test_half_open_probe_success_closes(self, circuit_breaker, clock):
        await trip(circuit_breaker)
        clock.advance_ms(61_000)

        result = await circuit_breaker.execute(success_func)

        assert result == "success"
        assert circuit_breaker.state is CircuitState.CLOSED
        assert circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_reopens(self, circuit_breaker, clock):
        await trip(circuit_breaker)
        first_failure_at = circuit_breaker.last_failure_at
        clock.advance_ms(61_000)

        with pytest.raises(ValueError):
            await circuit_breaker.execute(failing_func)

        assert circuit_breaker.state is CircuitState.OPEN
        assert circuit_breaker.last_failure_at == first_failure_at + 61_000
        with pytest.raises(BreakerOpenError):
            await circuit_breaker.execute(success_func)

    @pytest.mark.asyncio
    async def test_transition_to_half_open_is_lazy(self, circuit_breaker, clock):
        await trip(circuit_breaker)
        clock.advance_ms(120_000)

        # No call yet, so no state change
        assert circuit_breaker.state is CircuitState.OPEN

        async def probe():
            assert circuit_breaker.is_half_open
            return "probed"

        assert await circuit_breaker.execute(probe) == "probed"

    @pytest.mark.asyncio
    async def test_underlying_error_propagates_unchanged(self, circuit_breaker):
        error = CommandFailedError("boom", details={"exit_code": 3})

        async def operation():
            raise error

        with pytest.raises(CommandFailedError) as exc_info:
            await circuit_breaker.execute(operation)

        assert exc_info.value is error
        assert exc_info.value.exit_code == 3

    @pytest.mark.asyncio
    async def test_concurrent_failures_may_overshoot_threshold(self, circuit_breaker):
        gate = asyncio.Event()

        async def slow_failure():
            await gate.wait()
            raise ValueError("late failure")

        calls = [asyncio.create_task(circuit_breaker.execute(slow_failure)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*calls, return_exceptions=True)

        assert all(isinstance(r, ValueError) for r in results)
        assert circuit_breaker.failure_count == 3
        assert circuit_breaker.is_open

    @pytest.mark.asyncio
    async def test_call_supports_sync_functions(self, circuit_breaker):
        assert await circuit_breaker.call(lambda x: x * 2, 21) == 42

    @pytest.mark.asyncio
    async def test_identical_sequences_produce_identical_state(self, clock):
        async def run_sequence():
            breaker = CircuitBreaker("replay", CircuitBreakerConfig(failure_threshold=2), clock=clock)
            for outcome in (True, False, True, False, False):
                operation = success_func if outcome else failing_func
                try:
                    await breaker.execute(operation)
                except ValueError:
                    pass
            return breaker.state, breaker.failure_count

        assert await run_sequence() == await run_sequence()

    def test_reset_and_stats(self, circuit_breaker):
        circuit_breaker.reset()
        stats = circuit_breaker.get_stats()

        assert stats["state"] == "closed"
        assert stats["failure_threshold"] == 2
        assert stats["cooldown_ms"] == 60_000

    def test_configuration_validation(self):
        config = CircuitBreakerConfig(failure_threshold=5, cooldown_ms=30_000)
        breaker = CircuitBreaker("test_service", config)
        assert breaker.config.failure_threshold == 5

        with pytest.raises(ValueError):
            CircuitBreakerConfig(failure_threshold=0)
        with pytest.raises(ValueError):
            CircuitBreakerConfig(cooldown_ms=-1)
