"""Unit tests for the timeout guard."""

import asyncio

import pytest

from japanese_parser.errors import TimedOutError
from japanese_parser.resilience.timeout import with_timeout


async def delayed(value, delay):
    await asyncio.sleep(delay)
    return value


@pytest.mark.unit
class TestWithTimeout:
    """Test racing operations against a timer."""

    @pytest.mark.asyncio
    async def test_fast_operation_returns_value_unchanged(self):
        payload = {"words": []}

        result = await with_timeout(delayed(payload, 0.01), 1_000, "fast")

        assert result is payload

    @pytest.mark.asyncio
    async def test_operation_error_propagates_unchanged(self):
        async def failing():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await with_timeout(failing(), 1_000, "failing")

    @pytest.mark.asyncio
    async def test_slow_operation_times_out_with_label_and_duration(self):
        with pytest.raises(TimedOutError) as exc_info:
            await with_timeout(delayed("late", 1.0), 50, "parseJapaneseText")

        error = exc_info.value
        assert "parseJapaneseText" in str(error)
        assert "50ms" in str(error)
        assert error.code == "ICHIRAN_TIMEOUT"
        assert error.label == "parseJapaneseText"
        assert error.timeout_ms == 50

    @pytest.mark.asyncio
    async def test_timeout_cancels_operation_by_default(self):
        cancelled = asyncio.Event()

        async def long_running():
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(TimedOutError):
            await with_timeout(long_running(), 20, "cancellable")

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_abandoned_operation_keeps_running_without_cancellation(self):
        """Legacy mode leaks the operation: it finishes after the caller gave up."""
        finished = asyncio.Event()

        async def long_running():
            await asyncio.sleep(0.1)
            finished.set()
            return "done"

        with pytest.raises(TimedOutError):
            await with_timeout(long_running(), 20, "abandoned", cancel_on_timeout=False)

        assert not finished.is_set()
        await asyncio.wait_for(finished.wait(), timeout=2)
        assert finished.is_set()
