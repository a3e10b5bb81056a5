"""
Timeout handling for asynchronous operations.

``with_timeout`` bounds the wall-clock duration of an awaitable. By default
the overrunning operation is cancelled, and the cancellation reaches the
subprocess call, which terminates the child. Passing
``cancel_on_timeout=False`` keeps the operation running in the background
after the caller has received the timeout error.
"""

import asyncio
from typing import Awaitable, TypeVar

from japanese_parser.errors import TimedOutError
from japanese_parser.observability.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


async def with_timeout(
    operation: Awaitable[T],
    timeout_ms: float,
    label: str,
    *,
    cancel_on_timeout: bool = True
) -> T:
    """
    Race ``operation`` against a timer of ``timeout_ms`` milliseconds.

    Args:
        operation: Coroutine or future to await
        timeout_ms: Time budget in milliseconds
        label: Operation name reported in the timeout error
        cancel_on_timeout: Cancel the operation when the timer fires

    Returns:
        The operation's result, unchanged

    Raises:
        TimedOutError: If the timer fires first
    """
    task = asyncio.ensure_future(operation)
    awaited = task if cancel_on_timeout else asyncio.shield(task)

    try:
        return await asyncio.wait_for(awaited, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError:
        if not cancel_on_timeout:
            # Still running; retrieve its outcome so failures are not reported as unhandled
            task.add_done_callback(_consume_abandoned_result)
        logger.warning(
            f"Operation '{label}' timed out",
            label=label,
            timeout_ms=timeout_ms,
            cancelled=cancel_on_timeout,
        )
        raise TimedOutError.for_operation(label, timeout_ms) from None


def _consume_abandoned_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(
            "Abandoned operation failed after its timeout",
            error_type=type(error).__name__,
        )
