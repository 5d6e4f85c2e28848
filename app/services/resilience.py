"""
Resilient Call Executor
Timeout and retry-with-backoff wrappers for remote calls
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from app.services.errors import MissingTemplate, OperationTimeout, ValidationFailed

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TimeoutDurations:
    """Default timeout values per operation type (milliseconds)."""
    SHORT = 5000  # Quick operations
    MEDIUM = 15000  # Standard operations
    LONG = 30000  # Complex operations
    API = 10000  # Remote API calls
    UPLOAD = 60000  # File uploads


# Message fragments marking an error as permanent
NON_RETRYABLE_MARKERS = ("unauthorized", "forbidden", "invalid", "not found")


async def with_timeout(
    operation: Awaitable[T],
    timeout_ms: int = TimeoutDurations.MEDIUM,
    message: Optional[str] = None
) -> T:
    """
    Race an awaitable against a timer.

    When the timer wins, the local awaitable is cancelled and OperationTimeout
    is raised. Cancellation is cooperative: a request already on the wire is
    not guaranteed to be aborted at the remote end.

    Args:
        operation: Awaitable to bound (coroutine, task or future)
        timeout_ms: Bound in milliseconds
        message: Optional error message

    Returns:
        The operation's result

    Raises:
        OperationTimeout: If the bound is exceeded
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        error_message = message or f"Operation timed out after {timeout_ms}ms"
        logger.warning("operation_timed_out", timeout_ms=timeout_ms, message=error_message)
        raise OperationTimeout(error_message, details={"timeout_ms": timeout_ms}) from None


def default_should_retry(error: BaseException) -> bool:
    """
    Default retry policy.

    Input errors are permanent, as is anything whose message mentions
    unauthorized, forbidden, invalid or not found. Everything else is
    treated as transient.
    """
    if isinstance(error, (ValidationFailed, MissingTemplate)):
        return False

    message = str(error).lower()
    return not any(marker in message for marker in NON_RETRYABLE_MARKERS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    retry_delay_ms: int = 1000,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    should_retry: Callable[[BaseException], bool] = default_should_retry
) -> T:
    """
    Invoke fn, retrying retryable failures with exponential backoff.

    max_retries is the total number of attempts. Between attempt n and n+1
    the executor waits retry_delay_ms * 2^(n-1); there is no wait after the
    last attempt. The last error is re-raised once attempts are exhausted or
    should_retry rejects it.

    Args:
        fn: Zero-argument callable returning an awaitable
        max_retries: Total attempts
        retry_delay_ms: Base backoff delay
        on_retry: Called with (attempt_number, error) before each wait
        should_retry: Retry policy

    Returns:
        fn's result from the first successful attempt
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_retries + 1):
        try:
            return await fn()
        except Exception as e:
            last_error = e

            if attempt >= max_retries or not should_retry(e):
                logger.info(
                    "retry_abandoned",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(e),
                    exhausted=attempt >= max_retries
                )
                break

            if on_retry is not None:
                on_retry(attempt, e)

            delay_ms = retry_delay_ms * 2 ** (attempt - 1)
            logger.info(
                "retry_scheduled",
                attempt=attempt,
                delay_ms=delay_ms,
                error=str(e)
            )
            await asyncio.sleep(delay_ms / 1000)

    if last_error is None:
        raise ValueError("max_retries must be at least 1")
    raise last_error


async def retry_with_timeout(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    timeout_ms: int = TimeoutDurations.MEDIUM,
    retry_delay_ms: int = 1000,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    should_retry: Callable[[BaseException], bool] = default_should_retry
) -> T:
    """
    Bound each attempt individually, then retry.

    Equivalent to with_retry(lambda: with_timeout(fn(), timeout_ms)); used for
    idempotent remote calls so one slow attempt does not consume the whole budget.
    """
    return await with_retry(
        lambda: with_timeout(fn(), timeout_ms),
        max_retries=max_retries,
        retry_delay_ms=retry_delay_ms,
        on_retry=on_retry,
        should_retry=should_retry
    )
