"""
Tests for the resilient call executor

Tests cover:
- Timeout bounding and cancellation of the timed-out awaitable
- Exponential backoff schedule and attempt counting
- Retry policy (permanent vs transient errors)
- Per-attempt timeout combined with retry
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from app.services.errors import MissingTemplate, OperationTimeout, ValidationFailed
from app.services.resilience import (
    TimeoutDurations,
    default_should_retry,
    retry_with_timeout,
    with_retry,
    with_timeout,
)


class TestWithTimeout:
    """Tests for with_timeout()."""

    @pytest.mark.asyncio
    async def test_returns_result_within_bound(self):
        async def quick():
            return "done"

        assert await with_timeout(quick(), timeout_ms=1000) == "done"

    @pytest.mark.asyncio
    async def test_raises_operation_timeout(self):
        loop = asyncio.get_running_loop()
        start = loop.time()
        with pytest.raises(OperationTimeout, match="Operation timed out after 20ms") as exc_info:
            await with_timeout(asyncio.sleep(1), timeout_ms=20)
        elapsed = loop.time() - start

        # Bounded by the timeout, not by the 1s sleep
        assert 0.019 <= elapsed < 0.2

        assert exc_info.value.details == {"timeout_ms": 20}
        assert isinstance(exc_info.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_custom_message(self):
        with pytest.raises(OperationTimeout, match="LLM update timed out"):
            await with_timeout(asyncio.sleep(1), timeout_ms=10, message="LLM update timed out")

    @pytest.mark.asyncio
    async def test_timed_out_operation_is_cancelled(self):
        cancelled = asyncio.Event()

        async def hangs():
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(OperationTimeout):
            await with_timeout(hangs(), timeout_ms=10)

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_operation_error_passes_through(self):
        async def fails():
            raise RuntimeError("upstream error")

        with pytest.raises(RuntimeError, match="upstream error"):
            await with_timeout(fails(), timeout_ms=1000)

    def test_default_durations(self):
        assert TimeoutDurations.SHORT == 5000
        assert TimeoutDurations.MEDIUM == 15000
        assert TimeoutDurations.LONG == 30000
        assert TimeoutDurations.API == 10000
        assert TimeoutDurations.UPLOAD == 60000


class TestWithRetry:
    """Tests for with_retry()."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt_does_not_wait(self):
        fn = AsyncMock(return_value="ok")

        with patch("app.services.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await with_retry(fn) == "ok"

        fn.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backoff_doubles_between_attempts(self):
        fn = AsyncMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), "ok"])
        on_retry = Mock()

        with patch("app.services.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await with_retry(fn, max_retries=3, retry_delay_ms=1000, on_retry=on_retry)

        assert result == "ok"
        assert fn.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
        assert [c.args[0] for c in on_retry.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_last_error_raised_after_exhaustion(self):
        """max_retries is the total attempt count; no wait after the last attempt."""
        errors = [ConnectionError(f"attempt {i}") for i in range(1, 4)]
        fn = AsyncMock(side_effect=errors)

        with patch("app.services.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ConnectionError, match="attempt 3"):
                await with_retry(fn, max_retries=3, retry_delay_ms=100)

        assert fn.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_single_attempt_never_waits(self):
        fn = AsyncMock(side_effect=ConnectionError("down"))

        with patch("app.services.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ConnectionError):
                await with_retry(fn, max_retries=1)

        fn.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_fast(self):
        fn = AsyncMock(side_effect=RuntimeError("401 Unauthorized"))

        with patch("app.services.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RuntimeError):
                await with_retry(fn, max_retries=5)

        fn.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_should_retry(self):
        fn = AsyncMock(side_effect=[KeyError("a"), "ok"])

        with patch("app.services.resilience.asyncio.sleep", new_callable=AsyncMock):
            result = await with_retry(fn, max_retries=2, should_retry=lambda e: isinstance(e, KeyError))

        assert result == "ok"

    @pytest.mark.asyncio
    async def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            await with_retry(AsyncMock(return_value="ok"), max_retries=0)


class TestDefaultShouldRetry:
    """Tests for the default retry policy."""

    @pytest.mark.parametrize("message", [
        "Unauthorized",
        "403 Forbidden",
        "Invalid voice_id",
        "Agent not found",
    ])
    def test_permanent_messages(self, message):
        assert default_should_retry(RuntimeError(message)) is False

    def test_validation_errors_are_permanent(self):
        assert default_should_retry(ValidationFailed("Agent ID is required")) is False
        assert default_should_retry(MissingTemplate("no template")) is False

    def test_transient_errors_retry(self):
        assert default_should_retry(ConnectionError("connection reset by peer")) is True
        assert default_should_retry(OperationTimeout("Operation timed out after 10ms")) is True


class TestRetryWithTimeout:
    """Tests for per-attempt timeout plus retry."""

    @pytest.mark.asyncio
    async def test_slow_attempt_is_retried(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                await asyncio.sleep(1)
            return "second attempt"

        result = await retry_with_timeout(flaky, max_retries=2, timeout_ms=20, retry_delay_ms=1)

        assert result == "second attempt"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_every_attempt_timing_out_raises_timeout(self):
        async def hangs():
            await asyncio.sleep(1)

        with pytest.raises(OperationTimeout):
            await retry_with_timeout(hangs, max_retries=2, timeout_ms=10, retry_delay_ms=1)
