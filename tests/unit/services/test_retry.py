"""Tests for RetryExecutor: backoff growth, error classification, admission waits."""

import asyncio

import pytest

from chainfolio.core.exceptions import (
    FetchTimeoutError,
    NotConfiguredError,
    RateLimitedError,
    RetryExhaustedError,
    UpstreamError,
)
from chainfolio.services.rate_limiter import SlidingWindowRateLimiter
from chainfolio.services.retry import RetryExecutor


@pytest.fixture
def limiter(fake_clock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(max_requests=100, window_seconds=60, clock=fake_clock)


@pytest.fixture
def executor(limiter, fake_sleep) -> RetryExecutor:
    return RetryExecutor(limiter, max_retries=3, base_delay=0.1, timeout=5, sleep=fake_sleep)


class TestBackoff:
    """Exponential backoff and attempt counting."""

    @pytest.mark.asyncio
    async def test_always_failing_operation_backs_off_exponentially(
        self, executor, fake_sleep
    ) -> None:
        """
        Given: maxRetries=3, baseDelay=100ms, an operation that always fails
        When: run_with_retry is called
        Then: delays are 100, 200, 400ms and RetryExhaustedError follows 4 attempts
        """
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            raise UpstreamError("test", "down")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.run_with_retry(operation, endpoint="test:balances")

        assert calls == 4
        assert fake_sleep.calls == pytest.approx([0.1, 0.2, 0.4])
        assert exc_info.value.attempts == 4
        assert exc_info.value.endpoint == "test:balances"
        assert isinstance(exc_info.value.last_error, UpstreamError)

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, executor, fake_sleep) -> None:
        outcomes = [UpstreamError("test", "502"), UpstreamError("test", "502"), "ok"]

        async def operation() -> str:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await executor.run_with_retry(operation, endpoint="test")

        assert result == "ok"
        assert fake_sleep.calls == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, executor, fake_sleep) -> None:
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            raise UpstreamError("test", "down")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.run_with_retry(operation, endpoint="test", max_retries=0)

        assert calls == 1
        assert exc_info.value.attempts == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_hooks(self, executor) -> None:
        retries: list[int] = []
        successes: list[bool] = []
        outcomes = [ValueError("bad payload"), 42]

        async def operation() -> int:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await executor.run_with_retry(
            operation,
            endpoint="test",
            on_retry=lambda attempt, error: retries.append(attempt),
            on_success=lambda: successes.append(True),
        )

        assert result == 42
        assert retries == [1]
        assert successes == [True]


class TestErrorClassification:
    """Which errors are retried."""

    @pytest.mark.asyncio
    async def test_not_configured_is_not_retried(self, executor, fake_sleep) -> None:
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1
            raise NotConfiguredError("cmc", "CMC_API_KEY")

        with pytest.raises(NotConfiguredError):
            await executor.run_with_retry(operation, endpoint="test")

        assert calls == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped_as_upstream(self, executor) -> None:
        async def operation() -> None:
            raise KeyError("result")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.run_with_retry(operation, endpoint="test", max_retries=1)

        last = exc_info.value.last_error
        assert isinstance(last, UpstreamError)
        assert isinstance(last.__cause__, KeyError)

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, limiter, fake_sleep) -> None:
        executor = RetryExecutor(
            limiter, max_retries=1, base_delay=0, timeout=0.01, sleep=fake_sleep
        )
        calls = 0

        async def operation() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1)
            return "late but fine"

        assert await executor.run_with_retry(operation, endpoint="test") == "late but fine"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_timeout_error_kind(self, limiter, fake_sleep) -> None:
        executor = RetryExecutor(limiter, max_retries=0, timeout=0.01, sleep=fake_sleep)

        async def operation() -> None:
            await asyncio.sleep(1)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.run_with_retry(operation, endpoint="test")

        assert isinstance(exc_info.value.last_error, FetchTimeoutError)


class TestAdmission:
    """Rate limiter gating."""

    @pytest.mark.asyncio
    async def test_every_attempt_is_recorded(self, executor, limiter) -> None:
        async def operation() -> None:
            raise UpstreamError("test", "down")

        with pytest.raises(RetryExhaustedError):
            await executor.run_with_retry(operation, endpoint="test")

        assert limiter.in_window == 4

    @pytest.mark.asyncio
    async def test_waits_for_admission_without_consuming_attempts(
        self, fake_clock, fake_sleep
    ) -> None:
        """
        Given: a full window (2 of 2 used)
        When: an operation is run
        Then: the executor polls (window / max) until admitted and the attempt succeeds
        """
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=10, clock=fake_clock)
        limiter.try_admit()
        limiter.try_admit()
        executor = RetryExecutor(limiter, max_retries=0, sleep=fake_sleep)

        async def operation() -> str:
            return "admitted"

        assert await executor.run_with_retry(operation, endpoint="test") == "admitted"
        assert fake_sleep.calls == [5.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_blocked_limiter_fails_fast(self, fake_clock, fake_sleep) -> None:
        limiter = SlidingWindowRateLimiter(max_requests=0, window_seconds=60, clock=fake_clock)
        executor = RetryExecutor(limiter, sleep=fake_sleep)
        calls = 0

        async def operation() -> None:
            nonlocal calls
            calls += 1

        with pytest.raises(RateLimitedError):
            await executor.run_with_retry(operation, endpoint="test")

        assert calls == 0
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_admission_wait_is_bounded(self, fake_clock) -> None:
        """A sleep that never advances the clock cannot loop forever."""
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=10, clock=fake_clock)
        limiter.try_admit()
        slept: list[float] = []

        async def frozen_sleep(seconds: float) -> None:
            slept.append(seconds)

        executor = RetryExecutor(limiter, max_retries=0, sleep=frozen_sleep)

        async def operation() -> None:
            return None

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.run_with_retry(operation, endpoint="test")

        assert isinstance(exc_info.value.last_error, RateLimitedError)
        assert sum(slept) >= 10
