"""Retry executor with exponential backoff, timeouts and rate limiting.

This module provides:
- RetryExecutor, which wraps an async operation with bounded retries
- the admission wait against a SlidingWindowRateLimiter before every attempt
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from chainfolio.constants.handler import (
    MAX_RETRIES,
    REQUEST_TIMEOUT_SECONDS,
    RETRY_BASE_DELAY_SECONDS,
)
from chainfolio.core.exceptions import (
    ConfigurationError,
    FetchError,
    FetchTimeoutError,
    RateLimitedError,
    RetryExhaustedError,
    UpstreamError,
)
from chainfolio.services.rate_limiter import SlidingWindowRateLimiter

log = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """Run async operations with retries, gated by a rate limiter.

    Attempts are made up to ``max_retries + 1`` times. A failed attempt is
    followed by a ``base_delay * 2**attempt_index`` sleep. Waiting for rate
    limiter admission is not counted as an attempt.

    Attributes:
        rate_limiter: Limiter every attempt must be admitted by.
        max_retries: Default retries after the first attempt.
        base_delay: Default backoff base in seconds.
        timeout: Default per-attempt timeout in seconds.

    Example:
        executor = RetryExecutor(SlidingWindowRateLimiter(30, 60.0))
        balances = await executor.run_with_retry(
            lambda: client.fetch_balances(address),
            endpoint="solana",
        )
    """

    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter,
        max_retries: int = MAX_RETRIES,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        timeout: float | None = REQUEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize RetryExecutor.

        Args:
            rate_limiter: Limiter shared by every call through this executor.
            max_retries: Retries after the first attempt (default: 3).
            base_delay: Backoff base in seconds (default: 2.0).
            timeout: Per-attempt timeout in seconds, None to disable (default: 30).
            sleep: Async sleep function, injectable for tests.
        """
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    async def _await_admission(self, endpoint: str) -> None:
        """Wait until the limiter admits a request.

        Raises:
            RateLimitedError: If admission is still denied after waiting a
                full window plus one poll interval.
        """
        limiter = self.rate_limiter
        poll = limiter.poll_interval
        budget = limiter.window_seconds + poll
        waited = 0.0

        while not limiter.try_admit():
            if waited >= budget:
                raise RateLimitedError(endpoint)
            log.debug("rate_limit_wait", endpoint=endpoint, seconds=poll)
            await self._sleep(poll)
            waited += poll

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        endpoint: str,
        timeout: float | None,
    ) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(endpoint, timeout or 0.0) from e

    async def run_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        endpoint: str,
        max_retries: int | None = None,
        base_delay: float | None = None,
        timeout: float | None = None,
        on_retry: Callable[[int, Exception], None] | None = None,
        on_success: Callable[[], None] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            endpoint: Identity used in errors and logs.
            max_retries: Override for the executor's default.
            base_delay: Override for the executor's default.
            timeout: Override for the executor's default.
            on_retry: Called with (attempt_number, error) before each backoff.
            on_success: Called once the operation succeeds.

        Returns:
            The operation's result.

        Raises:
            ConfigurationError: Immediately, including NotConfiguredError.
            RateLimitedError: Immediately, if the limiter is blocked.
            RetryExhaustedError: After ``max_retries + 1`` failed attempts.
        """
        max_retries = self.max_retries if max_retries is None else max_retries
        base_delay = self.base_delay if base_delay is None else base_delay
        timeout = self.timeout if timeout is None else timeout

        if self.rate_limiter.is_blocked:
            log.warning("rate_limiter_blocked", endpoint=endpoint)
            raise RateLimitedError(endpoint, "rate limiter is blocked")

        max_attempts = max_retries + 1
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                await self._await_admission(endpoint)
                log.debug(
                    "request_attempt",
                    endpoint=endpoint,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                )
                result = await self._attempt(operation, endpoint, timeout)
            except ConfigurationError:
                # Missing credentials cannot be fixed by retrying
                raise
            except FetchError as e:
                last_error = e
            except Exception as e:
                last_error = UpstreamError(service=endpoint, message=str(e) or type(e).__name__)
                last_error.__cause__ = e
            else:
                if on_success is not None:
                    on_success()
                if attempt:
                    log.info("request_recovered", endpoint=endpoint, attempts=attempt + 1)
                return result

            log.warning(
                "request_attempt_failed",
                endpoint=endpoint,
                attempt=attempt + 1,
                max_attempts=max_attempts,
                error=str(last_error),
            )

            if attempt < max_attempts - 1:
                delay = base_delay * 2**attempt
                if on_retry is not None:
                    on_retry(attempt + 1, last_error)
                log.debug("request_retry_backoff", endpoint=endpoint, seconds=delay)
                await self._sleep(delay)

        assert last_error is not None
        log.error(
            "request_max_retries_exceeded",
            endpoint=endpoint,
            attempts=max_attempts,
            error=str(last_error),
        )
        raise RetryExhaustedError(endpoint, max_attempts, last_error) from last_error
