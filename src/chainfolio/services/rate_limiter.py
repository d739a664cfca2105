"""Sliding-window rate limiter for upstream API requests.

Each handler owns one limiter, since a window throttles a single upstream
API rather than one address. The limiter never sleeps; callers such as
``RetryExecutor`` decide whether to wait and re-check.

Example:
    ```python
    limiter = SlidingWindowRateLimiter(max_requests=30, window_seconds=60)
    if limiter.try_admit():
        response = await client.get("/balances")
    ```
"""

import time
from collections import deque
from collections.abc import Callable

import structlog

from chainfolio.constants.handler import RATE_LIMIT_FALLBACK_POLL_SECONDS

log = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """Admit at most ``max_requests`` within any ``window_seconds`` span.

    A limiter configured with ``max_requests <= 0`` or ``window_seconds <= 0``
    is blocked and denies every request.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the limiter.

        Args:
            max_requests: Requests admitted per window.
            window_seconds: Window length in seconds.
            clock: Monotonic time source, injectable for tests.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._window: deque[float] = deque()

    @property
    def is_blocked(self) -> bool:
        """True when the configuration can never admit a request."""
        return self.max_requests <= 0 or self.window_seconds <= 0

    @property
    def poll_interval(self) -> float:
        """Seconds a caller should wait before re-checking admission."""
        if self.is_blocked:
            return RATE_LIMIT_FALLBACK_POLL_SECONDS
        return self.window_seconds / self.max_requests

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._window and self._window[0] < cutoff:
            self._window.popleft()

    def can_admit(self, now: float | None = None) -> bool:
        """Check whether a new request fits in the current window.

        Args:
            now: Timestamp to check at (defaults to the clock).

        Returns:
            True if a request may be issued now.
        """
        if self.is_blocked:
            return False
        now = self._clock() if now is None else now
        self._prune(now)
        return len(self._window) < self.max_requests

    def record_admission(self, now: float | None = None) -> None:
        """Record that a request was issued at ``now``."""
        self._window.append(self._clock() if now is None else now)

    def try_admit(self, now: float | None = None) -> bool:
        """Check and record in one step.

        Returns:
            True if the request was admitted and recorded.
        """
        now = self._clock() if now is None else now
        if not self.can_admit(now):
            log.debug(
                "rate_limit_denied",
                in_window=len(self._window),
                max_requests=self.max_requests,
                window_seconds=self.window_seconds,
            )
            return False
        self.record_admission(now)
        return True

    @property
    def in_window(self) -> int:
        """Number of admissions currently recorded."""
        return len(self._window)

    def reset(self) -> None:
        """Forget every recorded admission.

        **TESTING ONLY**. Clearing a handler's cache never resets its limiter.
        """
        self._window.clear()
