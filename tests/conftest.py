"""Shared pytest fixtures for Chainfolio tests.

This module provides fixtures for:
- Test environment variables (no real credentials are ever needed)
- A controllable clock and a recording sleep for time-dependent code
- Token and balance factories
- Handler construction with injectable fetch implementations

Usage:
    @pytest.mark.asyncio
    async def test_something(fake_clock, make_handler):
        handler = make_handler(balances=fetch_impl)
        fake_clock.advance(901)
"""

import os
from collections.abc import Awaitable, Callable, Generator
from typing import Any

import pytest
import respx

from chainfolio.config.settings import get_settings
from chainfolio.handlers.base import ChainHandler, HandlerConfig, RateLimitConfig
from chainfolio.models.token import Symbol, TokenBalance, TokenPrice
from tests.factories.token import (
    SolanaTokenFactory,
    TokenBalanceFactory,
    TokenPriceFactory,
)

# =============================================================================
# Environment Configuration
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """Set up test environment variables.

    Loads .env file first, then clears every credential so no test can reach
    a real upstream by accident.
    """
    from dotenv import load_dotenv

    original_env = os.environ.copy()

    load_dotenv()

    for name in (
        "SIMPLEHASH_API_KEY",
        "CMC_API_KEY",
        "KRAKEN_API_KEY",
        "KRAKEN_API_SECRET",
        "GEMINI_API_KEY",
        "GEMINI_API_SECRET",
    ):
        os.environ[name] = ""
    os.environ.setdefault("LOG_LEVEL", "DEBUG")

    get_settings.cache_clear()
    yield

    os.environ.clear()
    os.environ.update(original_env)
    get_settings.cache_clear()


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Monotonic clock advanced manually by tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep that records requested delays and advances a FakeClock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock: FakeClock) -> RecordingSleep:
    """Provide a sleep that returns immediately and advances fake_clock."""
    return RecordingSleep(fake_clock)


# =============================================================================
# HTTP Mocking
# =============================================================================


@pytest.fixture
def mock_api() -> Generator[respx.MockRouter, None, None]:
    """Intercept every httpx request.

    Yields:
        respx.MockRouter: register routes and inspect calls on it.

    Example:
        async def test_quotes(mock_api):
            route = mock_api.get("https://api.example.com/x").mock(
                return_value=Response(200, json={})
            )
    """
    with respx.mock(assert_all_called=False) as router:
        yield router


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def token_factory() -> type[SolanaTokenFactory]:
    """Provide token factory for creating test tokens."""
    return SolanaTokenFactory


@pytest.fixture
def balance_factory() -> type[TokenBalanceFactory]:
    """Provide balance factory for creating test balances."""
    return TokenBalanceFactory


@pytest.fixture
def price_factory() -> type[TokenPriceFactory]:
    """Provide price factory for creating test prices."""
    return TokenPriceFactory


# =============================================================================
# Handlers
# =============================================================================


async def _no_balances(identity: str) -> list[TokenBalance]:
    return []


async def _no_prices() -> dict[Symbol, TokenPrice]:
    return {}


@pytest.fixture
def make_handler(
    fake_clock: FakeClock, fake_sleep: RecordingSleep
) -> Callable[..., ChainHandler]:
    """Build a ChainHandler on the fake clock with small, fast defaults.

    Defaults: ttl 900s, stale window 450s, 3 retries, base delay 2s,
    30 requests per 60s.
    """

    def _make(
        balances: Callable[[str], Awaitable[list[TokenBalance]]] = _no_balances,
        prices: Callable[[], Awaitable[dict[Symbol, TokenPrice]]] = _no_prices,
        explorer: Callable[[str, str], str] = lambda identity, _: f"https://explorer/{identity}",
        **overrides: Any,
    ) -> ChainHandler:
        rate_limit = overrides.pop(
            "rate_limit", RateLimitConfig(max_requests=30, window_seconds=60)
        )
        config = HandlerConfig(
            chain_name=overrides.pop("chain_name", "testchain"),
            rate_limit=rate_limit,
            **overrides,
        )
        return ChainHandler(
            config,
            fetch_balances_impl=balances,
            fetch_prices_impl=prices,
            explorer_url_impl=explorer,
            clock=fake_clock,
            sleep=fake_sleep,
        )

    return _make
