"""Per-chain and per-exchange handler composing cache, dedup, retry and rate limiting.

A ChainHandler wraps two injected fetch functions, one for balances and one
for prices, with:
- a FreshnessCache per result kind (stale-while-revalidate)
- a RequestDeduplicator so concurrent callers share one fetch
- a RetryExecutor gated by the handler's own SlidingWindowRateLimiter
- owned background refresh tasks whose failures are logged, never raised
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from chainfolio.config.settings import Settings
from chainfolio.constants.handler import (
    BALANCE_CACHE_MAX_ITEMS,
    BALANCES_KEY_PREFIX,
    HANDLER_STALE_WINDOW_SECONDS,
    HANDLER_TTL_SECONDS,
    MAX_RETRIES,
    PRICE_CACHE_MAX_ITEMS,
    PRICES_CACHE_KEY,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    RETRY_BASE_DELAY_SECONDS,
)
from chainfolio.core.exceptions import (
    ChainfolioError,
    ConfigurationError,
    UpstreamError,
)
from chainfolio.models.token import (
    BalanceSnapshot,
    PriceSnapshot,
    Symbol,
    TokenBalance,
    TokenPrice,
)
from chainfolio.services.cache import FreshnessCache
from chainfolio.services.dedup import RequestDeduplicator
from chainfolio.services.rate_limiter import SlidingWindowRateLimiter
from chainfolio.services.retry import RetryExecutor

log = structlog.get_logger(__name__)

T = TypeVar("T")

BalancesFetcher = Callable[[str], Awaitable[list[TokenBalance]]]
PricesFetcher = Callable[[], Awaitable[dict[Symbol, TokenPrice]]]
ExplorerUrlBuilder = Callable[[str, str], str]


class RateLimitConfig(BaseModel):
    """Sliding window admitted by a handler's rate limiter."""

    model_config = ConfigDict(frozen=True)

    max_requests: int = Field(default=RATE_LIMIT_MAX_REQUESTS, ge=0)
    window_seconds: float = Field(default=RATE_LIMIT_WINDOW_SECONDS, ge=0)


class HandlerConfig(BaseModel):
    """Tunables for one handler instance."""

    model_config = ConfigDict(frozen=True)

    chain_name: str = Field(min_length=1)
    ttl_seconds: float = Field(default=HANDLER_TTL_SECONDS, gt=0)
    stale_window_seconds: float = Field(default=HANDLER_STALE_WINDOW_SECONDS, ge=0)
    max_retries: int = Field(default=MAX_RETRIES, ge=0)
    base_delay_seconds: float = Field(default=RETRY_BASE_DELAY_SECONDS, ge=0)
    timeout_seconds: float = Field(default=REQUEST_TIMEOUT_SECONDS, gt=0)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    max_cache_items: int = Field(default=BALANCE_CACHE_MAX_ITEMS, ge=1)

    @classmethod
    def from_settings(cls, chain_name: str, settings: Settings) -> "HandlerConfig":
        """Build a config from application settings."""
        return cls(
            chain_name=chain_name,
            ttl_seconds=settings.handler_ttl_seconds,
            stale_window_seconds=settings.handler_stale_window_seconds,
            max_retries=settings.handler_max_retries,
            base_delay_seconds=settings.handler_base_delay_seconds,
            timeout_seconds=settings.handler_timeout_seconds,
            rate_limit=RateLimitConfig(
                max_requests=settings.rate_limit_max_requests,
                window_seconds=settings.rate_limit_window_seconds,
            ),
        )

    @classmethod
    def for_exchange(cls, exchange: str, settings: Settings) -> "HandlerConfig":
        """Exchange config: scaled tunables and the stricter exchange rate limit."""
        return (
            cls.from_settings(exchange, settings)
            .scaled(settings.exchange_scale_factor)
            .model_copy(
                update={
                    "rate_limit": RateLimitConfig(
                        max_requests=settings.exchange_rate_limit_max_requests,
                        window_seconds=settings.rate_limit_window_seconds,
                    )
                }
            )
        )

    def scaled(self, factor: float) -> "HandlerConfig":
        """Multiply TTL, stale window, retries and timeout by ``factor``."""
        return self.model_copy(
            update={
                "ttl_seconds": self.ttl_seconds * factor,
                "stale_window_seconds": self.stale_window_seconds * factor,
                "max_retries": max(0, round(self.max_retries * factor)),
                "timeout_seconds": self.timeout_seconds * factor,
            }
        )


class ChainHandler:
    """Fetch-normalize-cache orchestration for one chain or exchange.

    Each instance owns its caches, rate limiter, deduplicator and background
    tasks; nothing is shared between handlers.

    Read protocol (balances and prices alike):
        - fresh cache hit: returned with no network call
        - stale cache hit: returned immediately, deduplicated refresh spawned
        - miss: blocking deduplicated fetch through the retry executor
        - fetch failure after retries: last known value returned as stale,
          otherwise the typed error propagates

    Example:
        handler = ChainHandler(
            HandlerConfig(chain_name="solana"),
            fetch_balances_impl=solana.fetch_balances,
            fetch_prices_impl=solana.fetch_prices,
            explorer_url_impl=lambda address, _: f"https://solscan.io/account/{address}",
        )
        snapshot = await handler.fetch_balances(address)
    """

    def __init__(
        self,
        config: HandlerConfig,
        fetch_balances_impl: BalancesFetcher,
        fetch_prices_impl: PricesFetcher,
        explorer_url_impl: ExplorerUrlBuilder,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize ChainHandler.

        Args:
            config: Handler tunables.
            fetch_balances_impl: Fetches normalized balances for an identity.
            fetch_prices_impl: Fetches normalized prices keyed by symbol.
            explorer_url_impl: Builds an explorer URL, no I/O.
            clock: Monotonic time source shared by caches and limiter.
            sleep: Async sleep used for backoff and admission waits.
            on_close: Releases upstream clients when the handler closes.
        """
        self.config = config
        self.chain_name = config.chain_name
        self._fetch_balances_impl = fetch_balances_impl
        self._fetch_prices_impl = fetch_prices_impl
        self._explorer_url_impl = explorer_url_impl
        self._on_close = on_close

        self._balance_cache: FreshnessCache[list[TokenBalance]] = FreshnessCache(
            ttl_seconds=config.ttl_seconds,
            stale_window_seconds=config.stale_window_seconds,
            max_items=config.max_cache_items,
            namespace=f"{config.chain_name}-balances",
            clock=clock,
        )
        self._price_cache: FreshnessCache[dict[Symbol, TokenPrice]] = FreshnessCache(
            ttl_seconds=config.ttl_seconds,
            stale_window_seconds=config.stale_window_seconds,
            max_items=PRICE_CACHE_MAX_ITEMS,
            namespace=f"{config.chain_name}-prices",
            clock=clock,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            max_requests=config.rate_limit.max_requests,
            window_seconds=config.rate_limit.window_seconds,
            clock=clock,
        )
        self._executor = RetryExecutor(
            self.rate_limiter,
            max_retries=config.max_retries,
            base_delay=config.base_delay_seconds,
            timeout=config.timeout_seconds,
            sleep=sleep,
        )
        self._dedup: RequestDeduplicator[Any] = RequestDeduplicator(name=config.chain_name)
        self._background: set[asyncio.Task[Any]] = set()
        self.retry_count = 0

    # ------------------------------------------------------------------
    # Retry bookkeeping
    # ------------------------------------------------------------------

    def _on_retry(self, attempt: int, error: Exception) -> None:
        self.retry_count += 1

    def _on_success(self) -> None:
        self.retry_count = 0

    async def _run(self, operation: Callable[[], Awaitable[T]], endpoint: str) -> T:
        return await self._executor.run_with_retry(
            operation,
            endpoint=endpoint,
            on_retry=self._on_retry,
            on_success=self._on_success,
        )

    # ------------------------------------------------------------------
    # Loaders (one logical fetch, stored on success)
    # ------------------------------------------------------------------

    async def _load_balances(self, identity: str, key: str) -> list[TokenBalance]:
        async def attempt() -> list[TokenBalance]:
            result = await self._fetch_balances_impl(identity)
            if result is None:
                raise UpstreamError(service=self.chain_name, message="invalid response structure")
            return list(result)

        balances = await self._run(attempt, endpoint=f"{self.chain_name}:balances")
        self._balance_cache.set(key, balances)
        log.debug("balances_cached", chain=self.chain_name, count=len(balances))
        return balances

    async def _load_prices(self) -> dict[Symbol, TokenPrice]:
        async def attempt() -> dict[Symbol, TokenPrice]:
            result = await self._fetch_prices_impl()
            if result is None:
                raise UpstreamError(service=self.chain_name, message="no price data received")
            return dict(result)

        prices = await self._run(attempt, endpoint=f"{self.chain_name}:prices")
        self._price_cache.set(PRICES_CACHE_KEY, prices)
        log.debug("prices_cached", chain=self.chain_name, count=len(prices))
        return prices

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def _refresh_in_background(self, key: str, factory: Callable[[], Awaitable[Any]]) -> None:
        if self._dedup.is_pending(key):
            log.debug("background_refresh_already_pending", chain=self.chain_name, key=key)
            return

        task = self._dedup.spawn(key, factory)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        log.debug("background_refresh_started", chain=self.chain_name, key=key)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            log.debug("background_refresh_cancelled", chain=self.chain_name)
            return
        error = task.exception()
        if error is not None:
            # Caller already has a stale answer
            log.warning(
                "background_refresh_failed",
                chain=self.chain_name,
                error=str(error),
                error_type=type(error).__name__,
            )

    async def drain(self) -> None:
        """Wait for outstanding background refreshes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def fetch_balances(self, identity: str | None) -> BalanceSnapshot:
        """Fetch balances for a wallet address or account identity.

        Args:
            identity: Address or account name. None or blank means no wallet
                is connected yet and yields an empty snapshot.

        Returns:
            BalanceSnapshot, flagged ``is_stale`` when served from stale cache.

        Raises:
            ChainfolioError: If the fetch fails and nothing was ever cached.
        """
        if identity is None or not identity.strip():
            log.debug("balances_no_identity", chain=self.chain_name)
            return BalanceSnapshot(balances=[])

        identity = identity.strip()
        key = f"{BALANCES_KEY_PREFIX}{identity}"

        lookup = self._balance_cache.get(key)
        if lookup.data is not None:
            if lookup.is_stale:
                log.info("balances_cache_stale", chain=self.chain_name)
                self._refresh_in_background(key, lambda: self._load_balances(identity, key))
            else:
                log.debug("balances_cache_hit", chain=self.chain_name)
            return BalanceSnapshot(balances=lookup.data, is_stale=lookup.is_stale)

        try:
            balances = await self._dedup.run(key, lambda: self._load_balances(identity, key))
        except ConfigurationError:
            raise
        except ChainfolioError as e:
            fallback = self._balance_cache.get_last_known(key)
            if fallback is None:
                log.error("balances_fetch_failed", chain=self.chain_name, error=str(e))
                raise
            log.warning("balances_last_known_fallback", chain=self.chain_name, error=str(e))
            return BalanceSnapshot(balances=fallback, is_stale=True)

        return BalanceSnapshot(balances=balances)

    async def fetch_prices(self) -> PriceSnapshot:
        """Fetch prices for the tokens this handler knows about.

        Returns:
            PriceSnapshot keyed by symbol; unknown prices are absent.

        Raises:
            ChainfolioError: If the fetch fails and nothing was ever cached.
        """
        lookup = self._price_cache.get(PRICES_CACHE_KEY)
        if lookup.data is not None:
            if lookup.is_stale:
                log.info("prices_cache_stale", chain=self.chain_name)
                self._refresh_in_background(PRICES_CACHE_KEY, self._load_prices)
            return PriceSnapshot(prices=lookup.data, is_stale=lookup.is_stale)

        try:
            prices = await self._dedup.run(PRICES_CACHE_KEY, self._load_prices)
        except ConfigurationError:
            raise
        except ChainfolioError as e:
            fallback = self._price_cache.get_last_known(PRICES_CACHE_KEY)
            if fallback is None:
                log.error("prices_fetch_failed", chain=self.chain_name, error=str(e))
                raise
            log.warning("prices_last_known_fallback", chain=self.chain_name, error=str(e))
            return PriceSnapshot(prices=fallback, is_stale=True)

        return PriceSnapshot(prices=prices)

    def get_explorer_url(self, identity: str, account_context: str = "") -> str:
        """Build the explorer URL for an identity. No I/O, no caching."""
        return self._explorer_url_impl(identity, account_context)

    def last_known_balances(self, identity: str) -> list[TokenBalance] | None:
        """Most recent balances stored for ``identity``, at any age."""
        return self._balance_cache.get_last_known(f"{BALANCES_KEY_PREFIX}{identity.strip()}")

    def clear_cache(self) -> None:
        """Clear balance and price caches. The rate limiter window is kept."""
        self._balance_cache.clear()
        self._price_cache.clear()
        log.debug("handler_cache_cleared", chain=self.chain_name)

    def get_stats(self) -> dict:
        """Get handler statistics.

        Returns:
            dict with cache, retry and in-flight stats
        """
        return {
            "chain": self.chain_name,
            "balances": self._balance_cache.get_stats(),
            "prices": self._price_cache.get_stats(),
            "retry_count": self.retry_count,
            "pending_requests": self._dedup.pending_count,
            "background_refreshes": len(self._background),
            "rate_limit_in_window": self.rate_limiter.in_window,
        }

    async def aclose(self) -> None:
        """Drain background work and release upstream clients."""
        await self.drain()
        if self._on_close is not None:
            await self._on_close()
