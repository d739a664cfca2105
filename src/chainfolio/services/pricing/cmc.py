"""CoinMarketCap price client.

API Documentation: https://coinmarketcap.com/api/documentation/v1/
Endpoint used: GET /v2/cryptocurrency/quotes/latest (batched by symbol)
"""

import math
from collections.abc import Iterable
from datetime import UTC, datetime

import structlog
from cachetools import TTLCache

from chainfolio.constants.chains import STABLECOINS
from chainfolio.core.exceptions import (
    FetchError,
    NotConfiguredError,
    UpstreamError,
    ValidationError,
)
from chainfolio.models.token import Symbol, TokenPrice, normalize_symbol
from chainfolio.services.base import BaseAPIClient

log = structlog.get_logger(__name__)


def fill_stablecoins(
    symbols: Iterable[str],
    prices: dict[Symbol, TokenPrice],
) -> dict[Symbol, TokenPrice]:
    """Price requested stablecoins missing from ``prices`` at 1 USD.

    Symbols that are neither quoted nor stablecoins stay absent.
    """
    filled = dict(prices)
    for raw in symbols:
        try:
            symbol = normalize_symbol(raw)
        except ValidationError:
            continue
        if symbol in STABLECOINS and symbol not in filled:
            filled[symbol] = TokenPrice(
                price=1.0,
                price_change_24h=0.0,
                last_updated=datetime.now(UTC),
                confidence=1.0,
            )
    return filled


class CoinMarketCapClient(BaseAPIClient):
    """CoinMarketCap quotes client with a per-symbol TTL cache.

    Example:
        client = CoinMarketCapClient(api_key=settings.cmc_api_key.get_secret_value())
        try:
            prices = await client.fetch_quotes(["BTC", "SOL"])
        finally:
            await client.close()
    """

    BASE_URL = "https://pro-api.coinmarketcap.com"
    QUOTES_PATH = "/v2/cryptocurrency/quotes/latest"
    BATCH_SIZE = 100
    DEFAULT_TIMEOUT = 15.0
    CACHE_TTL_SECONDS = 300
    CACHE_MAX_SIZE = 1000

    def __init__(
        self,
        api_key: str = "",
        cache_ttl_seconds: int = CACHE_TTL_SECONDS,
        cache_max_size: int = CACHE_MAX_SIZE,
    ) -> None:
        """Initialize CoinMarketCap client.

        Args:
            api_key: CMC Pro API key; empty means not configured.
            cache_ttl_seconds: How long to cache each quote (default 5 min).
            cache_max_size: Max symbols in cache.
        """
        super().__init__(
            service="coinmarketcap",
            base_url=self.BASE_URL,
            timeout=self.DEFAULT_TIMEOUT,
            headers={"Accept": "application/json"},
        )
        self._api_key = api_key
        self._cache: TTLCache = TTLCache(maxsize=cache_max_size, ttl=cache_ttl_seconds)

    def _parse_quote(self, symbol: Symbol, entry: object) -> TokenPrice | None:
        # v2 returns a list of matches per symbol; take the top-ranked one
        if isinstance(entry, list):
            entry = entry[0] if entry else None
        if not isinstance(entry, dict):
            return None

        quote = (entry.get("quote") or {}).get("USD") or {}
        price = quote.get("price")
        if not isinstance(price, (int, float)) or not math.isfinite(price) or price < 0:
            log.debug("cmc_quote_invalid_price", symbol=symbol, price=price)
            return None

        try:
            return TokenPrice(
                price=float(price),
                price_change_24h=float(quote.get("percent_change_24h") or 0.0),
                last_updated=quote.get("last_updated"),
                confidence=1.0,
            )
        except ValueError as e:
            log.warning("cmc_quote_parse_error", symbol=symbol, error=str(e))
            return None

    async def _fetch_batch(self, batch: list[Symbol]) -> dict[Symbol, TokenPrice]:
        data = await self.get_json(
            self.QUOTES_PATH,
            params={"symbol": ",".join(batch), "convert": "USD"},
            headers={"X-CMC_PRO_API_KEY": self._api_key},
        )
        payload = data.get("data") if isinstance(data, dict) else None
        if not isinstance(payload, dict):
            raise UpstreamError(service=self.service, message="invalid quotes response")

        prices: dict[Symbol, TokenPrice] = {}
        for raw_symbol, entry in payload.items():
            try:
                symbol = normalize_symbol(raw_symbol)
            except ValidationError:
                continue
            price = self._parse_quote(symbol, entry)
            if price is not None:
                prices[symbol] = price
        return prices

    async def fetch_quotes(self, symbols: Iterable[str]) -> dict[Symbol, TokenPrice]:
        """Fetch USD quotes for ``symbols``.

        Cached quotes are served without a request. Symbols CMC does not
        know are absent from the result.

        Args:
            symbols: Tickers to price.

        Returns:
            Mapping of symbol to price. Partial if some batches failed but
            cached quotes were available.

        Raises:
            NotConfiguredError: If no API key is configured.
            FetchError: If a batch fails or times out and nothing could be priced.
        """
        if not self._api_key:
            raise NotConfiguredError(service=self.service, setting="CMC_API_KEY")

        wanted: list[Symbol] = []
        for raw in symbols:
            try:
                symbol = normalize_symbol(raw)
            except ValidationError:
                log.debug("cmc_symbol_skipped", symbol=raw)
                continue
            if symbol not in wanted:
                wanted.append(symbol)

        prices: dict[Symbol, TokenPrice] = {s: self._cache[s] for s in wanted if s in self._cache}
        missing = [s for s in wanted if s not in prices]

        try:
            for start in range(0, len(missing), self.BATCH_SIZE):
                batch = missing[start : start + self.BATCH_SIZE]
                fetched = await self._fetch_batch(batch)
                for symbol, price in fetched.items():
                    self._cache[symbol] = price
                prices.update(fetched)
        except FetchError as e:
            if not prices:
                raise
            log.warning("cmc_partial_quotes", error=str(e), priced=len(prices))

        log.debug("cmc_quotes_fetched", requested=len(wanted), priced=len(prices))
        return prices
