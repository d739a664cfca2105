"""Kraken exchange balances via the private REST API, prices via CoinMarketCap.

API Documentation: https://docs.kraken.com/api/docs/rest-api/get-account-balance
"""

import base64
import hashlib
import hmac
import time
from decimal import Decimal, InvalidOperation
from urllib.parse import urlencode

import structlog

from chainfolio.config.settings import Settings
from chainfolio.constants.chains import EXPLORERS, TOKEN_DECIMALS
from chainfolio.core.exceptions import NotConfiguredError, UpstreamError, ValidationError
from chainfolio.handlers.base import ChainHandler, HandlerConfig
from chainfolio.models.token import ExchangeToken, Symbol, TokenBalance, TokenPrice
from chainfolio.services.base import BaseAPIClient
from chainfolio.services.dedup import RequestDeduplicator
from chainfolio.services.pricing import CoinMarketCapClient, fill_stablecoins

log = structlog.get_logger(__name__)

ASSET_ALIASES: dict[str, str] = {
    "XBT": "BTC",
    "XDG": "DOGE",
}


def normalize_asset(asset: str) -> str:
    """Map a Kraken asset code to a common ticker.

    Examples:
        XXBT -> BTC, ZUSD -> USD, DOT.S -> DOT, XDG -> DOGE
    """
    name = asset.upper()
    if name.endswith(".S"):
        name = name[:-2]
    if name in ASSET_ALIASES:
        return ASSET_ALIASES[name]
    if name.startswith(("X", "Z")) and len(name) > 3:
        name = name[1:]
    return ASSET_ALIASES.get(name, name)


def sign_request(path: str, nonce: str, post_data: str, secret: str) -> str:
    """Kraken API-Sign: HMAC-SHA512(path + SHA256(nonce + postdata)), base64."""
    sha256 = hashlib.sha256((nonce + post_data).encode()).digest()
    mac = hmac.new(base64.b64decode(secret), path.encode() + sha256, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode()


class KrakenClient(BaseAPIClient):
    """Kraken private API client."""

    BASE_URL = "https://api.kraken.com"
    BALANCE_PATH = "/0/private/Balance"

    def __init__(self, api_key: str = "", api_secret: str = "", timeout: float = 30.0) -> None:
        super().__init__(service="kraken", base_url=self.BASE_URL, timeout=timeout)
        self._api_key = api_key
        self._api_secret = api_secret

    async def get_balances(self) -> dict[str, str]:
        """Raw asset code to balance string.

        Raises:
            NotConfiguredError: If the key or secret is missing.
            UpstreamError: If Kraken reports errors or returns no result.
        """
        if not self._api_key:
            raise NotConfiguredError(service=self.service, setting="KRAKEN_API_KEY")
        if not self._api_secret:
            raise NotConfiguredError(service=self.service, setting="KRAKEN_API_SECRET")

        nonce = str(int(time.time() * 1000))
        post_data = urlencode({"nonce": nonce})
        try:
            signature = sign_request(self.BALANCE_PATH, nonce, post_data, self._api_secret)
        except ValueError as e:
            raise NotConfiguredError(service=self.service, setting="KRAKEN_API_SECRET") from e

        response = await self.post(
            self.BALANCE_PATH,
            content=post_data,
            headers={
                "API-Key": self._api_key,
                "API-Sign": signature,
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )
        data = self._decode(response)

        if not isinstance(data, dict):
            raise UpstreamError(service=self.service, message="malformed Balance response")
        if data.get("error"):
            raise UpstreamError(service=self.service, message=", ".join(map(str, data["error"])))
        result = data.get("result")
        if not isinstance(result, dict):
            raise UpstreamError(service=self.service, message="no data in response")
        return result


def sum_holdings(raw: dict[str, str]) -> dict[str, Decimal]:
    """Positive totals per normalized symbol. Staked and spot entries are summed."""
    totals: dict[str, Decimal] = {}
    for asset, amount in raw.items():
        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            log.warning("kraken_balance_parse_error", asset=asset, amount=amount)
            continue
        if value <= 0:
            continue
        symbol = normalize_asset(asset)
        totals[symbol] = totals.get(symbol, Decimal(0)) + value
    return totals


class KrakenSource:
    """Fetch implementations plugged into the Kraken ChainHandler.

    Both fetches read the account's holdings. Concurrent reads share one
    Balance request.
    """

    def __init__(self, client: KrakenClient, cmc: CoinMarketCapClient) -> None:
        self.client = client
        self.cmc = cmc
        self._requests: RequestDeduplicator[dict[str, str]] = RequestDeduplicator("kraken")

    async def _holdings(self) -> dict[str, Decimal]:
        raw = await self._requests.run("balances", self.client.get_balances)
        return sum_holdings(raw)

    async def fetch_balances(self, account: str) -> list[TokenBalance]:
        """Non-zero balances, one per normalized symbol."""
        log.debug("kraken_fetching_balances", account=account)
        totals = await self._holdings()

        balances: list[TokenBalance] = []
        for symbol, value in totals.items():
            try:
                token = ExchangeToken.for_symbol(symbol, "kraken")
                balances.append(TokenBalance.from_ui_amount(token, str(value)))
            except (ValueError, ValidationError) as e:
                log.warning("kraken_balance_parse_error", asset=symbol, error=str(e))

        log.debug("kraken_balances_fetched", count=len(balances))
        return balances

    async def fetch_prices(self) -> dict[Symbol, TokenPrice]:
        """CMC quotes for common and held assets, stablecoins at 1 USD."""
        held = await self._holdings()
        symbols = sorted(set(TOKEN_DECIMALS) | set(held))
        prices = await self.cmc.fetch_quotes(symbols)
        return fill_stablecoins(symbols, prices)

    @staticmethod
    def explorer_url(account: str, account_context: str = "") -> str:
        return EXPLORERS["kraken"]

    async def close(self) -> None:
        await self.client.close()


def build_kraken_handler(settings: Settings, cmc: CoinMarketCapClient) -> ChainHandler:
    """Create the Kraken handler from settings and the shared CMC client."""
    client = KrakenClient(
        api_key=settings.kraken_api_key.get_secret_value(),
        api_secret=settings.kraken_api_secret.get_secret_value(),
    )
    source = KrakenSource(client, cmc)
    return ChainHandler(
        HandlerConfig.for_exchange("kraken", settings),
        fetch_balances_impl=source.fetch_balances,
        fetch_prices_impl=source.fetch_prices,
        explorer_url_impl=source.explorer_url,
        on_close=source.close,
    )
