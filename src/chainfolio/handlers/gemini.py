"""Gemini exchange balances via the private REST API, prices via CoinMarketCap.

API Documentation: https://docs.gemini.com/rest-api/#get-available-balances
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Any

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


def encode_payload(request: str, nonce: int, **extra: Any) -> str:
    """Base64 JSON body Gemini expects in X-GEMINI-PAYLOAD."""
    body = json.dumps({"request": request, "nonce": nonce, **extra})
    return base64.b64encode(body.encode()).decode()


def sign_payload(encoded_payload: str, secret: str) -> str:
    """X-GEMINI-SIGNATURE: hex HMAC-SHA384 of the encoded payload."""
    return hmac.new(secret.encode(), encoded_payload.encode(), hashlib.sha384).hexdigest()


class GeminiClient(BaseAPIClient):
    """Gemini private API client."""

    BASE_URL = "https://api.gemini.com"
    BALANCES_PATH = "/v1/balances"

    def __init__(self, api_key: str = "", api_secret: str = "", timeout: float = 30.0) -> None:
        super().__init__(service="gemini", base_url=self.BASE_URL, timeout=timeout)
        self._api_key = api_key
        self._api_secret = api_secret

    async def get_balances(self) -> list[dict[str, Any]]:
        """Raw balance entries (``currency``, ``amount``, ``available``...).

        Raises:
            NotConfiguredError: If the key or secret is missing.
            UpstreamError: If Gemini returns an error object.
        """
        if not self._api_key:
            raise NotConfiguredError(service=self.service, setting="GEMINI_API_KEY")
        if not self._api_secret:
            raise NotConfiguredError(service=self.service, setting="GEMINI_API_SECRET")

        encoded = encode_payload(self.BALANCES_PATH, int(time.time() * 1000))
        response = await self.post(
            self.BALANCES_PATH,
            headers={
                "Content-Type": "text/plain",
                "Content-Length": "0",
                "X-GEMINI-APIKEY": self._api_key,
                "X-GEMINI-PAYLOAD": encoded,
                "X-GEMINI-SIGNATURE": sign_payload(encoded, self._api_secret),
                "Cache-Control": "no-cache",
            },
        )
        data = self._decode(response)

        if isinstance(data, dict):
            message = data.get("message") or data.get("reason") or "unexpected response"
            raise UpstreamError(service=self.service, message=str(message))
        if not isinstance(data, list):
            raise UpstreamError(service=self.service, message="malformed balances response")
        return data


def parse_balances(entries: list[dict[str, Any]]) -> list[TokenBalance]:
    """Positive balances from raw entries. Unparseable entries are logged and skipped."""
    balances: list[TokenBalance] = []
    for entry in entries:
        try:
            symbol = str(entry["currency"]).strip().upper()
            balance = TokenBalance.from_ui_amount(
                ExchangeToken.for_symbol(symbol, "gemini"), entry["amount"]
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            log.warning("gemini_balance_parse_error", error=str(e))
            continue
        if balance.ui_amount <= 0:
            continue
        balances.append(balance)
    return balances


class GeminiSource:
    """Fetch implementations plugged into the Gemini ChainHandler."""

    def __init__(self, client: GeminiClient, cmc: CoinMarketCapClient) -> None:
        self.client = client
        self.cmc = cmc
        self._requests: RequestDeduplicator[list[dict[str, Any]]] = RequestDeduplicator(
            "gemini"
        )

    async def _holdings(self) -> list[TokenBalance]:
        # fetch_balances and fetch_prices run concurrently and share one request
        entries = await self._requests.run("balances", self.client.get_balances)
        return parse_balances(entries)

    async def fetch_balances(self, account: str) -> list[TokenBalance]:
        log.debug("gemini_fetching_balances", account=account)
        balances = await self._holdings()
        log.debug("gemini_balances_fetched", count=len(balances))
        return balances

    async def fetch_prices(self) -> dict[Symbol, TokenPrice]:
        held = {b.token.symbol for b in await self._holdings()}
        symbols = sorted(set(TOKEN_DECIMALS) | held)
        prices = await self.cmc.fetch_quotes(symbols)
        return fill_stablecoins(symbols, prices)

    @staticmethod
    def explorer_url(account: str, account_context: str = "") -> str:
        return EXPLORERS["gemini"]

    async def close(self) -> None:
        await self.client.close()


def build_gemini_handler(settings: Settings, cmc: CoinMarketCapClient) -> ChainHandler:
    """Create the Gemini handler from settings and the shared CMC client."""
    client = GeminiClient(
        api_key=settings.gemini_api_key.get_secret_value(),
        api_secret=settings.gemini_api_secret.get_secret_value(),
    )
    source = GeminiSource(client, cmc)
    return ChainHandler(
        HandlerConfig.for_exchange("gemini", settings),
        fetch_balances_impl=source.fetch_balances,
        fetch_prices_impl=source.fetch_prices,
        explorer_url_impl=source.explorer_url,
        on_close=source.close,
    )
