"""Aptos balances via the fullnode REST API, prices via CoinMarketCap."""

import re
from typing import Any

import structlog

from chainfolio.config.settings import Settings
from chainfolio.constants.chains import EXPLORERS
from chainfolio.core.exceptions import UpstreamError, ValidationError
from chainfolio.handlers.base import ChainHandler, HandlerConfig
from chainfolio.models.token import (
    AptosToken,
    Symbol,
    TokenBalance,
    TokenPrice,
    normalize_symbol,
)
from chainfolio.services.base import BaseAPIClient
from chainfolio.services.pricing import CoinMarketCapClient, fill_stablecoins

log = structlog.get_logger(__name__)

APT_COIN_TYPE = "0x1::aptos_coin::AptosCoin"
STAPT_COIN_TYPE = (
    "0x111ae3e5bc816a5e63c2da97d0aa3886519e0cd5e4b046659fa35796bd11542a::stapt_token::StakedApt"
)
_LZ = "0xf22bede237a07e121b56d91a491eb7bcdfd1f5907926a9e58338f964a01b17fa"

COIN_STORE_PATTERN = re.compile(r"^0x1::coin::CoinStore<(.+)>$")

SPAM_PATTERNS = (
    re.compile(r"test", re.IGNORECASE),
    re.compile(r"faucet", re.IGNORECASE),
    re.compile(r"airdrop", re.IGNORECASE),
    re.compile(r"\bscam\b", re.IGNORECASE),
    re.compile(r"\bfake\b", re.IGNORECASE),
    re.compile(r"\bdemo\b", re.IGNORECASE),
)

# Account context whose explorer link opens the transactions tab
TRANSACTIONS_VIEW_ACCOUNT = "savings-2"


def _coin(coin_type: str, symbol: str, name: str, decimals: int) -> AptosToken:
    return AptosToken(
        symbol=symbol, name=name, decimals=decimals, coin_type=coin_type, verified=True
    )


KNOWN_COINS: dict[str, AptosToken] = {
    APT_COIN_TYPE: _coin(APT_COIN_TYPE, "APT", "Aptos", 8),
    STAPT_COIN_TYPE: _coin(STAPT_COIN_TYPE, "STAPT", "Staked Aptos", 8),
    f"{_LZ}::asset::USDC": _coin(f"{_LZ}::asset::USDC", "USDC", "USD Coin", 6),
    f"{_LZ}::asset::USDT": _coin(f"{_LZ}::asset::USDT", "USDT", "Tether USD", 6),
    f"{_LZ}::asset::WETH": _coin(f"{_LZ}::asset::WETH", "WETH", "Wrapped Ethereum", 8),
    f"{_LZ}::asset::WBTC": _coin(f"{_LZ}::asset::WBTC", "WBTC", "Wrapped Bitcoin", 8),
}


def is_spam(name: str) -> bool:
    """True if a token name matches a known spam pattern."""
    return any(pattern.search(name) for pattern in SPAM_PATTERNS)


class AptosRestClient(BaseAPIClient):
    """Aptos fullnode REST client.

    Endpoint used: GET /accounts/{address}/resources
    """

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        super().__init__(
            service="aptos",
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def get_account_resources(self, address: str) -> list[dict[str, Any]]:
        data = await self.get_json(f"/accounts/{address}/resources")
        if not isinstance(data, list):
            raise UpstreamError(service=self.service, message="invalid resources response")
        return data


def parse_coin_stores(resources: list[dict[str, Any]]) -> list[TokenBalance]:
    """Extract balances of known coins from account resources.

    Unknown coin types, spam names, malformed values and dust are skipped.
    """
    balances: list[TokenBalance] = []
    for resource in resources:
        match = COIN_STORE_PATTERN.match(str(resource.get("type", "")))
        if match is None:
            continue

        token = KNOWN_COINS.get(match.group(1))
        if token is None or is_spam(token.name):
            continue

        try:
            value = resource["data"]["coin"]["value"]
            balance = TokenBalance.from_raw(token, value)
        except (KeyError, TypeError, ValidationError, ValueError) as e:
            log.warning("aptos_resource_parse_error", coin_type=token.coin_type, error=str(e))
            continue

        if balance.is_dust:
            log.debug("aptos_dust_filtered", symbol=token.symbol, amount=balance.ui_amount)
            continue
        balances.append(balance)
    return balances


class AptosSource:
    """Fetch implementations plugged into the Aptos ChainHandler."""

    def __init__(self, rest: AptosRestClient, cmc: CoinMarketCapClient) -> None:
        self.rest = rest
        self.cmc = cmc

    async def fetch_balances(self, address: str) -> list[TokenBalance]:
        log.debug("aptos_fetching_balances", address=address[:10])
        resources = await self.rest.get_account_resources(address)
        balances = parse_coin_stores(resources)
        log.debug("aptos_balances_fetched", address=address[:10], count=len(balances))
        return balances

    async def fetch_prices(self) -> dict[Symbol, TokenPrice]:
        """Prices for known coins. STAPT is priced as APT when CMC has no quote."""
        symbols = list(dict.fromkeys(token.symbol for token in KNOWN_COINS.values()))
        prices = fill_stablecoins(symbols, await self.cmc.fetch_quotes(symbols))

        apt, stapt = normalize_symbol("APT"), normalize_symbol("STAPT")
        if stapt not in prices and apt in prices:
            prices[stapt] = prices[apt]
        return prices

    @staticmethod
    def explorer_url(address: str, account_context: str = "") -> str:
        base = f"{EXPLORERS['aptos']}/account/{address}"
        if account_context == TRANSACTIONS_VIEW_ACCOUNT:
            return f"{base}/transactions?network=mainnet"
        return base

    async def close(self) -> None:
        await self.rest.close()


def build_aptos_handler(settings: Settings, cmc: CoinMarketCapClient) -> ChainHandler:
    """Create the Aptos handler from settings and the shared CMC client."""
    source = AptosSource(AptosRestClient(settings.aptos_rpc_url), cmc)
    return ChainHandler(
        HandlerConfig.from_settings("aptos", settings),
        fetch_balances_impl=source.fetch_balances,
        fetch_prices_impl=source.fetch_prices,
        explorer_url_impl=source.explorer_url,
        on_close=source.close,
    )
