"""Sui balances via JSON-RPC, prices via CoinMarketCap."""

import asyncio
from typing import Any

import structlog

from chainfolio.config.settings import Settings
from chainfolio.constants.chains import EXPLORERS
from chainfolio.core.exceptions import ChainfolioError, UpstreamError, ValidationError
from chainfolio.handlers.base import ChainHandler, HandlerConfig
from chainfolio.models.token import Symbol, SuiToken, TokenBalance, TokenPrice
from chainfolio.services.base import BaseAPIClient
from chainfolio.services.pricing import CoinMarketCapClient, fill_stablecoins

log = structlog.get_logger(__name__)

SUI_COIN_TYPE = "0x2::sui::SUI"
USDC_COIN_TYPE = (
    "0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC"
)
FALLBACK_DECIMALS = 9

KNOWN_COINS: dict[str, SuiToken] = {
    SUI_COIN_TYPE: SuiToken(
        symbol="SUI", name="Sui", decimals=9, coin_type=SUI_COIN_TYPE, verified=True
    ),
    USDC_COIN_TYPE: SuiToken(
        symbol="USDC", name="USD Coin", decimals=6, coin_type=USDC_COIN_TYPE, verified=True
    ),
}


class SuiRpcClient(BaseAPIClient):
    """Sui JSON-RPC client.

    Methods used:
        - suix_getAllBalances - every coin balance owned by an address
        - suix_getCoinMetadata - symbol/name/decimals for a coin type
    """

    def __init__(self, rpc_url: str, timeout: float = 30.0) -> None:
        super().__init__(
            service="sui",
            base_url=rpc_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    async def get_all_balances(self, address: str) -> list[dict[str, Any]]:
        result = await self.json_rpc("suix_getAllBalances", [address])
        if not isinstance(result, list):
            raise UpstreamError(service=self.service, message="suix_getAllBalances: malformed")
        return result

    async def get_coin_metadata(self, coin_type: str) -> dict[str, Any] | None:
        result = await self.json_rpc("suix_getCoinMetadata", [coin_type])
        return result if isinstance(result, dict) else None


class SuiSource:
    """Fetch implementations plugged into the Sui ChainHandler."""

    def __init__(self, rpc: SuiRpcClient, cmc: CoinMarketCapClient) -> None:
        self.rpc = rpc
        self.cmc = cmc

    async def _resolve_token(self, coin_type: str) -> SuiToken:
        known = KNOWN_COINS.get(coin_type)
        if known is not None:
            return known

        try:
            metadata = await self.rpc.get_coin_metadata(coin_type)
        except ChainfolioError as e:
            log.debug("sui_coin_metadata_failed", coin_type=coin_type, error=str(e))
            metadata = None

        if metadata and metadata.get("symbol"):
            return SuiToken(
                symbol=metadata["symbol"],
                name=metadata.get("name") or metadata["symbol"],
                decimals=int(metadata.get("decimals", FALLBACK_DECIMALS)),
                coin_type=coin_type,
                verified=False,
            )

        return SuiToken(
            symbol=coin_type.rsplit("::", 1)[-1] or "UNKNOWN",
            name="Unknown Token",
            decimals=FALLBACK_DECIMALS,
            coin_type=coin_type,
            verified=False,
        )

    async def _to_balance(self, entry: dict[str, Any]) -> TokenBalance | None:
        try:
            token = await self._resolve_token(entry["coinType"])
            return TokenBalance.from_raw(token, entry["totalBalance"])
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            log.warning("sui_balance_parse_error", error=str(e))
            return None

    async def fetch_balances(self, address: str) -> list[TokenBalance]:
        """Every coin balance, largest UI amount first."""
        log.debug("sui_fetching_balances", address=address[:10])
        entries = await self.rpc.get_all_balances(address)

        resolved = await asyncio.gather(*(self._to_balance(entry) for entry in entries))
        balances = [b for b in resolved if b is not None and not b.is_dust]
        balances.sort(key=lambda b: b.ui_amount, reverse=True)

        log.debug("sui_balances_fetched", address=address[:10], count=len(balances))
        return balances

    async def fetch_prices(self) -> dict[Symbol, TokenPrice]:
        symbols = [token.symbol for token in KNOWN_COINS.values()]
        prices = await self.cmc.fetch_quotes(symbols)
        return fill_stablecoins(symbols, prices)

    @staticmethod
    def explorer_url(address: str, account_context: str = "") -> str:
        return f"{EXPLORERS['sui']}/address/{address}"

    async def close(self) -> None:
        await self.rpc.close()


def build_sui_handler(settings: Settings, cmc: CoinMarketCapClient) -> ChainHandler:
    """Create the Sui handler from settings and the shared CMC client."""
    source = SuiSource(SuiRpcClient(settings.sui_rpc_url), cmc)
    return ChainHandler(
        HandlerConfig.from_settings("sui", settings),
        fetch_balances_impl=source.fetch_balances,
        fetch_prices_impl=source.fetch_prices,
        explorer_url_impl=source.explorer_url,
        on_close=source.close,
    )
