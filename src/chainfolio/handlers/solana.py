"""Solana balances via JSON-RPC, prices via CoinMarketCap with Jupiter fill-in."""

from typing import Any

import structlog

from chainfolio.config.settings import Settings
from chainfolio.constants.chains import EXPLORERS
from chainfolio.core.exceptions import NotConfiguredError, UpstreamError, ValidationError
from chainfolio.handlers.base import ChainHandler, HandlerConfig
from chainfolio.models.token import (
    NATIVE_SOL_MINT,
    SolanaToken,
    Symbol,
    TokenBalance,
    TokenPrice,
    normalize_symbol,
)
from chainfolio.services.base import BaseAPIClient
from chainfolio.services.pricing import CoinMarketCapClient, JupiterPriceClient, fill_stablecoins

log = structlog.get_logger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
LAMPORTS_DUST = 1000
JUPITER_CONFIDENCE = 0.8

SOL = SolanaToken(symbol="SOL", name="Solana", decimals=9, mint=NATIVE_SOL_MINT, verified=True)

KNOWN_MINTS: dict[str, SolanaToken] = {
    NATIVE_SOL_MINT: SOL,
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": SolanaToken(
        symbol="USDC",
        name="USD Coin",
        decimals=6,
        mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        verified=True,
    ),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": SolanaToken(
        symbol="USDT",
        name="Tether USD",
        decimals=6,
        mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
        verified=True,
    ),
    "9sbrLLnk4vxJajnZWXP9h5qk1NDFw7dz2eHjgemcpump": SolanaToken(
        symbol="BEENZ",
        name="BEENZ",
        decimals=6,
        mint="9sbrLLnk4vxJajnZWXP9h5qk1NDFw7dz2eHjgemcpump",
        verified=True,
    ),
}


class SolanaRpcClient(BaseAPIClient):
    """Solana JSON-RPC client.

    Methods used:
        - getBalance - native lamports
        - getTokenAccountsByOwner - SPL token accounts (jsonParsed)
    """

    def __init__(self, rpc_url: str, timeout: float = 30.0) -> None:
        super().__init__(
            service="solana",
            base_url=rpc_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        result = await self.json_rpc("getBalance", [address, {"commitment": "confirmed"}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, int):
            raise UpstreamError(service=self.service, message="getBalance: malformed value")
        return value

    async def get_token_accounts(self, address: str) -> list[dict[str, Any]]:
        """Parsed SPL token accounts owned by ``address``."""
        result = await self.json_rpc(
            "getTokenAccountsByOwner",
            [
                address,
                {"programId": TOKEN_PROGRAM_ID},
                {"encoding": "jsonParsed", "commitment": "confirmed"},
            ],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, list):
            raise UpstreamError(
                service=self.service, message="getTokenAccountsByOwner: malformed value"
            )
        return value


def _parse_token_account(account: dict[str, Any]) -> TokenBalance | None:
    parsed = account["account"]["data"]["parsed"]
    if parsed.get("type") != "account":
        return None

    info = parsed["info"]
    mint = info["mint"]
    amount = info["tokenAmount"]

    token = KNOWN_MINTS.get(mint) or SolanaToken(
        symbol=f"{mint[:6]}...",
        name="Unknown Token",
        decimals=int(amount["decimals"]),
        mint=mint,
        verified=False,
    )
    return TokenBalance.from_raw(token, amount["amount"])


class SolanaSource:
    """Fetch implementations plugged into the Solana ChainHandler."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        cmc: CoinMarketCapClient,
        jupiter: JupiterPriceClient,
    ) -> None:
        self.rpc = rpc
        self.cmc = cmc
        self.jupiter = jupiter

    async def fetch_balances(self, address: str) -> list[TokenBalance]:
        """Native SOL plus SPL token balances above the dust threshold."""
        log.debug("solana_fetching_balances", address=address[:8])

        lamports = await self.rpc.get_balance(address)
        accounts = await self.rpc.get_token_accounts(address)

        balances: list[TokenBalance] = []
        if lamports > LAMPORTS_DUST:
            balances.append(TokenBalance.from_raw(SOL, lamports))

        for account in accounts:
            try:
                balance = _parse_token_account(account)
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                log.warning("solana_token_account_parse_error", error=str(e))
                continue
            if balance is None or balance.is_dust:
                continue
            balances.append(balance)

        log.debug("solana_balances_fetched", address=address[:8], count=len(balances))
        return balances

    async def fetch_prices(self) -> dict[Symbol, TokenPrice]:
        """Prices for known mints: CMC first, Jupiter for what CMC lacks."""
        symbols = [token.symbol for token in KNOWN_MINTS.values()]

        try:
            prices = await self.cmc.fetch_quotes(symbols)
        except NotConfiguredError:
            log.warning("solana_cmc_not_configured_using_jupiter")
            prices = {}
        prices = fill_stablecoins(symbols, prices)

        missing = {
            mint: token
            for mint, token in KNOWN_MINTS.items()
            if normalize_symbol(token.symbol) not in prices
        }
        if missing:
            jupiter_prices = await self.jupiter.fetch_prices(missing)
            for mint, token in missing.items():
                if mint in jupiter_prices:
                    prices[normalize_symbol(token.symbol)] = TokenPrice(
                        price=jupiter_prices[mint],
                        confidence=JUPITER_CONFIDENCE,
                    )

        return prices

    @staticmethod
    def explorer_url(address: str, account_context: str = "") -> str:
        return f"{EXPLORERS['solana']}/account/{address}"

    async def close(self) -> None:
        await self.rpc.close()


def build_solana_handler(
    settings: Settings,
    cmc: CoinMarketCapClient,
    jupiter: JupiterPriceClient,
) -> ChainHandler:
    """Create the Solana handler from settings and shared price clients."""
    source = SolanaSource(SolanaRpcClient(settings.solana_rpc_url), cmc, jupiter)
    return ChainHandler(
        HandlerConfig.from_settings("solana", settings),
        fetch_balances_impl=source.fetch_balances,
        fetch_prices_impl=source.fetch_prices,
        explorer_url_impl=source.explorer_url,
        on_close=source.close,
    )
