"""Portfolio aggregation across wallets and exchange accounts.

PortfolioService resolves each account's handler, fetches balances and
prices concurrently and values every balance in USD. A failing account is
reported on its own snapshot and never aborts the others.
"""

import asyncio
from collections.abc import Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from chainfolio.core.exceptions import ChainfolioError
from chainfolio.handlers.registry import HandlerRegistry, normalize_name
from chainfolio.models.token import PriceSnapshot, TokenBalance

log = structlog.get_logger(__name__)


class AccountRef(BaseModel):
    """One account to aggregate: a wallet on a chain or an exchange login."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    chain: str
    identity: str


class AccountSnapshot(BaseModel):
    """Valued balances for one account."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    chain: str
    identity: str
    balances: list[TokenBalance] = Field(default_factory=list)
    is_stale: bool = False
    explorer_url: str = ""
    total_value_usd: float = 0.0
    error: str | None = None


def value_balances(
    balances: list[TokenBalance], prices: PriceSnapshot
) -> list[TokenBalance]:
    """Attach USD values from ``prices``.

    A balance whose symbol has no price keeps the value it came with, which
    is None unless the upstream already valued it.
    """
    valued: list[TokenBalance] = []
    for balance in balances:
        price = prices.get(balance.token.symbol)
        valued.append(balance.with_value(price.price) if price is not None else balance)
    return valued


class PortfolioService:
    """Aggregate balances for many accounts through a HandlerRegistry.

    Example:
        service = PortfolioService(get_registry())
        snapshots = await service.fetch_accounts(
            [AccountRef(account_id="main", chain="solana", identity=address)]
        )
    """

    def __init__(self, registry: HandlerRegistry) -> None:
        self.registry = registry

    async def fetch_account(self, account: AccountRef) -> AccountSnapshot:
        handler = self.registry.resolve(account.chain)
        if handler is None:
            return AccountSnapshot(
                account_id=account.account_id,
                chain=account.chain,
                identity=account.identity,
                error=f"Unsupported chain or exchange: {account.chain}",
            )

        # The shared EVM handler picks the explorer from a "<chain>." prefix
        context = account.account_id
        if handler.chain_name == "evm":
            context = f"{normalize_name(account.chain)}.{account.account_id}"
        explorer_url = handler.get_explorer_url(account.identity, context)

        balances, prices = await asyncio.gather(
            handler.fetch_balances(account.identity),
            handler.fetch_prices(),
            return_exceptions=True,
        )

        if isinstance(balances, BaseException):
            if not isinstance(balances, ChainfolioError):
                raise balances
            log.warning(
                "portfolio_account_failed",
                account_id=account.account_id,
                chain=account.chain,
                error=str(balances),
                error_type=type(balances).__name__,
            )
            return AccountSnapshot(
                account_id=account.account_id,
                chain=account.chain,
                identity=account.identity,
                explorer_url=explorer_url,
                error=str(balances),
            )

        if isinstance(prices, BaseException):
            if not isinstance(prices, ChainfolioError):
                raise prices
            # Balances are still worth showing unvalued
            log.warning(
                "portfolio_prices_unavailable",
                account_id=account.account_id,
                chain=account.chain,
                error=str(prices),
            )
            prices = PriceSnapshot()

        valued = value_balances(balances.balances, prices)
        total = sum(b.value_usd for b in valued if b.value_usd is not None)

        return AccountSnapshot(
            account_id=account.account_id,
            chain=account.chain,
            identity=account.identity,
            balances=valued,
            is_stale=balances.is_stale or prices.is_stale,
            explorer_url=explorer_url,
            total_value_usd=total,
        )

    async def fetch_accounts(
        self, accounts: Iterable[AccountRef | tuple[str, str, str]]
    ) -> list[AccountSnapshot]:
        """Snapshots in the order the accounts were given.

        Accounts may be AccountRef instances or
        ``(account_id, chain_or_exchange, identity)`` tuples.
        """
        refs = [
            a
            if isinstance(a, AccountRef)
            else AccountRef(account_id=a[0], chain=a[1], identity=a[2])
            for a in accounts
        ]
        snapshots = await asyncio.gather(*(self.fetch_account(ref) for ref in refs))
        log.info(
            "portfolio_fetched",
            accounts=len(snapshots),
            failed=sum(1 for s in snapshots if s.error),
            total_value_usd=round(sum(s.total_value_usd for s in snapshots), 2),
        )
        return list(snapshots)
