"""EVM balances and prices via the SimpleHash indexer.

One handler serves every EVM chain name; SimpleHash returns balances for all
supported chains in a single call per balance kind.

API Documentation: https://docs.simplehash.com/reference
"""

import asyncio
from typing import Any

import structlog

from chainfolio.config.settings import Settings
from chainfolio.constants.chains import EVM_CHAIN_IDS, EXPLORERS, ZERO_ADDRESS
from chainfolio.core.exceptions import NotConfiguredError, UpstreamError, ValidationError
from chainfolio.handlers.base import ChainHandler, HandlerConfig
from chainfolio.models.token import EvmToken, Symbol, TokenBalance, TokenPrice, normalize_symbol
from chainfolio.services.base import BaseAPIClient

log = structlog.get_logger(__name__)

CHAIN_NAMES_BY_ID: dict[int, str] = {chain_id: name for name, chain_id in EVM_CHAIN_IDS.items()}
DEFAULT_EXPLORER_CHAIN = "ethereum"


class SimpleHashClient(BaseAPIClient):
    """SimpleHash REST client.

    Endpoints used:
        - GET /native_tokens/balances
        - GET /fungibles/balances
        - GET /fungibles/assets
    """

    BASE_URL = "https://api.simplehash.com/api/v0"

    def __init__(self, api_key: str = "", timeout: float = 30.0) -> None:
        super().__init__(
            service="simplehash",
            base_url=self.BASE_URL,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )
        self._api_key = api_key

    async def _get(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        if not self._api_key:
            raise NotConfiguredError(service=self.service, setting="SIMPLEHASH_API_KEY")
        data = await self.get_json(path, params=params, headers={"X-API-KEY": self._api_key})
        if not isinstance(data, dict):
            raise UpstreamError(service=self.service, message=f"{path}: malformed response")
        return data

    async def get_native_balances(self, address: str, chains: list[str]) -> list[dict[str, Any]]:
        data = await self._get(
            "/native_tokens/balances",
            {"chains": ",".join(chains), "wallet_addresses": address, "include_prices": "1"},
        )
        return data.get("balances") or []

    async def get_fungible_balances(
        self, address: str, chains: list[str]
    ) -> list[dict[str, Any]]:
        data = await self._get(
            "/fungibles/balances",
            {
                "chains": ",".join(chains),
                "wallet_addresses": address,
                "include_prices": "1",
                "include_fungible_details": "1",
            },
        )
        return data.get("balances") or []

    async def get_fungible_assets(self, fungible_ids: list[str]) -> list[dict[str, Any]]:
        data = await self._get(
            "/fungibles/assets",
            {"fungible_ids": ",".join(fungible_ids), "include_prices": "1"},
        )
        return data.get("fungibles") or []


def _usd_from_cents(cents: Any) -> float | None:
    if isinstance(cents, (int, float)) and cents:
        return cents / 100
    return None


def parse_native_balance(entry: dict[str, Any]) -> TokenBalance | None:
    chain_id = EVM_CHAIN_IDS.get(entry.get("chain", ""))
    if chain_id is None:
        return None
    meta = entry["token"]
    token = EvmToken(
        symbol=meta["symbol"],
        name=meta["name"],
        decimals=int(meta["decimals"]),
        chain_id=chain_id,
        address=ZERO_ADDRESS,
    )
    return TokenBalance.from_raw(
        token, entry["balance"], _usd_from_cents(entry.get("balance_usd_cents"))
    )


def parse_fungible_balance(entry: dict[str, Any]) -> TokenBalance | None:
    chain_id = EVM_CHAIN_IDS.get(entry.get("chain", ""))
    if chain_id is None:
        return None
    meta = entry["fungible"]
    token = EvmToken(
        symbol=meta["symbol"],
        name=meta["name"],
        decimals=int(meta["decimals"]),
        chain_id=chain_id,
        address=meta["contract_address"],
    )
    return TokenBalance.from_raw(
        token, entry["balance"], _usd_from_cents(entry.get("balance_usd_cents"))
    )


class EvmSource:
    """Fetch implementations plugged into the shared EVM ChainHandler.

    Prices cover the tokens seen in balance fetches: fungibles are priced
    through ``fungibles/assets`` and natives from the USD value SimpleHash
    attaches to their balance. A price fetch waits for balance fetches
    already in flight, so a concurrent first read still sees their tokens.
    """

    def __init__(self, client: SimpleHashClient, chains: list[str] | None = None) -> None:
        self.client = client
        self.chains = chains or list(EVM_CHAIN_IDS)
        self._seen_tokens: dict[tuple[int, str], EvmToken] = {}
        self._native_prices: dict[Symbol, TokenPrice] = {}
        self._balance_fetches: set[asyncio.Task[list[TokenBalance]]] = set()

    def _remember(self, balance: TokenBalance) -> None:
        token = balance.token
        if not isinstance(token, EvmToken):
            return
        if token.is_native:
            if balance.value_usd is not None and balance.ui_amount > 0:
                self._native_prices[normalize_symbol(token.symbol)] = TokenPrice(
                    price=balance.value_usd / balance.ui_amount
                )
            return
        self._seen_tokens[(token.chain_id, token.address.lower())] = token

    async def fetch_balances(self, address: str) -> list[TokenBalance]:
        """Native and fungible balances across every supported chain."""
        task = asyncio.ensure_future(self._load_balances(address))
        self._balance_fetches.add(task)
        task.add_done_callback(self._balance_fetches.discard)
        return await task

    async def _load_balances(self, address: str) -> list[TokenBalance]:
        log.debug("evm_fetching_balances", address=address[:10], chains=len(self.chains))
        natives, fungibles = await asyncio.gather(
            self.client.get_native_balances(address, self.chains),
            self.client.get_fungible_balances(address, self.chains),
        )

        balances: list[TokenBalance] = []
        sources = ((parse_native_balance, natives), (parse_fungible_balance, fungibles))
        for parser, entries in sources:
            for entry in entries:
                try:
                    balance = parser(entry)
                except (KeyError, TypeError, ValueError, ValidationError) as e:
                    log.warning("evm_balance_parse_error", error=str(e))
                    continue
                if balance is None:
                    continue
                self._remember(balance)
                balances.append(balance)

        log.debug("evm_balances_fetched", address=address[:10], count=len(balances))
        return balances

    async def fetch_prices(self) -> dict[Symbol, TokenPrice]:
        """Prices for tokens seen in balance fetches; empty before the first one."""
        if self._balance_fetches:
            # Outcomes belong to the balance callers; wait() neither raises nor cancels them
            await asyncio.wait(set(self._balance_fetches))

        prices: dict[Symbol, TokenPrice] = dict(self._native_prices)
        if not self._seen_tokens:
            return prices

        fungible_ids = [
            f"{CHAIN_NAMES_BY_ID[chain_id]}.{address}" for chain_id, address in self._seen_tokens
        ]
        assets = await self.client.get_fungible_assets(fungible_ids)

        for asset in assets:
            chain_id = EVM_CHAIN_IDS.get(asset.get("chain", ""))
            address = str(asset.get("contract_address", "")).lower()
            token = self._seen_tokens.get((chain_id, address)) if chain_id else None
            price = asset.get("price_usd")
            if token is None or not isinstance(price, (int, float)) or price < 0:
                continue
            try:
                prices[normalize_symbol(token.symbol)] = TokenPrice(
                    price=float(price),
                    price_change_24h=float(asset.get("price_change_24h") or 0.0),
                )
            except ValidationError:
                continue

        log.debug("evm_prices_fetched", count=len(prices))
        return prices

    @staticmethod
    def explorer_url(address: str, account_context: str = "") -> str:
        """Explorer for the chain named by a ``<chain>.`` prefix of the context."""
        chain = account_context.split(".", 1)[0].lower() if account_context else ""
        base = EXPLORERS.get(chain) or EXPLORERS[DEFAULT_EXPLORER_CHAIN]
        return f"{base}/address/{address}"

    async def close(self) -> None:
        await self.client.close()


def build_evm_handler(settings: Settings) -> ChainHandler:
    """Create the shared EVM handler from settings."""
    source = EvmSource(SimpleHashClient(settings.simplehash_api_key.get_secret_value()))
    return ChainHandler(
        HandlerConfig.from_settings("evm", settings),
        fetch_balances_impl=source.fetch_balances,
        fetch_prices_impl=source.fetch_prices,
        explorer_url_impl=source.explorer_url,
        on_close=source.close,
    )
