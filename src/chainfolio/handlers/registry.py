"""Name-to-handler lookup for chains and exchanges."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import lru_cache

import structlog

from chainfolio.config.logging import configure_logging
from chainfolio.config.settings import Settings, get_settings
from chainfolio.constants.chains import CHAIN_ALIASES, EVM_CHAINS
from chainfolio.handlers.aptos import build_aptos_handler
from chainfolio.handlers.base import ChainHandler
from chainfolio.handlers.evm import build_evm_handler
from chainfolio.handlers.gemini import build_gemini_handler
from chainfolio.handlers.kraken import build_kraken_handler
from chainfolio.handlers.solana import build_solana_handler
from chainfolio.handlers.sui import build_sui_handler
from chainfolio.services.pricing import CoinMarketCapClient, JupiterPriceClient

log = structlog.get_logger(__name__)


def normalize_name(name: str | None) -> str:
    """Canonical registry name.

    Lower-cases, strips, drops a ``-main`` suffix, turns ``-`` into ``_``
    and expands aliases (``eth`` -> ``ethereum``).
    """
    cleaned = (name or "").strip().lower()
    if cleaned.endswith("-main"):
        cleaned = cleaned[: -len("-main")]
    cleaned = cleaned.replace("-", "_")
    return CHAIN_ALIASES.get(cleaned, cleaned)


class HandlerRegistry:
    """Maps chain and exchange names to their handlers.

    Several names may share one handler (every EVM chain uses the same
    SimpleHash-backed instance).
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ChainHandler] = {}
        self._closers: list[Callable[[], Awaitable[None]]] = []

    def register(self, name: str, handler: ChainHandler) -> None:
        key = normalize_name(name)
        if not key:
            raise ValueError("Handler name must not be empty")
        self._handlers[key] = handler

    def add_closer(self, closer: Callable[[], Awaitable[None]]) -> None:
        """Register a coroutine function run on aclose (shared clients)."""
        self._closers.append(closer)

    def resolve(self, name: str | None) -> ChainHandler | None:
        """Handler for ``name``, or None (with a warning) if unknown."""
        key = normalize_name(name)
        handler = self._handlers.get(key)
        if handler is None:
            log.warning("handler_not_found", name=name, normalized=key)
        return handler

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._handlers

    def _distinct(self) -> list[ChainHandler]:
        seen: dict[int, ChainHandler] = {}
        for handler in self._handlers.values():
            seen.setdefault(id(handler), handler)
        return list(seen.values())

    def clear_all_caches(self) -> None:
        """Clear every distinct handler once; one failure does not stop the rest."""
        handlers = self._distinct()
        for handler in handlers:
            try:
                handler.clear_cache()
            except Exception as e:
                log.error("handler_clear_cache_failed", chain=handler.chain_name, error=str(e))
        log.info("all_handler_caches_cleared", handlers=len(handlers))

    async def aclose(self) -> None:
        """Drain background work and close every handler and shared client."""
        results = await asyncio.gather(
            *(handler.aclose() for handler in self._distinct()),
            *(closer() for closer in self._closers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                log.warning("registry_close_failed", error=str(result))


def build_registry(settings: Settings | None = None) -> HandlerRegistry:
    """Wire the default handlers.

    Args:
        settings: Application settings. Defaults to get_settings().

    Returns:
        Registry with solana, sui, aptos, every EVM chain name and the
        kraken and gemini exchanges.
    """
    settings = settings or get_settings()
    cmc = CoinMarketCapClient(api_key=settings.cmc_api_key.get_secret_value())
    jupiter = JupiterPriceClient()

    registry = HandlerRegistry()
    registry.register("solana", build_solana_handler(settings, cmc, jupiter))
    registry.register("sui", build_sui_handler(settings, cmc))
    registry.register("aptos", build_aptos_handler(settings, cmc))

    evm = build_evm_handler(settings)
    registry.register("evm", evm)
    for chain in EVM_CHAINS:
        registry.register(chain, evm)

    registry.register("kraken", build_kraken_handler(settings, cmc))
    registry.register("gemini", build_gemini_handler(settings, cmc))

    registry.add_closer(cmc.close)
    registry.add_closer(jupiter.close)

    log.info("handler_registry_built", names=len(registry.names()))
    return registry


@lru_cache
def get_registry() -> HandlerRegistry:
    """Get cached registry instance, configuring logging on first use."""
    settings = get_settings()
    configure_logging(settings)
    return build_registry(settings)
