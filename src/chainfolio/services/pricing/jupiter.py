"""Jupiter price client for Solana mints.

Prices are quoted against USDC, so USDC itself is always 1.
"""

import math
from collections.abc import Iterable

import structlog

from chainfolio.core.exceptions import UpstreamError
from chainfolio.services.base import BaseAPIClient

log = structlog.get_logger(__name__)

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class JupiterPriceClient(BaseAPIClient):
    """Jupiter price API client.

    Endpoint used:
        - GET /price/v2?ids=<mint>,<mint> - USD price per mint
    """

    BASE_URL = "https://api.jup.ag"
    PRICE_PATH = "/price/v2"
    DEFAULT_TIMEOUT = 10.0

    def __init__(self, base_url: str = BASE_URL) -> None:
        super().__init__(
            service="jupiter",
            base_url=base_url,
            timeout=self.DEFAULT_TIMEOUT,
            headers={"Accept": "application/json"},
        )

    async def fetch_prices(self, mints: Iterable[str]) -> dict[str, float]:
        """Fetch USD prices keyed by mint address.

        Mints Jupiter cannot price are absent from the result.

        Raises:
            UpstreamError: If the response is malformed.
        """
        ids = sorted({m for m in mints if m and m != USDC_MINT})
        prices: dict[str, float] = {USDC_MINT: 1.0}
        if not ids:
            return prices

        data = await self.get_json(self.PRICE_PATH, params={"ids": ",".join(ids)})
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            raise UpstreamError(service=self.service, message="invalid price response")

        for mint, details in entries.items():
            if not isinstance(details, dict):
                continue
            try:
                price = float(details.get("price"))
            except (TypeError, ValueError):
                continue
            if math.isfinite(price) and price >= 0:
                prices[mint] = price

        log.debug("jupiter_prices_fetched", requested=len(ids), priced=len(prices) - 1)
        return prices
