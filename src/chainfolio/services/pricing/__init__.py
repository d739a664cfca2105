"""Price clients shared by chain and exchange handlers."""

from chainfolio.services.pricing.cmc import CoinMarketCapClient, fill_stablecoins
from chainfolio.services.pricing.jupiter import USDC_MINT, JupiterPriceClient

__all__ = [
    "USDC_MINT",
    "CoinMarketCapClient",
    "JupiterPriceClient",
    "fill_stablecoins",
]
