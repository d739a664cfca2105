"""Chainfolio: multi-chain and exchange portfolio balances with cached, rate-limited fetching."""

__version__ = "0.1.0"
