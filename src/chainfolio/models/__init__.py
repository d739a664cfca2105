"""Pydantic models for tokens, balances and prices."""

from chainfolio.models.token import (
    AptosToken,
    BalanceSnapshot,
    EvmToken,
    ExchangeToken,
    PriceSnapshot,
    SolanaToken,
    SuiToken,
    Symbol,
    Token,
    TokenBalance,
    TokenPrice,
    normalize_symbol,
)

__all__ = [
    "AptosToken",
    "BalanceSnapshot",
    "EvmToken",
    "ExchangeToken",
    "PriceSnapshot",
    "SolanaToken",
    "SuiToken",
    "Symbol",
    "Token",
    "TokenBalance",
    "TokenPrice",
    "normalize_symbol",
]
