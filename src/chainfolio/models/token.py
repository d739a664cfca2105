"""Token, balance and price models shared by every handler.

Tokens are a tagged union discriminated on ``chain_type`` so each chain keeps
its own identifier shape (EVM contract address, Solana mint, Move coin type)
while exposing the common ``symbol``/``name``/``decimals`` accessors.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Literal, NewType

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chainfolio.constants.chains import (
    DEFAULT_EXCHANGE_DECIMALS,
    STABLECOINS,
    TOKEN_DECIMALS,
    ZERO_ADDRESS,
)
from chainfolio.core.exceptions import ValidationError

Symbol = NewType("Symbol", str)

NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"

# Dust thresholds in UI units
STABLECOIN_DUST: float = 0.01
HIGH_VALUE_DUST: float = 0.0001
DEFAULT_DUST: float = 0.000001
_HIGH_VALUE_SYMBOLS = frozenset({"APT", "STAPT"})


def normalize_symbol(value: str) -> Symbol:
    """Validate a ticker and return it as a Symbol.

    Args:
        value: Raw ticker, e.g. " usdc ".

    Returns:
        Upper-cased, stripped symbol.

    Raises:
        ValidationError: If the symbol is empty or contains whitespace.
    """
    cleaned = (value or "").strip().upper()
    if not cleaned or any(ch.isspace() for ch in cleaned):
        raise ValidationError(f"Invalid token symbol: {value!r}")
    return Symbol(cleaned)


def dust_threshold(symbol: str) -> float:
    """Minimum UI amount worth reporting for a symbol."""
    upper = symbol.upper()
    if upper in STABLECOINS:
        return STABLECOIN_DUST
    if upper in _HIGH_VALUE_SYMBOLS:
        return HIGH_VALUE_DUST
    return DEFAULT_DUST


class _TokenBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=1)
    name: str
    decimals: int = Field(ge=0)
    verified: bool | None = None

    @property
    def is_native(self) -> bool:
        return False


class EvmToken(_TokenBase):
    """ERC-20 or native asset on an EVM chain."""

    chain_type: Literal["evm"] = "evm"
    chain_id: int
    address: str = ZERO_ADDRESS

    @property
    def is_native(self) -> bool:
        return self.address.lower() == ZERO_ADDRESS


class SolanaToken(_TokenBase):
    """SPL token or native SOL."""

    chain_type: Literal["solana"] = "solana"
    mint: str | None = None

    @property
    def is_native(self) -> bool:
        return self.mint is None or self.mint == NATIVE_SOL_MINT


class AptosToken(_TokenBase):
    """Aptos coin identified by its Move type."""

    chain_type: Literal["aptos"] = "aptos"
    coin_type: str

    @property
    def is_native(self) -> bool:
        return self.coin_type == "0x1::aptos_coin::AptosCoin"


class SuiToken(_TokenBase):
    """Sui coin identified by its Move type."""

    chain_type: Literal["sui"] = "sui"
    coin_type: str

    @property
    def is_native(self) -> bool:
        return self.coin_type == "0x2::sui::SUI"


class ExchangeToken(_TokenBase):
    """Asset held on a centralized exchange."""

    chain_type: Literal["exchange"] = "exchange"
    exchange: str

    @classmethod
    def for_symbol(cls, symbol: str, exchange: str) -> "ExchangeToken":
        """Token for an exchange ticker, with known decimals or the default of 8."""
        upper = symbol.strip().upper()
        return cls(
            symbol=upper,
            name=upper,
            decimals=TOKEN_DECIMALS.get(upper, DEFAULT_EXCHANGE_DECIMALS),
            exchange=exchange,
        )


Token = Annotated[
    EvmToken | SolanaToken | AptosToken | SuiToken | ExchangeToken,
    Field(discriminator="chain_type"),
]


class TokenBalance(BaseModel):
    """Balance of one token, as a raw integer string plus UI amount."""

    model_config = ConfigDict(frozen=True)

    token: Token
    balance: str
    ui_amount: float
    value_usd: float | None = None

    @field_validator("balance")
    @classmethod
    def validate_balance(cls, v: str) -> str:
        """Raw balances are non-negative integers."""
        if not v.isdigit():
            raise ValueError(f"balance must be a non-negative integer string, got {v!r}")
        return v

    @classmethod
    def from_raw(
        cls,
        token: Token,
        raw: str | int,
        value_usd: float | None = None,
    ) -> "TokenBalance":
        """Build a balance from a raw on-chain integer amount."""
        raw_str = str(raw).strip()
        try:
            amount = Decimal(raw_str)
        except InvalidOperation as e:
            raise ValidationError(f"Invalid raw balance for {token.symbol}: {raw!r}") from e
        ui_amount = float(amount.scaleb(-token.decimals))
        return cls(token=token, balance=raw_str, ui_amount=ui_amount, value_usd=value_usd)

    @classmethod
    def from_ui_amount(cls, token: Token, amount: str) -> "TokenBalance":
        """Build a balance from a human decimal amount, e.g. exchange APIs."""
        try:
            value = Decimal(str(amount).strip())
        except InvalidOperation as e:
            raise ValidationError(f"Invalid amount for {token.symbol}: {amount!r}") from e
        raw = int(value.scaleb(token.decimals).to_integral_value())
        return cls(token=token, balance=str(max(raw, 0)), ui_amount=float(value))

    @property
    def is_dust(self) -> bool:
        """True when the amount is too small to be worth reporting."""
        return self.ui_amount < dust_threshold(self.token.symbol)

    def with_value(self, price: float | None) -> "TokenBalance":
        """Return a copy valued at ``price`` USD per unit."""
        value = None if price is None else self.ui_amount * price
        return self.model_copy(update={"value_usd": value})


class TokenPrice(BaseModel):
    """USD price of a token.

    An unknown price is represented by the symbol being absent from the
    price map, never by a zero price.
    """

    model_config = ConfigDict(frozen=True)

    price: float = Field(ge=0)
    price_change_24h: float = 0.0
    last_updated: datetime | None = None
    confidence: float | None = Field(default=None, ge=0, le=1)


class BalanceSnapshot(BaseModel):
    """Balances returned to callers, flagged when served from stale cache."""

    model_config = ConfigDict(frozen=True)

    balances: list[TokenBalance] = Field(default_factory=list)
    is_stale: bool = False


class PriceSnapshot(BaseModel):
    """Prices keyed by symbol, flagged when served from stale cache."""

    model_config = ConfigDict(frozen=True)

    prices: dict[str, TokenPrice] = Field(default_factory=dict)
    is_stale: bool = False

    def get(self, symbol: str) -> TokenPrice | None:
        """Look up a price, returning None when unknown."""
        try:
            return self.prices.get(normalize_symbol(symbol))
        except ValidationError:
            return None
