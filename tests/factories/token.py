"""Factories for generating test tokens, balances and prices."""

import factory
from faker import Faker

from chainfolio.models.token import EvmToken, SolanaToken, TokenBalance, TokenPrice

fake = Faker()


def generate_valid_solana_address() -> str:
    """Generate a valid-looking Solana address (base58, 44 chars)."""
    alphabet = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
    return "".join(fake.random_element(alphabet) for _ in range(44))


class SolanaTokenFactory(factory.Factory):
    """Factory for SolanaToken model.

    Usage:
        token = SolanaTokenFactory()
        usdc = SolanaTokenFactory(symbol="USDC", decimals=6)
    """

    class Meta:
        model = SolanaToken

    symbol = factory.Sequence(lambda n: f"TKN{n}")
    name = factory.LazyFunction(lambda: fake.company())
    decimals = 6
    mint = factory.LazyFunction(generate_valid_solana_address)
    verified = True


class EvmTokenFactory(factory.Factory):
    """Factory for EvmToken model."""

    class Meta:
        model = EvmToken

    symbol = factory.Sequence(lambda n: f"ERC{n}")
    name = factory.LazyFunction(lambda: fake.company())
    decimals = 18
    chain_id = 1
    address = factory.LazyFunction(lambda: "0x" + fake.hexify("^" * 40))


class TokenBalanceFactory(factory.Factory):
    """Factory for TokenBalance model.

    ``ui_amount`` is derived from ``balance`` and the token's decimals.
    """

    class Meta:
        model = TokenBalance

    token = factory.SubFactory(SolanaTokenFactory)
    balance = factory.LazyFunction(lambda: str(fake.random_int(min=10_000, max=10**12)))
    ui_amount = factory.LazyAttribute(lambda o: int(o.balance) / 10**o.token.decimals)
    value_usd = None


class TokenPriceFactory(factory.Factory):
    """Factory for TokenPrice model."""

    class Meta:
        model = TokenPrice

    price = factory.LazyFunction(lambda: round(fake.pyfloat(min_value=0.01, max_value=5000), 4))
    price_change_24h = factory.LazyFunction(
        lambda: round(fake.pyfloat(min_value=-20, max_value=20), 2)
    )
    confidence = 1.0
