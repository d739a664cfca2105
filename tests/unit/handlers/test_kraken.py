"""Tests for the Kraken client and source."""

import asyncio
import base64
import hashlib
import hmac

import httpx
import pytest

from chainfolio.core.exceptions import NotConfiguredError, UpstreamError
from chainfolio.handlers.kraken import (
    KrakenClient,
    KrakenSource,
    normalize_asset,
    sign_request,
)
from chainfolio.services.pricing import CoinMarketCapClient

BALANCE_URL = "https://api.kraken.com/0/private/Balance"
QUOTES_URL = "https://pro-api.coinmarketcap.com/v2/cryptocurrency/quotes/latest"
SECRET = base64.b64encode(b"kraken-test-secret").decode()


@pytest.fixture
def source() -> KrakenSource:
    return KrakenSource(
        KrakenClient(api_key="key", api_secret=SECRET), CoinMarketCapClient(api_key="k")
    )


@pytest.mark.parametrize(
    ("asset", "expected"),
    [
        ("XXBT", "BTC"),
        ("XBT", "BTC"),
        ("XETH", "ETH"),
        ("ZUSD", "USD"),
        ("ZEUR", "EUR"),
        ("XXDG", "DOGE"),
        ("DOT.S", "DOT"),
        ("SOL", "SOL"),
        ("XTZ", "XTZ"),
        ("usdc", "USDC"),
    ],
)
def test_normalize_asset(asset, expected) -> None:
    assert normalize_asset(asset) == expected


def test_sign_request_matches_reference_construction() -> None:
    path, nonce, post_data = "/0/private/Balance", "1616492376594", "nonce=1616492376594"

    signature = sign_request(path, nonce, post_data, SECRET)

    digest = hashlib.sha256((nonce + post_data).encode()).digest()
    expected = hmac.new(b"kraken-test-secret", path.encode() + digest, hashlib.sha512).digest()
    assert base64.b64decode(signature) == expected


class TestKrakenClient:
    """Tests for KrakenClient.get_balances."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("key", "secret", "setting"),
        [("", SECRET, "KRAKEN_API_KEY"), ("key", "", "KRAKEN_API_SECRET")],
    )
    async def test_missing_credentials(self, key, secret, setting) -> None:
        client = KrakenClient(api_key=key, api_secret=secret)

        with pytest.raises(NotConfiguredError, match=setting):
            await client.get_balances()

    @pytest.mark.asyncio
    async def test_invalid_secret_is_configuration_error(self) -> None:
        client = KrakenClient(api_key="key", api_secret="abc")

        with pytest.raises(NotConfiguredError, match="KRAKEN_API_SECRET"):
            await client.get_balances()

    @pytest.mark.asyncio
    async def test_signed_request(self, mock_api) -> None:
        route = mock_api.post(BALANCE_URL).mock(
            return_value=httpx.Response(200, json={"error": [], "result": {"XXBT": "0.5"}})
        )
        client = KrakenClient(api_key="key", api_secret=SECRET)

        assert await client.get_balances() == {"XXBT": "0.5"}

        request = route.calls.last.request
        assert request.headers["API-Key"] == "key"
        assert request.content.startswith(b"nonce=")
        nonce = request.content.decode().split("=", 1)[1]
        expected = sign_request("/0/private/Balance", nonce, request.content.decode(), SECRET)
        assert request.headers["API-Sign"] == expected
        await client.close()

    @pytest.mark.asyncio
    async def test_api_errors_raise(self, mock_api) -> None:
        mock_api.post(BALANCE_URL).mock(
            return_value=httpx.Response(200, json={"error": ["EAPI:Invalid key"]})
        )
        client = KrakenClient(api_key="key", api_secret=SECRET)

        with pytest.raises(UpstreamError, match="EAPI:Invalid key"):
            await client.get_balances()
        await client.close()


class TestKrakenSource:
    """Tests for KrakenSource."""

    @pytest.mark.asyncio
    async def test_balances_normalized_and_summed(self, source, mock_api) -> None:
        """
        Given: spot and staked DOT, BTC under its Kraken code, a zero and a junk entry
        When: balances are fetched
        Then: DOT is summed, BTC is renamed and empty or invalid entries are dropped
        """
        mock_api.post(BALANCE_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "error": [],
                    "result": {
                        "XXBT": "0.1250000000",
                        "DOT": "10.5",
                        "DOT.S": "4.5",
                        "ZUSD": "0.0000",
                        "XETH": "oops",
                    },
                },
            )
        )

        balances = await source.fetch_balances("main")

        by_symbol = {b.token.symbol: b for b in balances}
        assert set(by_symbol) == {"BTC", "DOT"}
        assert by_symbol["DOT"].ui_amount == 15.0
        assert by_symbol["BTC"].ui_amount == 0.125
        assert by_symbol["BTC"].token.decimals == 8
        assert by_symbol["BTC"].token.exchange == "kraken"
        await source.client.close()

    @pytest.mark.asyncio
    async def test_prices_include_held_assets(self, source, mock_api) -> None:
        """
        Given: an account holding DOT and no earlier balance fetch
        When: prices are fetched
        Then: DOT is quoted alongside the common assets
        """
        mock_api.post(BALANCE_URL).mock(
            return_value=httpx.Response(200, json={"error": [], "result": {"DOT": "1"}})
        )
        quotes = mock_api.get(QUOTES_URL).mock(
            return_value=httpx.Response(
                200, json={"data": {"DOT": [{"quote": {"USD": {"price": 7.0}}}]}}
            )
        )

        prices = await source.fetch_prices()

        assert prices["DOT"].price == 7.0
        assert prices["USD"].price == 1.0
        assert "DOT" in quotes.calls.last.request.url.params["symbol"].split(",")
        await source.client.close()
        await source.cmc.close()

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_balance_request(self, source, mock_api) -> None:
        balance = mock_api.post(BALANCE_URL).mock(
            return_value=httpx.Response(200, json={"error": [], "result": {"XXBT": "1"}})
        )
        mock_api.get(QUOTES_URL).mock(
            return_value=httpx.Response(
                200, json={"data": {"BTC": [{"quote": {"USD": {"price": 60000.0}}}]}}
            )
        )

        balances, prices = await asyncio.gather(
            source.fetch_balances("main"), source.fetch_prices()
        )

        assert [b.token.symbol for b in balances] == ["BTC"]
        assert prices["BTC"].price == 60000.0
        assert balance.call_count == 1
        await source.client.close()
        await source.cmc.close()

    @pytest.mark.asyncio
    async def test_prices_propagate_missing_credentials(self, mock_api) -> None:
        source = KrakenSource(KrakenClient(), CoinMarketCapClient(api_key="k"))
        quotes = mock_api.get(QUOTES_URL)

        with pytest.raises(NotConfiguredError, match="KRAKEN_API_KEY"):
            await source.fetch_prices()

        assert not quotes.called
        await source.cmc.close()

    def test_explorer_url(self) -> None:
        assert KrakenSource.explorer_url("main") == "https://www.kraken.com/u/funding"
