"""Tests for BaseAPIClient implementation."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from chainfolio.core.exceptions import FetchTimeoutError, UpstreamError
from chainfolio.services.base import BaseAPIClient

BASE_URL = "https://api.example.com"


@pytest.fixture
def client() -> BaseAPIClient:
    return BaseAPIClient(service="example", base_url=BASE_URL)


class TestBaseAPIClientInit:
    """Tests for BaseAPIClient initialization."""

    def test_defaults(self, client) -> None:
        """
        Given: BaseAPIClient without explicit timeout or headers
        When: Created
        Then: Uses a 30 second timeout, empty headers and no httpx client yet
        """
        assert client.service == "example"
        assert client.base_url == BASE_URL
        assert client.timeout == 30.0
        assert client.headers == {}
        assert client._client is None

    def test_custom_headers(self) -> None:
        headers = {"Authorization": "Bearer token123"}

        client = BaseAPIClient(service="example", base_url=BASE_URL, headers=headers)

        assert client.headers == headers


class TestBaseAPIClientClose:
    """Tests for BaseAPIClient close method."""

    @pytest.mark.asyncio
    async def test_close_cleans_up_client(self, client) -> None:
        mock_httpx_client = AsyncMock()
        client._client = mock_httpx_client

        await client.close()

        mock_httpx_client.aclose.assert_called_once()
        assert client._client is None

    @pytest.mark.asyncio
    async def test_close_does_nothing_if_no_client(self, client) -> None:
        await client.close()

        assert client._client is None


class TestErrorMapping:
    """Transport failures map onto the Chainfolio hierarchy."""

    @pytest.mark.asyncio
    async def test_success_returns_response(self, client, mock_api) -> None:
        mock_api.get(f"{BASE_URL}/ok").mock(return_value=httpx.Response(200, json={"a": 1}))

        assert await client.get_json("/ok") == {"a": 1}
        await client.close()

    @pytest.mark.asyncio
    async def test_http_error_becomes_upstream_error(self, client, mock_api) -> None:
        mock_api.get(f"{BASE_URL}/missing").mock(return_value=httpx.Response(503))

        with pytest.raises(UpstreamError) as exc_info:
            await client.get("/missing")

        assert exc_info.value.status_code == 503
        await client.close()

    @pytest.mark.asyncio
    async def test_timeout_becomes_fetch_timeout(self, client, mock_api) -> None:
        mock_api.get(f"{BASE_URL}/slow").mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(FetchTimeoutError):
            await client.get("/slow")
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_error_becomes_upstream_error(self, client, mock_api) -> None:
        mock_api.get(f"{BASE_URL}/down").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(UpstreamError) as exc_info:
            await client.get("/down")

        assert exc_info.value.status_code is None
        await client.close()

    @pytest.mark.asyncio
    async def test_invalid_json_becomes_upstream_error(self, client, mock_api) -> None:
        mock_api.get(f"{BASE_URL}/html").mock(return_value=httpx.Response(200, text="<html>"))

        with pytest.raises(UpstreamError, match="invalid JSON"):
            await client.get_json("/html")
        await client.close()


class TestJsonRpc:
    """JSON-RPC envelope handling."""

    @pytest.mark.asyncio
    async def test_returns_result(self, client, mock_api) -> None:
        route = mock_api.post(f"{BASE_URL}/").mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": 7})
        )

        assert await client.json_rpc("getSlot", []) == 7

        payload = json.loads(route.calls.last.request.content)
        assert payload["method"] == "getSlot"
        assert payload["jsonrpc"] == "2.0"
        await client.close()

    @pytest.mark.asyncio
    async def test_error_object_raises(self, client, mock_api) -> None:
        mock_api.post(f"{BASE_URL}/").mock(
            return_value=httpx.Response(
                200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad"}}
            )
        )

        with pytest.raises(UpstreamError, match="getBalance: bad"):
            await client.json_rpc("getBalance", ["addr"])
        await client.close()

    @pytest.mark.asyncio
    async def test_missing_result_raises(self, client, mock_api) -> None:
        mock_api.post(f"{BASE_URL}/").mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0"})
        )

        with pytest.raises(UpstreamError, match="missing result"):
            await client.json_rpc("getBalance", ["addr"])
        await client.close()
