"""Base API client for upstream chain, indexer and exchange APIs.

This module provides BaseAPIClient, a thin httpx wrapper that makes one
attempt per call and maps transport failures onto the Chainfolio exception
hierarchy. Retries, backoff and rate limiting live in
``chainfolio.services.retry.RetryExecutor``, which handlers wrap around
these clients.
"""

import itertools
from typing import Any

import httpx
import structlog

from chainfolio.core.exceptions import FetchTimeoutError, UpstreamError

log = structlog.get_logger(__name__)


class BaseAPIClient:
    """Base API client with lazy httpx client and error mapping.

    Attributes:
        service: Short service name used in errors and logs.
        base_url: Base URL for all requests.
        timeout: Request timeout in seconds.
        headers: Default headers for all requests.

    Example:
        client = BaseAPIClient(
            service="example",
            base_url="https://api.example.com",
            headers={"Authorization": "Bearer token"},
        )
        response = await client.get("/endpoint")
        await client.close()
    """

    def __init__(
        self,
        service: str,
        base_url: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize BaseAPIClient.

        Args:
            service: Service name used in errors and logs.
            base_url: Base URL for all requests.
            timeout: Request timeout in seconds (default: 30).
            headers: Default headers for all requests.
        """
        self.service = service
        self.base_url = base_url
        self.timeout = timeout
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None
        self._rpc_ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client (lazy initialization).

        Returns:
            The httpx AsyncClient instance.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
            )
            log.debug("httpx_client_created", service=self.service, base_url=self.base_url)
        return self._client

    async def close(self) -> None:
        """Close the httpx client and release resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            log.debug("httpx_client_closed", service=self.service)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Make a single HTTP request.

        Args:
            method: HTTP method (GET, POST).
            path: Request path (appended to base_url).
            **kwargs: Additional arguments passed to httpx.request.

        Returns:
            httpx.Response on success.

        Raises:
            FetchTimeoutError: If the request times out.
            UpstreamError: On connection errors or non-2xx responses.
        """
        client = await self._get_client()

        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            log.warning(
                "request_status_error",
                service=self.service,
                method=method,
                path=path,
                status_code=status_code,
            )
            raise UpstreamError(
                service=self.service,
                message=f"HTTP {status_code} for {method} {path}",
                status_code=status_code,
            ) from e

        except httpx.TimeoutException as e:
            log.warning("request_timeout", service=self.service, method=method, path=path)
            raise FetchTimeoutError(self.service, self.timeout) from e

        except httpx.RequestError as e:
            log.warning(
                "request_connection_error",
                service=self.service,
                method=method,
                path=path,
                error=str(e),
            )
            raise UpstreamError(service=self.service, message=str(e) or type(e).__name__) from e

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        """Make a GET request."""
        return await self._request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        """Make a POST request."""
        return await self._request("POST", path, **kwargs)

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            UpstreamError: If the body is not valid JSON.
        """
        response = await self.get(path, **kwargs)
        return self._decode(response)

    async def json_rpc(self, method: str, params: list[Any], path: str = "") -> Any:
        """Call a JSON-RPC 2.0 method and return its ``result``.

        Args:
            method: RPC method name.
            params: Positional parameters.
            path: Request path, usually empty for RPC nodes.

        Raises:
            UpstreamError: If the node returns an ``error`` object or no result.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._rpc_ids),
            "method": method,
            "params": params,
        }
        response = await self.post(path, json=payload)
        data = self._decode(response)

        if not isinstance(data, dict):
            raise UpstreamError(service=self.service, message=f"{method}: malformed response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            log.warning("rpc_response_error", service=self.service, method=method, error=message)
            raise UpstreamError(service=self.service, message=f"{method}: {message}")
        if "result" not in data:
            raise UpstreamError(service=self.service, message=f"{method}: missing result")
        return data["result"]

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(service=self.service, message="invalid JSON payload") from e
