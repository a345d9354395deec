# pricesync/services/market_data/http.py
"""
JSON over HTTP for provider clients.

`get_json` performs one GET with httpx and classifies every failure into
the provider exception taxonomy:

    timeout, transport error      -> ProviderUnavailableError (transient)
    HTTP 429                      -> RateLimitError (transient)
    HTTP 5xx                      -> ProviderUnavailableError (transient)
    HTTP 404                      -> TickerNotFoundError (permanent)
    other HTTP 4xx, invalid JSON  -> InvalidResponseError (permanent)

Timeouts are configured on the AsyncClient, never by the router.
"""

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from pricesync.services.exceptions import (
    InvalidResponseError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from pricesync.services.market_data.base import MarketDataProvider
from pricesync.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "pricesync/0.1",
}


def create_client(timeout: float = 10.0, **kwargs: Any) -> httpx.AsyncClient:
    """
    Build the AsyncClient shared by a provider's requests.

    Args:
        timeout: Total timeout in seconds for one request
        **kwargs: Passed through to httpx.AsyncClient (e.g., transport)

    Returns:
        Configured httpx.AsyncClient
    """
    headers = {**DEFAULT_HEADERS, **kwargs.pop("headers", {})}
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout), headers=headers, **kwargs)


async def get_json(
        client: httpx.AsyncClient,
        url: str,
        provider: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        symbol: str | None = None,
) -> Any:
    """
    GET a URL and decode its JSON body.

    Args:
        client: AsyncClient to issue the request with
        url: Absolute URL
        provider: Provider name for error messages
        params: Query parameters
        headers: Extra request headers
        symbol: Requested symbol, reported on 404

    Returns:
        Decoded JSON document

    Raises:
        ProviderUnavailableError: Timeout, connection failure, 5xx
        RateLimitError: HTTP 429
        TickerNotFoundError: HTTP 404
        InvalidResponseError: Other 4xx or undecodable body
    """
    try:
        response = await client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as e:
        raise ProviderUnavailableError(provider=provider, reason=f"timeout: {e!r}")
    except httpx.TransportError as e:
        raise ProviderUnavailableError(provider=provider, reason=f"connection error: {e!r}")

    status = response.status_code
    # Query strings carry API keys, log the bare URL only
    logger.debug(f"{provider}: GET {url} -> {status}")

    if status == 429:
        raise RateLimitError(provider=provider, retry_after=_retry_after(response))
    if status >= 500:
        raise ProviderUnavailableError(provider=provider, reason=f"HTTP {status}")
    if status == 404:
        if symbol:
            raise TickerNotFoundError(symbol=symbol, provider=provider)
        raise InvalidResponseError(provider=provider, reason="HTTP 404")
    if status >= 400:
        raise InvalidResponseError(provider=provider, reason=f"HTTP {status}")

    try:
        return response.json()
    except ValueError as e:
        raise InvalidResponseError(provider=provider, reason=f"invalid JSON: {e}")


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class HttpMarketDataProvider(MarketDataProvider):
    """
    Provider client backed by an httpx.AsyncClient.

    Subclasses call `_get_json()` from their handlers. A client can be
    injected (tests pass one with httpx.MockTransport); otherwise one is
    created with the configured timeout.
    """

    def __init__(
            self,
            rate_limiter: RateLimiter,
            client: httpx.AsyncClient | None = None,
            timeout: float = 10.0,
    ) -> None:
        self._client = client or create_client(timeout)
        super().__init__(rate_limiter)

    async def _get_json(
            self,
            url: str,
            params: Mapping[str, Any] | None = None,
            headers: Mapping[str, str] | None = None,
            symbol: str | None = None,
    ) -> Any:
        return await get_json(self._client, url, self.name, params=params, headers=headers, symbol=symbol)

    async def aclose(self) -> None:
        await self._client.aclose()
