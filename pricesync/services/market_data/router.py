# pricesync/services/market_data/router.py
"""
Multi-provider request routing with retry and failover.

For a canonical request the router walks the providers that registered a
handler for its type, in preference order:

    Trying(provider, attempt)
      ├── rate limiter rejects       -> next provider (not a retry)
      ├── OK                         -> return immediately
      ├── TRANSIENT_ERROR            -> wait next delay, retry same provider;
      │                                 next provider once delays run out
      └── PERMANENT_ERROR            -> next provider immediately
    no provider left                 -> ALL_PROVIDERS_EXHAUSTED

The router never raises for provider failures and enforces no timeouts of
its own; timeouts belong to each provider's HTTP client.

Usage:
    router = RequestRouter([tiingo, yahoo], retry_policy=RetryPolicy.STANDARD)
    response = await router.route(request)
    if response.ok:
        points = response.result
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from pricesync.services.market_data.base import (
    MarketDataProvider,
    ProviderResponse,
    Request,
    RequestType,
    ResponseStatus,
)
from pricesync.services.market_data.retry import RetryPolicy

logger = logging.getLogger(__name__)


class RequestRouter:
    """
    Routes canonical requests to an ordered list of providers.

    Attributes:
        providers: All providers, in preference order
        retry_policy: Backoff applied per provider

    Example:
        router = RequestRouter([a, b], retry_policy=RetryPolicy.NONE)
    """

    def __init__(
            self,
            providers: Sequence[MarketDataProvider],
            retry_policy: RetryPolicy = RetryPolicy.STANDARD,
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.providers = list(providers)
        self.retry_policy = retry_policy
        self._sleep = sleep

    def providers_for(self, request_type: RequestType) -> list[MarketDataProvider]:
        """Providers able to answer a request type, in preference order."""
        return [p for p in self.providers if p.supports(request_type)]

    async def route(self, request: Request) -> ProviderResponse:
        """
        Resolve a request against the capable providers.

        Args:
            request: Canonical request

        Returns:
            The first successful response, or an ALL_PROVIDERS_EXHAUSTED
            response carrying the last error message
        """
        request_type = request.request_type
        candidates = self.providers_for(request_type)
        if not candidates:
            logger.error(f"No provider registered for {request_type.value}")
            return ProviderResponse(
                ResponseStatus.ALL_PROVIDERS_EXHAUSTED,
                error_message=f"No provider supports {request_type.value} requests",
            )

        last_error = ""
        for provider in candidates:
            response, rate_limited = await self._try_provider(provider, request)

            if rate_limited:
                logger.warning(f"{provider.name}: rate limit reached, skipping for {request_type.value}")
                last_error = response.error_message or f"{provider.name}: rate limit reached"
                continue

            if response.ok:
                logger.debug(f"{provider.name}: {request_type.value} succeeded")
                return response

            last_error = f"{provider.name}: {response.error_message or response.status.value}"
            logger.warning(
                f"{provider.name}: {request_type.value} failed ({response.status.value}), "
                f"trying next provider"
            )

        logger.error(f"All providers exhausted for {request_type.value}: {last_error}")
        return ProviderResponse(
            ResponseStatus.ALL_PROVIDERS_EXHAUSTED,
            error_message=last_error or f"All providers failed for {request_type.value}",
        )

    async def _try_provider(
            self,
            provider: MarketDataProvider,
            request: Request,
    ) -> tuple[ProviderResponse, bool]:
        """
        Run one provider under the retry policy.

        Every attempt, retries included, must be admitted by the provider's
        rate limiter. A rejection ends this provider's turn without
        counting as a failed attempt.

        Returns:
            Tuple of (final response, whether the limiter rejected)
        """
        rate_limited = False

        async def attempt() -> ProviderResponse:
            nonlocal rate_limited
            if not provider.rate_limiter.allow():
                rate_limited = True
                return ProviderResponse.permanent(
                    f"{provider.name}: rate limit reached", provider=provider.name
                )
            return await provider.process(request)

        response = await self.retry_policy.run(attempt, sleep=self._sleep)
        return response, rate_limited
