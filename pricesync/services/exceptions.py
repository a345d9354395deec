# pricesync/services/exceptions.py
"""
Service layer exceptions.

Exception Hierarchy:
    ServiceError (base)
    ├── ConfigurationError
    │   └── NoDefaultCurrencyError
    ├── MarketDataError
    │   ├── TransientProviderError
    │   │   ├── ProviderUnavailableError
    │   │   └── RateLimitError
    │   ├── PermanentProviderError
    │   │   ├── TickerNotFoundError
    │   │   └── InvalidResponseError
    │   ├── UnsupportedRequestError
    │   └── AllProvidersExhaustedError
    └── ConversionError
        └── MissingConversionRateError

Provider implementations raise the MarketDataError subclasses internally.
They never cross the provider boundary: MarketDataProvider.process()
translates them into a ProviderResponse status, and the router branches on
that status only.
"""

from datetime import datetime


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(ServiceError):
    """Raised when a job precondition on configured data is not met."""
    pass


class NoDefaultCurrencyError(ConfigurationError):
    """
    Raised when no default currency is configured.

    Fatal for the exchange-rate job: every stored rate is relative to the
    default currency, so the whole run is aborted.
    """

    def __init__(self) -> None:
        super().__init__("No default currency is configured")


# =============================================================================
# MARKET DATA PROVIDER ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """
    Base exception for market data provider failures.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class TransientProviderError(MarketDataError):
    """
    Connection-level failure. Retried against the same provider, then
    failed over to the next one.
    """
    pass


class ProviderUnavailableError(TransientProviderError):
    """
    Raised when a market data provider is temporarily unavailable.

    Examples:
    - Network timeout
    - Server errors (500, 502, 503)
    - Connection refused
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Provider '{provider}' is unavailable: {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class RateLimitError(TransientProviderError):
    """
    Raised when the provider's rate limit has been exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        message = f"Rate limit exceeded for provider '{provider}'"
        if retry_after:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class PermanentProviderError(MarketDataError):
    """
    Semantic failure (bad request, unknown symbol, malformed payload).
    Never retried, the router fails over immediately.
    """
    pass


class TickerNotFoundError(PermanentProviderError):
    """Raised when a symbol is not known to the provider."""

    def __init__(self, symbol: str, provider: str) -> None:
        message = f"Symbol '{symbol}' not found by {provider}"
        super().__init__(message, provider=provider)
        self.symbol = symbol


class InvalidResponseError(PermanentProviderError):
    """
    Raised when a provider response cannot be parsed.

    Attributes:
        reason: What was wrong with the payload
    """

    def __init__(self, provider: str, reason: str) -> None:
        message = f"Invalid data received from '{provider}': {reason}"
        super().__init__(message, provider=provider)
        self.reason = reason


class UnsupportedRequestError(MarketDataError):
    """Raised when a provider has no handler registered for a request type."""

    def __init__(self, provider: str, request_type: str) -> None:
        super().__init__(
            f"Provider '{provider}' cannot handle {request_type} requests",
            provider=provider,
        )
        self.request_type = request_type


class AllProvidersExhaustedError(MarketDataError):
    """
    Raised by the fetcher facade when no provider produced a result.

    Jobs treat this as a failed range: logged and skipped.
    """

    def __init__(self, request_type: str, reason: str) -> None:
        super().__init__(f"All providers exhausted for {request_type}: {reason}")
        self.request_type = request_type
        self.reason = reason


# =============================================================================
# CURRENCY CONVERSION ERRORS
# =============================================================================


class ConversionError(ServiceError):
    """
    Base exception for currency conversion errors.

    Attributes:
        from_currency: Source currency code
        to_currency: Target currency code
    """

    def __init__(self, message: str, from_currency: str, to_currency: str) -> None:
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(message)


class MissingConversionRateError(ConversionError):
    """
    Raised when no exchange rate exists for a conversion at a point in time.

    Non-fatal: the affected point is logged and dropped.

    Attributes:
        time: The instant for which the rate was requested
    """

    def __init__(self, from_currency: str, to_currency: str, time: datetime) -> None:
        self.time = time
        super().__init__(
            f"No exchange rate from {from_currency} to {to_currency} at {time.isoformat()}",
            from_currency=from_currency,
            to_currency=to_currency,
        )


__all__ = [
    # Base
    "ServiceError",
    # Configuration
    "ConfigurationError",
    "NoDefaultCurrencyError",
    # Market Data
    "MarketDataError",
    "TransientProviderError",
    "ProviderUnavailableError",
    "RateLimitError",
    "PermanentProviderError",
    "TickerNotFoundError",
    "InvalidResponseError",
    "UnsupportedRequestError",
    "AllProvidersExhaustedError",
    # Conversion
    "ConversionError",
    "MissingConversionRateError",
]
