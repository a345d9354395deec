# tests/services/market_data/test_http_providers.py
"""
Tests for the HTTP provider clients against httpx.MockTransport.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from conftest import NOW, make_limiter
from pricesync.services.exceptions import (
    InvalidResponseError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from pricesync.services.market_data.alpha_vantage import AlphaVantageProvider
from pricesync.services.market_data.base import (
    ExchangeRatesRequest,
    IntradayInterval,
    PriceRequest,
    RequestType,
    ResponseStatus,
)
from pricesync.services.market_data.exchange_rate_host import (
    ExchangeRateHostProvider,
    parse_rates,
    split_into_windows,
)
from pricesync.services.market_data.http import get_json
from pricesync.services.market_data.open_exchange_rates import OpenExchangeRatesProvider
from pricesync.services.market_data.tiingo import TiingoProvider

UTC = timezone.utc
JUNE_10 = datetime(2024, 6, 10, tzinfo=UTC)


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def daily_request(symbol: str = "AAPL", from_time: datetime = JUNE_10) -> PriceRequest:
    return PriceRequest(
        request_type=RequestType.DAILY_PRICES,
        symbol=symbol,
        currency_code="USD",
        from_time=from_time,
        to_time=NOW,
    )


# =============================================================================
# HTTP ERROR CLASSIFICATION
# =============================================================================

class TestGetJson:
    """Tests for get_json() failure classification."""

    @pytest.mark.asyncio
    async def test_decodes_json(self):
        """Should return the decoded body on success."""
        client = mock_client(lambda request: httpx.Response(200, json={"ok": True}))

        assert await get_json(client, "https://example.test/a", "test") == {"ok": True}

    @pytest.mark.asyncio
    async def test_429_is_rate_limit(self):
        """Should raise RateLimitError with the Retry-After value."""
        client = mock_client(lambda request: httpx.Response(429, headers={"Retry-After": "30"}))

        with pytest.raises(RateLimitError) as exc_info:
            await get_json(client, "https://example.test/a", "test")

        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_5xx_is_unavailable(self):
        """Should raise ProviderUnavailableError on server errors."""
        client = mock_client(lambda request: httpx.Response(503))

        with pytest.raises(ProviderUnavailableError, match="HTTP 503"):
            await get_json(client, "https://example.test/a", "test")

    @pytest.mark.asyncio
    async def test_404_with_symbol_is_ticker_not_found(self):
        """Should report the symbol on 404."""
        client = mock_client(lambda request: httpx.Response(404))

        with pytest.raises(TickerNotFoundError):
            await get_json(client, "https://example.test/a", "test", symbol="NOPE")

    @pytest.mark.asyncio
    async def test_other_4xx_is_invalid(self):
        """Should raise InvalidResponseError on client errors."""
        client = mock_client(lambda request: httpx.Response(400))

        with pytest.raises(InvalidResponseError):
            await get_json(client, "https://example.test/a", "test")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Should raise InvalidResponseError for a non-JSON body."""
        client = mock_client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(InvalidResponseError, match="invalid JSON"):
            await get_json(client, "https://example.test/a", "test")

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        """Should raise ProviderUnavailableError on connection failures."""
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderUnavailableError, match="connection error"):
            await get_json(mock_client(refuse), "https://example.test/a", "test")

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        """Should raise ProviderUnavailableError on timeouts."""
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderUnavailableError, match="timeout"):
            await get_json(mock_client(slow), "https://example.test/a", "test")


# =============================================================================
# TIINGO
# =============================================================================

class TestTiingoProvider:
    """Tests for TiingoProvider."""

    @pytest.mark.asyncio
    async def test_daily_prices(self):
        """Should parse closes, skip rows without a close and pass the token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[
                {"date": "2024-06-10T00:00:00.000Z", "close": 190.5},
                {"date": "2024-06-11T00:00:00.000Z", "close": 191.25},
                {"date": "2024-06-12T00:00:00.000Z", "close": None},
            ])

        provider = TiingoProvider("secret", make_limiter("tiingo"), client=mock_client(handler))

        response = await provider.process(daily_request())

        assert response.ok
        assert [(p.time, p.price) for p in response.result] == [
            (JUNE_10, Decimal("190.5")),
            (JUNE_10 + timedelta(days=1), Decimal("191.25")),
        ]
        assert all(p.currency_code == "USD" for p in response.result)
        assert seen[0].url.path == "/tiingo/daily/AAPL/prices"
        assert seen[0].url.params["token"] == "secret"
        assert seen[0].url.params["startDate"] == "2024-06-10"

    @pytest.mark.asyncio
    async def test_latest_price(self):
        """Should read the IEX last price."""
        client = mock_client(lambda request: httpx.Response(200, json=[{"tngoLast": 192.1}]))
        provider = TiingoProvider("secret", make_limiter("tiingo"), client=client)

        response = await provider.process(
            PriceRequest(request_type=RequestType.LATEST_PRICE, symbol="AAPL", currency_code="USD")
        )

        assert response.result.price == Decimal("192.1")

    @pytest.mark.asyncio
    async def test_latest_price_unknown_symbol(self):
        """Should classify an empty IEX answer as a permanent failure."""
        client = mock_client(lambda request: httpx.Response(200, json=[]))
        provider = TiingoProvider("secret", make_limiter("tiingo"), client=client)

        response = await provider.process(
            PriceRequest(request_type=RequestType.LATEST_PRICE, symbol="NOPE", currency_code="USD")
        )

        assert response.status == ResponseStatus.PERMANENT_ERROR

    @pytest.mark.asyncio
    async def test_crypto_history_is_downloaded_in_windows(self):
        """Should keep requesting from the last price until the range end is reached."""
        pages = [
            [NOW - timedelta(hours=4), NOW - timedelta(hours=3)],
            [NOW - timedelta(hours=3), NOW - timedelta(hours=2), NOW - timedelta(hours=1)],
        ]
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            page = pages[len(seen)]
            seen.append(request)
            return httpx.Response(200, json=[{
                "ticker": "btcusd",
                "priceData": [{"date": t.isoformat(), "close": 65000} for t in page],
            }])

        provider = TiingoProvider("secret", make_limiter("tiingo"), client=mock_client(handler))
        request = PriceRequest(
            request_type=RequestType.INTRADAY_CRYPTO_PRICES,
            symbol="BTC",
            currency_code="USD",
            from_time=NOW - timedelta(hours=4),
            to_time=NOW,
            interval=IntradayInterval.ONE_HOUR,
        )

        response = await provider.process(request)

        assert response.ok
        assert [p.time for p in response.result] == [NOW - timedelta(hours=h) for h in (4, 3, 2, 1)]
        assert len(seen) == 2
        assert seen[0].url.params["tickers"] == "btcusd"
        assert seen[0].url.params["resampleFreq"] == "60min"

    def test_supported_requests(self):
        """Should not register intraday stock prices."""
        provider = TiingoProvider("secret", make_limiter("tiingo"), client=mock_client(lambda r: httpx.Response(200)))

        assert not provider.supports(RequestType.INTRADAY_PRICES)
        assert provider.supports(RequestType.LATEST_CRYPTO_PRICE)


# =============================================================================
# ALPHA VANTAGE
# =============================================================================

class TestAlphaVantageProvider:
    """Tests for AlphaVantageProvider."""

    @pytest.mark.asyncio
    async def test_daily_prices_are_split_adjusted(self):
        """Should express prices before a split in post-split units."""
        body = {
            "Time Series (Daily)": {
                "2024-06-12": {"4. close": "101.0", "8. split coefficient": "1.0"},
                "2024-06-11": {"4. close": "100.0", "8. split coefficient": "2.0"},
                "2024-06-10": {"4. close": "200.0", "8. split coefficient": "1.0"},
                "2024-06-07": {"4. close": "190.0", "8. split coefficient": "1.0"},
            }
        }
        client = mock_client(lambda request: httpx.Response(200, json=body))
        provider = AlphaVantageProvider("key", make_limiter("alpha_vantage"), client=client)

        response = await provider.process(daily_request())

        assert [(p.time.day, p.price) for p in response.result] == [
            (10, Decimal("100")),
            (11, Decimal("100")),
            (12, Decimal("101")),
        ]

    @pytest.mark.asyncio
    async def test_quota_note_is_transient(self):
        """Should treat the quota note as a rate limit."""
        client = mock_client(lambda request: httpx.Response(200, json={"Note": "Thank you for using"}))
        provider = AlphaVantageProvider("key", make_limiter("alpha_vantage"), client=client)

        response = await provider.process(daily_request())

        assert response.status == ResponseStatus.TRANSIENT_ERROR

    @pytest.mark.asyncio
    async def test_error_message_is_permanent(self):
        """Should treat an error message as an unknown symbol."""
        client = mock_client(lambda request: httpx.Response(200, json={"Error Message": "Invalid API call"}))
        provider = AlphaVantageProvider("key", make_limiter("alpha_vantage"), client=client)

        response = await provider.process(daily_request("NOPE"))

        assert response.status == ResponseStatus.PERMANENT_ERROR
        assert "NOPE" in response.error_message

    @pytest.mark.asyncio
    async def test_latest_price(self):
        """Should read the global quote price."""
        client = mock_client(lambda request: httpx.Response(200, json={"Global Quote": {"05. price": "189.99"}}))
        provider = AlphaVantageProvider("key", make_limiter("alpha_vantage"), client=client)

        response = await provider.process(
            PriceRequest(request_type=RequestType.LATEST_PRICE, symbol="AAPL", currency_code="USD")
        )

        assert response.result.price == Decimal("189.99")


# =============================================================================
# EXCHANGE RATES
# =============================================================================

class TestSplitIntoWindows:
    """Tests for split_into_windows()."""

    def test_short_range_is_one_window(self):
        """Should keep a short range as a single window."""
        assert split_into_windows(JUNE_10, NOW) == [(JUNE_10, NOW)]

    def test_two_year_range(self):
        """Should split two years into consecutive non-overlapping windows."""
        start = datetime(2022, 1, 1, tzinfo=UTC)
        end = datetime(2024, 1, 1, tzinfo=UTC)

        assert split_into_windows(start, end) == [
            (start, datetime(2022, 12, 31, tzinfo=UTC)),
            (datetime(2023, 1, 1, tzinfo=UTC), end),
        ]

    def test_parse_rates_normalizes(self):
        """Should upper-case codes and drop unusable values."""
        assert parse_rates({"eur": 0.9, "CZK": "23", "BAD": None, "ZERO": 0}) == {
            "EUR": Decimal("0.9"),
            "CZK": Decimal("23"),
        }


class TestExchangeRateHostProvider:
    """Tests for ExchangeRateHostProvider."""

    @pytest.mark.asyncio
    async def test_daily_rates(self):
        """Should return one rate set per day, sorted."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/timeseries"
            assert request.url.params["base"] == "USD"
            return httpx.Response(200, json={
                "base": "USD",
                "rates": {
                    "2024-06-11": {"EUR": 0.93, "CZK": 23.2},
                    "2024-06-10": {"EUR": 0.92, "czk": 23.1},
                },
            })

        provider = ExchangeRateHostProvider(make_limiter("erh"), client=mock_client(handler))
        request = ExchangeRatesRequest(
            request_type=RequestType.DAILY_EXCHANGE_RATES,
            base_currency="USD",
            from_time=JUNE_10,
            to_time=NOW,
        )

        response = await provider.process(request)

        assert response.ok
        assert [s.time for s in response.result] == [JUNE_10, JUNE_10 + timedelta(days=1)]
        assert response.result[0].rates == {"EUR": Decimal("0.92"), "CZK": Decimal("23.1")}

    @pytest.mark.asyncio
    async def test_partial_window_failure_keeps_successful_windows(self):
        """Should return the windows that succeeded when another one fails."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["start_date"] == "2022-01-01":
                return httpx.Response(503)
            return httpx.Response(200, json={"rates": {"2023-06-01": {"EUR": 0.9}}})

        provider = ExchangeRateHostProvider(make_limiter("erh"), client=mock_client(handler))
        request = ExchangeRatesRequest(
            request_type=RequestType.DAILY_EXCHANGE_RATES,
            base_currency="USD",
            from_time=datetime(2022, 1, 1, tzinfo=UTC),
            to_time=datetime(2024, 1, 1, tzinfo=UTC),
        )

        response = await provider.process(request)

        assert response.ok
        assert [s.time for s in response.result] == [datetime(2023, 6, 1, tzinfo=UTC)]

    @pytest.mark.asyncio
    async def test_all_windows_failing_is_reported(self):
        """Should report the failure when every window fails."""
        provider = ExchangeRateHostProvider(
            make_limiter("erh"), client=mock_client(lambda request: httpx.Response(503))
        )
        request = ExchangeRatesRequest(
            request_type=RequestType.DAILY_EXCHANGE_RATES,
            base_currency="USD",
            from_time=datetime(2022, 1, 1, tzinfo=UTC),
            to_time=datetime(2024, 1, 1, tzinfo=UTC),
        )

        response = await provider.process(request)

        assert response.status == ResponseStatus.TRANSIENT_ERROR

    @pytest.mark.asyncio
    async def test_latest_rates_with_access_key(self):
        """Should send the access key and parse the latest rates."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"base": "USD", "rates": {"EUR": 0.91}})

        provider = ExchangeRateHostProvider(make_limiter("erh"), access_key="k", client=mock_client(handler))

        response = await provider.process(
            ExchangeRatesRequest(request_type=RequestType.LATEST_EXCHANGE_RATES, base_currency="USD")
        )

        assert response.result.base_currency == "USD"
        assert response.result.rates == {"EUR": Decimal("0.91")}
        assert seen[0].url.params["access_key"] == "k"

    @pytest.mark.asyncio
    async def test_missing_rates_is_permanent(self):
        """Should classify a body without rates as invalid."""
        provider = ExchangeRateHostProvider(
            make_limiter("erh"),
            client=mock_client(lambda request: httpx.Response(200, json={"success": False})),
        )

        response = await provider.process(
            ExchangeRatesRequest(request_type=RequestType.LATEST_EXCHANGE_RATES, base_currency="USD")
        )

        assert response.status == ResponseStatus.PERMANENT_ERROR


class TestOpenExchangeRatesProvider:
    """Tests for OpenExchangeRatesProvider."""

    @pytest.mark.asyncio
    async def test_latest_rates_use_response_timestamp(self):
        """Should stamp the rates with the response's own timestamp."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "timestamp": int(NOW.timestamp()),
                "base": "USD",
                "rates": {"EUR": 0.92, "CZK": 23.3},
            })

        provider = OpenExchangeRatesProvider("app", make_limiter("oxr"), client=mock_client(handler))

        response = await provider.process(
            ExchangeRatesRequest(request_type=RequestType.LATEST_EXCHANGE_RATES, base_currency="USD")
        )

        assert response.result.time == NOW
        assert response.result.rates["CZK"] == Decimal("23.3")
        assert seen[0].url.path == "/api/latest.json"
        assert seen[0].url.params["app_id"] == "app"

    def test_only_latest_rates(self):
        """Should only register latest exchange rates."""
        provider = OpenExchangeRatesProvider("app", make_limiter("oxr"), client=mock_client(lambda r: httpx.Response(200)))

        assert provider.supported_requests == frozenset({RequestType.LATEST_EXCHANGE_RATES})
