# pricesync/services/currency_converter.py
"""
Currency conversion of price points using stored exchange rates.

=============================================================================
RATE CONVENTION
=============================================================================

    rate = "1 base_currency = X target_currency"

Conversion formula:
    base → target:  target_amount = base_amount × rate
    target → base:  base_amount = target_amount ÷ rate

Stored rates always have the default currency as base, so a rate between
two non-default currencies is crossed through the default currency.

Lookup order for from → to at time T (latest rate at or before T):
    1. direct    (from, to)
    2. inverse   (to, from)
    3. cross     from → default → to, each leg direct or inverse

Usage:
    from pricesync.services.currency_converter import CurrencyConverter

    converter = CurrencyConverter(ExchangeRateRepository(db), default_currency="USD")
    eur_point = converter.convert(usd_point, "EUR")
"""

import logging
from datetime import datetime
from decimal import Decimal

from pricesync.services.exceptions import MissingConversionRateError
from pricesync.services.protocols import ExchangeRateRepositoryProtocol
from pricesync.services.types import PricePoint

logger = logging.getLogger(__name__)

PRICE_QUANTUM = Decimal("0.00000001")


class CurrencyConverter:
    """
    Converts prices between currencies at a point in time.

    Attributes:
        rates: Exchange rate lookup
        default_currency: Base currency of the stored rates
    """

    def __init__(self, rates: ExchangeRateRepositoryProtocol, default_currency: str) -> None:
        self.rates = rates
        self.default_currency = default_currency.upper()

    def get_rate(self, from_currency: str, to_currency: str, time: datetime) -> Decimal:
        """
        Rate converting from_currency into to_currency at the given time.

        Args:
            from_currency: Source ISO 4217 code
            to_currency: Target ISO 4217 code
            time: Instant the rate must be valid at

        Returns:
            Units of to_currency per unit of from_currency

        Raises:
            MissingConversionRateError: If no rate (direct, inverse or cross) exists
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return Decimal(1)

        rate = self._pair_rate(from_currency, to_currency, time)
        if rate is not None:
            return rate

        if self.default_currency not in (from_currency, to_currency):
            to_default = self._pair_rate(from_currency, self.default_currency, time)
            from_default = self._pair_rate(self.default_currency, to_currency, time)
            if to_default is not None and from_default is not None:
                return to_default * from_default

        raise MissingConversionRateError(from_currency, to_currency, time)

    def convert(self, point: PricePoint, target_currency: str) -> PricePoint:
        """
        Express a price point in another currency, at the point's own time.

        Raises:
            MissingConversionRateError: If no rate exists at the point's time
        """
        target_currency = target_currency.upper()
        if point.currency_code.upper() == target_currency:
            return point

        rate = self.get_rate(point.currency_code, target_currency, point.time)
        return PricePoint(
            symbol=point.symbol,
            currency_code=target_currency,
            price=(point.price * rate).quantize(PRICE_QUANTUM),
            time=point.time,
        )

    def _pair_rate(self, from_currency: str, to_currency: str, time: datetime) -> Decimal | None:
        direct = self.rates.get_rate_at(from_currency, to_currency, time)
        if direct is not None and direct.rate:
            return Decimal(direct.rate)

        inverse = self.rates.get_rate_at(to_currency, from_currency, time)
        if inverse is not None and inverse.rate:
            return Decimal(1) / Decimal(inverse.rate)

        return None
