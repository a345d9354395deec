# pricesync/services/constants.py
"""
Centralized constants for the pricesync services.

Usage:
    from pricesync.services.constants import (
        FIVE_MINUTES,
        INTRADAY_DENSE_WINDOW,
        MAX_INSERT_BATCH_SIZE,
    )
"""

from datetime import datetime, timedelta, timezone


# =============================================================================
# DENSITY STEPS
# =============================================================================

FIVE_MINUTES: timedelta = timedelta(minutes=5)
ONE_HOUR: timedelta = timedelta(hours=1)
ONE_DAY: timedelta = timedelta(days=1)


# =============================================================================
# DENSITY BOUNDARIES (measured back from "now")
# =============================================================================

# Prices younger than this are kept at 5-minute density
INTRADAY_DENSE_WINDOW: timedelta = timedelta(days=1)

# Prices younger than this (and older than the dense window) are kept hourly
INTRADAY_HOURLY_WINDOW: timedelta = timedelta(days=5)


# =============================================================================
# ACQUISITION SETTINGS
# =============================================================================

# Upper bound for a single bulk insert call
MAX_INSERT_BATCH_SIZE: int = 1000

# Resolution of "now" for stored prices: latest prices and range ends are
# rounded down to this step so repeated runs hit the same timestamps
PRICE_TIME_RESOLUTION: timedelta = FIVE_MINUTES

# exchangerate.host timeseries endpoint limit per request
EXCHANGE_RATE_TIMESERIES_MAX_DAYS: int = 365

# Precision used to turn fractional split ratios into integers (1/10000)
SPLIT_RATIO_PRECISION: int = 10_000

# Acquisition start for entities that were never tracked
FINANCIAL_DATA_START_TIME: datetime = datetime(2000, 1, 1, tzinfo=timezone.utc)
