# pricesync/jobs/__init__.py
"""
Scheduled jobs of the acquisition engine.

Each job is run once per trigger by an external scheduler:
- MissingInstrumentPricesJob: fills price gaps of tracked instruments
- MissingExchangeRatesJob: fills daily exchange rate gaps of the default currency
- LatestPricesJob / LatestExchangeRatesJob: store the newest quote
- SplitFetchJob: records new split events
- InstrumentPriceCleanupJob: thins aged prices back to the density rule

Usage:
    from pricesync.jobs import MissingInstrumentPricesJob

    result = await MissingInstrumentPricesJob(fetcher, instruments, prices, converter).run()
"""

from pricesync.jobs.base import Job, JobResult
from pricesync.jobs.latest_exchange_rates import LatestExchangeRatesJob
from pricesync.jobs.latest_prices import LatestPricesJob
from pricesync.jobs.missing_exchange_rates import MissingExchangeRatesJob
from pricesync.jobs.missing_prices import MissingInstrumentPricesJob
from pricesync.jobs.price_cleanup import InstrumentPriceCleanupJob, find_superseded_prices
from pricesync.jobs.splits import SplitFetchJob

__all__ = [
    "Job",
    "JobResult",
    "MissingInstrumentPricesJob",
    "MissingExchangeRatesJob",
    "LatestPricesJob",
    "LatestExchangeRatesJob",
    "SplitFetchJob",
    "InstrumentPriceCleanupJob",
    "find_superseded_prices",
]
