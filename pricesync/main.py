# pricesync/main.py
"""
Job runner entry point.

This file:
- Configures process-wide logging
- Builds the object graph (providers, router, repositories, jobs) from settings
- Runs the requested jobs once, in a fixed order

Scheduling is external: a scheduler (cron, systemd timer, Kubernetes
CronJob, ...) invokes `python -m pricesync.main` at a fixed interval.
Each invocation is a new process, so provider quotas only hold across runs
when RATE_LIMIT_STORAGE_URI points at a shared store such as Redis.

Usage:
    import asyncio
    from pricesync.main import run_jobs

    results = asyncio.run(run_jobs(["missing_instrument_prices"]))
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import timedelta

from limits.storage import Storage, storage_from_string
from sqlalchemy.orm import Session, sessionmaker

from pricesync.config import Settings, settings as default_settings
from pricesync.database import create_db_engine, create_session_factory, init_db, session_scope
from pricesync.jobs import (
    InstrumentPriceCleanupJob,
    Job,
    JobResult,
    LatestExchangeRatesJob,
    LatestPricesJob,
    MissingExchangeRatesJob,
    MissingInstrumentPricesJob,
    SplitFetchJob,
)
from pricesync.repositories import (
    CurrencyRepository,
    ExchangeRateRepository,
    InstrumentPriceRepository,
    InstrumentRepository,
    InstrumentSplitRepository,
)
from pricesync.services.currency_converter import CurrencyConverter
from pricesync.services.exceptions import ConfigurationError
from pricesync.services.market_data import (
    AlphaVantageProvider,
    ExchangeRateHostProvider,
    MarketDataProvider,
    OpenExchangeRatesProvider,
    PriceFetcher,
    RequestRouter,
    RetryPolicy,
    TiingoProvider,
    YahooFinanceProvider,
)
from pricesync.services.rate_limiter import RateLimiter
from pricesync.utils import setup_logging

logger = logging.getLogger(__name__)

# Exchange rates first: price conversion needs them
JOB_ORDER: tuple[str, ...] = (
    MissingExchangeRatesJob.name,
    LatestExchangeRatesJob.name,
    MissingInstrumentPricesJob.name,
    LatestPricesJob.name,
    SplitFetchJob.name,
    InstrumentPriceCleanupJob.name,
)


# =============================================================================
# OBJECT GRAPH
# =============================================================================

def _limiter(name: str, max_requests: int, window_seconds: float, storage: Storage) -> RateLimiter:
    return RateLimiter(
        name=name,
        max_requests=max_requests,
        window=timedelta(seconds=window_seconds),
        storage=storage,
    )


def build_providers(config: Settings, storage: Storage | None = None) -> list[MarketDataProvider]:
    """
    Instantiate the configured providers in preference order.

    Providers that need credentials are only registered when the credential
    is set. One RateLimiter is created per credential, all of them keeping
    their windows in one `limits` storage.

    Args:
        config: Settings with credentials and rate windows
        storage: Rate limit storage; built from RATE_LIMIT_STORAGE_URI when None
    """
    if storage is None:
        storage = storage_from_string(config.rate_limit_storage_uri)
    timeout = config.http_timeout_seconds
    providers: list[MarketDataProvider] = []

    if config.tiingo_api_key:
        providers.append(TiingoProvider(
            config.tiingo_api_key,
            _limiter("tiingo", config.tiingo_max_requests, config.tiingo_window_seconds, storage),
            timeout=timeout,
        ))
    if config.yahoo_enabled:
        providers.append(YahooFinanceProvider(
            _limiter("yahoo", config.yahoo_max_requests, config.yahoo_window_seconds, storage),
            timeout=int(timeout),
        ))
    if config.alpha_vantage_api_key:
        providers.append(AlphaVantageProvider(
            config.alpha_vantage_api_key,
            _limiter(
                "alpha_vantage",
                config.alpha_vantage_max_requests,
                config.alpha_vantage_window_seconds,
                storage,
            ),
            timeout=timeout,
        ))
    if config.exchange_rate_host_enabled:
        providers.append(ExchangeRateHostProvider(
            _limiter(
                "exchange_rate_host",
                config.exchange_rate_host_max_requests,
                config.exchange_rate_host_window_seconds,
                storage,
            ),
            timeout=timeout,
        ))
    if config.open_exchange_rates_app_id:
        providers.append(OpenExchangeRatesProvider(
            config.open_exchange_rates_app_id,
            _limiter(
                "open_exchange_rates",
                config.open_exchange_rates_max_requests,
                config.open_exchange_rates_window_seconds,
                storage,
            ),
            timeout=timeout,
        ))

    logger.info(f"Registered providers: {', '.join(p.name for p in providers) or 'none'}")
    return providers


def _conversion_currency(currencies: CurrencyRepository, config: Settings) -> str:
    """Base currency of the stored rates: the database default, else the configured one."""
    default = currencies.get_default()
    if default is None:
        return config.default_currency
    if default.code != config.default_currency:
        logger.warning(
            f"Default currency in the database ({default.code}) differs from "
            f"DEFAULT_CURRENCY ({config.default_currency}), converting through {default.code}"
        )
    return default.code


def build_jobs(db: Session, fetcher: PriceFetcher, config: Settings) -> dict[str, Job]:
    """Instantiate every job over one session."""
    instruments = InstrumentRepository(db)
    prices = InstrumentPriceRepository(db)
    currencies = CurrencyRepository(db)
    rates = ExchangeRateRepository(db)
    splits = InstrumentSplitRepository(db)
    converter = CurrencyConverter(rates, _conversion_currency(currencies, config))

    jobs: list[Job] = [
        MissingExchangeRatesJob(
            fetcher, currencies, rates,
            batch_size=config.price_batch_size,
            start_time=config.financial_data_start_time,
        ),
        LatestExchangeRatesJob(fetcher, currencies, rates),
        MissingInstrumentPricesJob(
            fetcher, instruments, prices, converter,
            concurrency=config.job_concurrency,
            batch_size=config.price_batch_size,
            start_time=config.financial_data_start_time,
        ),
        LatestPricesJob(fetcher, instruments, prices, converter, concurrency=config.job_concurrency),
        SplitFetchJob(fetcher, instruments, splits, concurrency=config.job_concurrency),
        InstrumentPriceCleanupJob(instruments, prices),
    ]
    return {job.name: job for job in jobs}


# =============================================================================
# RUNNER
# =============================================================================

async def run_jobs(
        job_names: Sequence[str] | None = None,
        config: Settings = default_settings,
        session_factory: sessionmaker[Session] | None = None,
        providers: Sequence[MarketDataProvider] | None = None,
) -> list[JobResult]:
    """
    Run the requested jobs once, in JOB_ORDER.

    A job aborted by a configuration problem (e.g., no default currency) is
    logged and the remaining jobs still run.

    Args:
        job_names: Jobs to run; all jobs when None
        config: Settings to build the object graph from
        session_factory: Session factory; built from config when None
        providers: Providers to route through; built from config when None

    Returns:
        Results of the jobs that completed their run

    Raises:
        ValueError: If an unknown job name is requested
    """
    requested = list(JOB_ORDER) if job_names is None else list(job_names)
    unknown = set(requested) - set(JOB_ORDER)
    if unknown:
        raise ValueError(f"Unknown jobs: {', '.join(sorted(unknown))}")

    if session_factory is None:
        engine = create_db_engine(config.database_url)
        init_db(engine)
        session_factory = create_session_factory(engine)

    owned_providers = providers is None
    providers = build_providers(config) if providers is None else list(providers)
    router = RequestRouter(providers, retry_policy=RetryPolicy.from_seconds(config.retry_delays_seconds))
    fetcher = PriceFetcher(router)

    results: list[JobResult] = []
    try:
        with session_scope(session_factory) as db:
            jobs = build_jobs(db, fetcher, config)
            for name in JOB_ORDER:
                if name not in requested:
                    continue
                try:
                    results.append(await jobs[name].run())
                except ConfigurationError as e:
                    logger.error(f"Job {name} skipped: {e}")
    finally:
        if owned_providers:
            await asyncio.gather(*(p.aclose() for p in providers))

    return results


def main() -> None:
    setup_logging()
    asyncio.run(run_jobs())


if __name__ == "__main__":
    main()
