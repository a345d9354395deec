# pricesync/services/rate_limiter.py
"""
Sliding-window admission control for market data providers.

A RateLimiter answers "may I issue a request now?" for one provider
credential. It never blocks: on rejection the caller decides what to do
(the request router skips to the next provider).

The moving window itself is kept by the `limits` library, the same
engine behind slowapi. One RateLimiter instance must be shared by every
job that uses the same provider credential, otherwise each job would get
its own quota. The window lives in a `limits` storage: the default
in-process MemoryStorage is forgotten when the process exits, so a
scheduler that starts a fresh process per run should pass a persistent
storage (e.g., `storage_from_string("redis://localhost:6379")`).

Usage:
    from datetime import timedelta
    from pricesync.services.rate_limiter import RateLimiter

    limiter = RateLimiter(name="tiingo", max_requests=50, window=timedelta(hours=1))

    if limiter.allow():
        ...  # issue request
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import timedelta

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class RateLimiter:
    """
    Thread-safe moving-window rate limiter.

    Attributes:
        name: Identifier of the provider credential (used in logs)
        max_requests: Requests admitted within any trailing window
        window: Length of the trailing window
        storage: Backend holding the window; a private MemoryStorage when None.
            Limiters with the same name on the same storage share one quota.

    Example:
        limiter = RateLimiter(name="alpha_vantage", max_requests=25, window=timedelta(days=1))
    """

    name: str
    max_requests: int
    window: timedelta
    storage: Storage | None = field(default=None, repr=False)

    # Internal state (not part of constructor)
    _item: RateLimitItem = field(init=False, repr=False)
    _strategy: MovingWindowRateLimiter = field(init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _rejected: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window <= timedelta(0):
            raise ValueError("window must be positive")

        window_seconds = max(1, math.ceil(self.window.total_seconds()))
        self._item = RateLimitItemPerSecond(self.max_requests, window_seconds)
        if self.storage is None:
            self.storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self.storage)

        logger.debug(
            f"RateLimiter '{self.name}' initialized: "
            f"{self.max_requests} requests per {window_seconds}s"
        )

    def allow(self) -> bool:
        """
        Admit a request if the window has room, recording it on admission.

        Returns:
            True if the request may be issued now, False otherwise
        """
        with self._lock:
            admitted = self._strategy.hit(self._item, self.name)
            if not admitted:
                self._rejected += 1
        if not admitted:
            logger.debug(f"RateLimiter '{self.name}' rejected request")
        return admitted

    def remaining(self) -> int:
        """Requests that would still be admitted right now."""
        with self._lock:
            return self._strategy.get_window_stats(self._item, self.name).remaining

    @property
    def rejected_count(self) -> int:
        """Number of rejected admissions since creation or last reset."""
        with self._lock:
            return self._rejected

    def reset(self) -> None:
        """Forget all recorded requests."""
        with self._lock:
            self._strategy.clear(self._item, self.name)
            self._rejected = 0
