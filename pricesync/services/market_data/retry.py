# pricesync/services/market_data/retry.py
"""
Retry policy for provider calls.

A RetryPolicy is an ordered list of backoff delays. The first attempt runs
immediately, each delay precedes one retry, so a policy with N delays makes
at most N + 1 attempts. Only TRANSIENT_ERROR responses are retried.

Backoff sleeps go through asyncio, so waiting on one provider never blocks
other entities processed concurrently.

Usage:
    from pricesync.services.market_data.retry import RetryPolicy

    policy = RetryPolicy((1.0, 5.0))
    response = await policy.run(lambda: provider.process(request))
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import ClassVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
)

from pricesync.services.market_data.base import ProviderResponse, ResponseStatus

logger = logging.getLogger(__name__)


def _is_transient(response: ProviderResponse) -> bool:
    return response.status == ResponseStatus.TRANSIENT_ERROR


def _last_response(retry_state: RetryCallState) -> ProviderResponse:
    # Attempts exhausted: hand the final response back instead of raising RetryError
    return retry_state.outcome.result()


@dataclass(frozen=True)
class RetryPolicy:
    """
    Ordered backoff delays, in seconds.

    Attributes:
        delays: Delay before retry 1, retry 2, ...

    Presets:
        RetryPolicy.NONE      - single attempt
        RetryPolicy.FAST      - 2 retries after 0.5s, 1s
        RetryPolicy.STANDARD  - 3 retries after 1s, 5s, 15s
    """

    delays: tuple[float, ...] = ()

    NONE: ClassVar["RetryPolicy"]
    FAST: ClassVar["RetryPolicy"]
    STANDARD: ClassVar["RetryPolicy"]

    def __post_init__(self) -> None:
        object.__setattr__(self, "delays", tuple(float(d) for d in self.delays))
        if any(d < 0 for d in self.delays):
            raise ValueError(f"delays cannot be negative, got {self.delays}")

    @classmethod
    def from_seconds(cls, delays: Sequence[float]) -> "RetryPolicy":
        return cls(tuple(delays))

    @property
    def attempts(self) -> int:
        """Total attempts: the first try plus one retry per delay."""
        return len(self.delays) + 1

    def delay_for(self, attempt_number: int) -> float:
        """
        Delay to wait after the given (1-based) attempt failed.

        Args:
            attempt_number: Number of the attempt that just failed

        Returns:
            Seconds to wait before the next attempt
        """
        if not self.delays:
            return 0.0
        index = min(max(attempt_number, 1), len(self.delays)) - 1
        return self.delays[index]

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number)

    async def run(
            self,
            call: Callable[[], Awaitable[ProviderResponse]],
            sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> ProviderResponse:
        """
        Run a provider call, retrying transient failures.

        Args:
            call: Zero-argument coroutine factory performing one attempt
            sleep: Async sleep used between attempts

        Returns:
            The first non-transient response, or the last transient one
            once all attempts are used
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=self._wait,
            retry=retry_if_result(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            retry_error_callback=_last_response,
            sleep=sleep,
        )
        return await retrying(call)


RetryPolicy.NONE = RetryPolicy()
RetryPolicy.FAST = RetryPolicy((0.5, 1.0))
RetryPolicy.STANDARD = RetryPolicy((1.0, 5.0, 15.0))
