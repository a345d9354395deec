# pricesync/jobs/base.py
"""
Common machinery of the scheduled jobs.

A job run is a discrete task: it is started by an external scheduler,
processes every entity once and returns a JobResult. Each run gets its own
run ID, attached to every log record emitted while it executes.

Design Principles:
- Partial Success: an entity that fails is logged and counted, the run continues
- Bounded Concurrency: entities are independent and processed through an
  asyncio.Semaphore (1 = sequential, in entity order)
- Cooperative Cancellation: `cancel()` stops the run at the next entity
  boundary; an entity already in progress is allowed to finish
- Injectable Clock: "now" comes from a callable so runs are reproducible

Usage:
    job = MissingInstrumentPricesJob(...)
    result = await job.run()

    if result.status != "completed":
        print(result.warnings)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, TypeVar

from pricesync.services.exceptions import ServiceError
from pricesync.utils.context import clear_run_id, new_run_id, set_job_name, set_run_id
from pricesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

E = TypeVar("E")

Clock = Callable[[], datetime]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class JobResult:
    """Complete result of one job run."""

    job_name: str
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None

    # Statistics
    entities_processed: int = 0
    entities_failed: int = 0
    ranges_failed: int = 0
    points_inserted: int = 0
    points_skipped: int = 0
    points_deleted: int = 0
    cancelled: bool = False

    # Details
    warnings: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        """One of "completed", "partial", "failed" or "cancelled"."""
        if self.cancelled:
            return "cancelled"
        if self.entities_failed and not self.entities_processed:
            return "failed"
        if self.entities_failed or self.ranges_failed:
            return "partial"
        return "completed"

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


# =============================================================================
# BASE JOB
# =============================================================================

class Job(ABC):
    """
    Base class of all scheduled jobs.

    Subclasses set `name` and implement `execute()`.

    Attributes:
        clock: Source of "now"
        concurrency: Entities processed in parallel
    """

    name: ClassVar[str] = "job"

    def __init__(self, clock: Clock = utc_now, concurrency: int = 1) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.clock = clock
        self.concurrency = concurrency
        self._cancel_event = asyncio.Event()

    def cancel(self) -> None:
        """
        Request the run to stop at the next entity boundary.

        A request made before `run()` applies to that run. The request is
        cleared when the run ends, so the job can be run again.
        """
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self) -> JobResult:
        """
        Execute one run of the job.

        Returns:
            JobResult with statistics and warnings

        Raises:
            ConfigurationError: If a precondition of the job is not met
        """
        run_id = new_run_id()
        set_run_id(run_id)
        set_job_name(self.name)

        now = self.clock()
        result = JobResult(job_name=self.name, run_id=run_id, started_at=now)
        logger.info(f"Job {self.name} started at {now.isoformat()}")

        try:
            await self.execute(now, result)
            result.finished_at = self.clock()
            logger.info(
                f"Job {self.name} finished ({result.status}): "
                f"entities={result.entities_processed}, failed={result.entities_failed}, "
                f"inserted={result.points_inserted}, failed_ranges={result.ranges_failed}"
            )
            return result
        except ServiceError as e:
            logger.error(f"Job {self.name} aborted: {e}")
            raise
        finally:
            self._cancel_event.clear()
            clear_run_id()
            set_job_name(None)

    @abstractmethod
    async def execute(self, now: datetime, result: JobResult) -> None:
        """Job body. `now` is the clock reading taken when the run started."""
        pass

    async def for_each_entity(
            self,
            entities: Iterable[E],
            process: Callable[[E], Awaitable[None]],
            result: JobResult,
            describe: Callable[[E], str] = str,
    ) -> None:
        """
        Process entities with bounded concurrency and cancellation checks.

        A ServiceError raised for one entity is logged and counted; other
        entities are still processed.

        Args:
            entities: Entities in processing order
            process: Coroutine processing one entity
            result: Run result to update
            describe: Entity label for logs
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(entity: E) -> None:
            async with semaphore:
                if self.cancelled:
                    result.cancelled = True
                    return
                try:
                    await process(entity)
                    result.entities_processed += 1
                except ServiceError as e:
                    result.entities_failed += 1
                    result.warn(f"{describe(entity)}: {e}")

        await asyncio.gather(*(guarded(entity) for entity in entities))
        if result.cancelled:
            logger.warning(f"Job {self.name} cancelled before all entities were processed")
