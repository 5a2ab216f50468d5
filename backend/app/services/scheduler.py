"""Wall-clock aligned update scheduler.

Each cadence is a self-rescheduling one-shot timer. When a timer fires it
first arms the next slot (the next exact multiple of the cadence), then runs
its tick. Ticks are single-flight: a tick that fires while the previous one
is still running is skipped, not queued.

Cadences:
    core       5 min   listing, dominance, currency, Fed rate, then supply
    sentiment 10 min   fear & greed
    news      10 min   news feeds
    trending  30 min   trend scores
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .data_updates import DataUpdateService, UpdateResult
from .sources import Dataset

logger = logging.getLogger(__name__)

MIN_DELAY_SECONDS = 1.0


def seconds_until_next_slot(interval_minutes: int, now: Optional[float] = None) -> float:
    """Seconds from `now` (epoch seconds) to the next multiple of the interval.

    A slot less than a second away is skipped in favour of the one after it.
    """
    now = time.time() if now is None else now
    interval = interval_minutes * 60
    next_slot = (int(now // interval) + 1) * interval
    delay = next_slot - now
    if delay < MIN_DELAY_SECONDS:
        delay += interval
    return delay


def _iso(epoch: Optional[float]) -> Optional[str]:
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


class CadenceJob:
    """One cadence: timer, single-flight guard and run bookkeeping."""

    def __init__(
        self,
        name: str,
        interval_minutes: int,
        action: Callable[[], Awaitable[Any]],
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.interval_minutes = interval_minutes
        self.action = action
        self._clock = clock

        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

        self.next_run: Optional[float] = None
        self.last_started: Optional[float] = None
        self.last_finished: Optional[float] = None
        self.last_error: Optional[str] = None
        self.runs = 0
        self.skipped = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_armed(self) -> bool:
        return self._handle is not None

    def start(self, run_now: bool = False) -> None:
        if self._handle is not None:
            logger.warning(f"[Scheduler] {self.name} already started")
            return
        self._arm()
        if run_now:
            self._spawn()
        logger.info(f"[Scheduler] {self.name} started, every {self.interval_minutes} min, next at {_iso(self.next_run)}")

    async def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.next_run = None
        for task in list(self._tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info(f"[Scheduler] {self.name} stopped")

    def _arm(self) -> None:
        delay = seconds_until_next_slot(self.interval_minutes, self._clock())
        self.next_run = self._clock() + delay
        self._handle = asyncio.get_running_loop().call_later(delay, self._fire)

    def _fire(self) -> None:
        self._arm()
        self._spawn()

    def _spawn(self) -> None:
        task = asyncio.get_running_loop().create_task(self.tick())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def tick(self) -> bool:
        """Run the action unless a previous tick is still in flight.

        Returns:
            False when the tick was skipped.
        """
        if self._running:
            self.skipped += 1
            logger.warning(f"[Scheduler] {self.name} tick skipped, previous run still in progress")
            return False

        self._running = True
        self.last_started = self._clock()
        try:
            await self.action()
            self.last_error = None
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"[Scheduler] {self.name} tick failed: {e}")
        finally:
            self._running = False
            self.last_finished = self._clock()
            self.runs += 1

        logger.info(
            f"[Scheduler] {self.name} tick done in {self.last_finished - self.last_started:.1f}s, "
            f"next at {_iso(self.next_run)}"
        )
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_minutes": self.interval_minutes,
            "running": self._running,
            "armed": self.is_armed,
            "runs": self.runs,
            "skipped": self.skipped,
            "last_started": _iso(self.last_started),
            "last_finished": _iso(self.last_finished),
            "last_error": self.last_error,
            "next_run": _iso(self.next_run),
        }


class DataScheduler:
    """The four update cadences over a DataUpdateService."""

    CORE_DATASETS = (Dataset.CRYPTO_LIST, Dataset.DOMINANCE, Dataset.CURRENCY_RATES, Dataset.FED_RATE)

    def __init__(self, updates: DataUpdateService, clock: Callable[[], float] = time.time):
        self.updates = updates
        self.jobs: Dict[str, CadenceJob] = {
            "core": CadenceJob("core", 5, self.run_core, clock),
            "sentiment": CadenceJob("sentiment", 10, self._runner(Dataset.FEAR_GREED), clock),
            "news": CadenceJob("news", 10, self._runner(Dataset.NEWS), clock),
            "trending": CadenceJob("trending", 30, self._runner(Dataset.TRENDING), clock),
        }

    def _runner(self, dataset: Dataset) -> Callable[[], Awaitable[UpdateResult]]:
        async def run() -> UpdateResult:
            return await self.updates.run(dataset.value)
        return run

    async def run_core(self) -> List[UpdateResult]:
        """Core tick: the four 5-minute datasets concurrently, then supply tracking.

        Supply tracking runs even when the listing update failed; it works
        from the last stored listing.
        """
        outcomes = await asyncio.gather(
            *(self.updates.run(dataset.value) for dataset in self.CORE_DATASETS),
            return_exceptions=True,
        )

        results = []
        for dataset, outcome in zip(self.CORE_DATASETS, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[Scheduler] {dataset.value} raised: {outcome}")
                outcome = UpdateResult(success=False, dataset=dataset.value, message=str(outcome))
            results.append(outcome)

        results.append(await self.updates.run(Dataset.SUPPLY_TRACKING.value))

        succeeded = sum(1 for result in results if result.success)
        logger.info(f"[Scheduler] Core tick: {succeeded}/{len(results)} datasets updated")
        return results

    def start(self, run_on_start: bool = True) -> None:
        for job in self.jobs.values():
            job.start(run_now=run_on_start)
        logger.info("[Scheduler] Started")

    async def stop(self) -> None:
        for job in self.jobs.values():
            await job.stop()
        logger.info("[Scheduler] Stopped")

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {name: job.status() for name, job in self.jobs.items()}
