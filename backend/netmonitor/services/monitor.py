"""Monitor service - pings targets and keeps the sample store maintained.

Task layout:
- one worker per target probes on a fixed interval and hands samples to a
  bounded queue without ever blocking on it (a full queue drops the sample)
- a single sink drains the queue into the store, the only raw-sample writer
- a maintenance task aggregates and prunes once at start, then hourly

All tasks share one stop event. stop() sets it and closes the queue to new
samples; wait() returns once every task has finished its current unit of work
and exited. The sink writes whatever is still queued before exiting.
"""
import asyncio
import logging
from typing import List, Optional, Sequence

from .prober import Prober, ProbeError, Sample
from .store import SampleStore

logger = logging.getLogger(__name__)

# Default capacity of the queue shared by all workers
PIPELINE_CAPACITY = 100

# Seconds between maintenance runs
MAINTENANCE_INTERVAL = 3600


class Monitor:
    """Coordinates ping workers, the result sink and maintenance.

    Preconditions: start() is called once; wait() is only called after
    stop(), otherwise it blocks until something else stops the monitor.
    """

    def __init__(
        self,
        targets: Sequence[str],
        store: SampleStore,
        prober: Optional[Prober] = None,
        interval: float = 1.0,
        timeout: float = 5.0,
        pipeline_capacity: int = PIPELINE_CAPACITY,
        maintenance_interval: float = MAINTENANCE_INTERVAL,
    ):
        self.targets = list(targets)
        self.store = store
        self.prober = prober or Prober()
        self.interval = interval
        self.timeout = timeout
        self.maintenance_interval = maintenance_interval
        self.dropped_samples = 0

        self._results: asyncio.Queue = asyncio.Queue(maxsize=pipeline_capacity)
        self._stopping = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopping.is_set()

    def start(self):
        """Launch the sink, one worker per target and the maintenance task."""
        logger.info(f"Starting monitor with {len(self.targets)} targets")

        self._tasks.append(asyncio.create_task(self._process_results(), name="result-sink"))
        for target in self.targets:
            self._tasks.append(asyncio.create_task(self._ping_worker(target), name=f"ping-{target}"))
        self._tasks.append(asyncio.create_task(self._maintenance_worker(), name="maintenance"))

        logger.info(f"Monitor started. Pinging {self.targets} every {self.interval}s")

    def stop(self):
        """Signal every task to finish; no samples are queued after this."""
        logger.info("Stopping monitor...")
        self._stopping.set()

    async def wait(self):
        """Block until every launched task has exited."""
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error(f"Task {task.get_name()} exited with error: {result!r}")
        logger.info("Monitor stopped")

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True when the monitor is stopping."""
        if self._stopping.is_set():
            return True
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _ping_worker(self, target: str):
        """Ping a target immediately, then every interval until stopped."""
        loop = asyncio.get_running_loop()
        next_run = loop.time()

        while not self._stopping.is_set():
            await self._perform_ping(target)

            # Fixed-rate schedule, ticks missed during a slow ping are skipped
            next_run += self.interval
            now = loop.time()
            if next_run < now:
                missed = int((now - next_run) // self.interval) + 1
                next_run += missed * self.interval

            if await self._sleep(next_run - loop.time()):
                break

    async def _perform_ping(self, target: str):
        """Run one probe and offer the sample to the pipeline."""
        try:
            sample = await self.prober.probe(target, self.timeout)
        except ProbeError as e:
            logger.error(f"Failed to ping {target}: {e}")
            return

        logger.debug(f"{target}: success={sample.success} rtt={sample.rtt_ms} error={sample.error_message}")

        if self._stopping.is_set():
            return

        try:
            self._results.put_nowait(sample)
        except asyncio.QueueFull:
            self.dropped_samples += 1
            logger.warning(f"Result queue full, dropping result for {target}")

    async def _next_result(self) -> Optional[Sample]:
        """Wait for a queued sample; None once stopped and drained."""
        if not self._results.empty():
            return self._results.get_nowait()
        if self._stopping.is_set():
            return None

        getter = asyncio.ensure_future(self._results.get())
        stopper = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            return getter.result()
        if not self._results.empty():
            return self._results.get_nowait()
        return None

    async def _process_results(self):
        """Write queued samples to the store until stopped and drained."""
        while True:
            sample = await self._next_result()
            if sample is None:
                break
            try:
                await self.store.append(sample)
            except Exception as e:
                logger.error(f"Failed to save result for {sample.target}: {e}")

    async def _maintenance_worker(self):
        """Run maintenance immediately, then every maintenance interval."""
        while not self._stopping.is_set():
            await self.perform_maintenance()
            if await self._sleep(self.maintenance_interval):
                break

    async def perform_maintenance(self):
        """Aggregate hourly patterns, then archive and prune old data.

        Each step is independent: a failure is logged and the next step and
        the next scheduled run still happen.
        """
        logger.info("Running maintenance tasks...")

        try:
            await self.store.aggregate_recent()
        except Exception as e:
            logger.error(f"Failed to aggregate hourly patterns: {e}")

        try:
            await self.store.archive_and_prune()
        except Exception as e:
            logger.error(f"Failed to archive old data: {e}")

        logger.info("Maintenance complete")
