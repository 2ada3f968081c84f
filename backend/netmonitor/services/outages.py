"""Outage detection over time-ordered ping outcomes.

Both scanners consume rows ordered by (target, timestamp) one at a time, so a
result set can be streamed from the database without holding it in memory.

ConsecutiveFailureScanner
    An outage is a maximal run of failed pings of at least ``min_failures``.

SlidingWindowScanner
    A ping is "in outage" when the window made of it and its ``window - 1``
    predecessors is full and holds at least ``threshold`` failures.
    Consecutive flagged pings form one outage.
"""
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

from ..schemas.analytics import Outage


def _outage(target: str, start: datetime, end: datetime, count: int) -> Outage:
    return Outage(
        target=target,
        start_time=start,
        end_time=end,
        duration=end - start,
        failed_checks=count,
    )


class _Run:
    """The currently open run of rows for one target."""

    def __init__(self, target: str, timestamp: datetime, value: bool):
        self.target = target
        self.value = value
        self.start = timestamp
        self.end = timestamp
        self.count = 1

    def extend(self, timestamp: datetime):
        self.end = timestamp
        self.count += 1


class ConsecutiveFailureScanner:
    """Finds runs of at least ``min_failures`` consecutive failed pings."""

    def __init__(self, min_failures: int = 3):
        self.min_failures = min_failures
        self.outages: List[Outage] = []
        self._run: Optional[_Run] = None

    def feed(self, target: str, timestamp: datetime, success: bool):
        failed = not success
        run = self._run
        if run is not None and run.target == target and run.value == failed:
            run.extend(timestamp)
            return
        self._flush()
        self._run = _Run(target, timestamp, failed)

    def _flush(self):
        run = self._run
        if run is not None and run.value and run.count >= self.min_failures:
            self.outages.append(_outage(run.target, run.start, run.end, run.count))
        self._run = None

    def finish(self) -> List[Outage]:
        """Close the last run and return outages, most recent start first."""
        self._flush()
        return sorted(self.outages, key=lambda o: o.start_time, reverse=True)


class SlidingWindowScanner:
    """Flags pings whose trailing window holds too many failures."""

    def __init__(self, window: int = 10, threshold: int = 5, limit: Optional[int] = 100):
        self.window = window
        self.threshold = threshold
        self.limit = limit
        self.outages: List[Outage] = []
        self._target: Optional[str] = None
        self._recent: Deque[bool] = deque(maxlen=window)
        self._failures = 0
        self._run: Optional[_Run] = None

    def is_flagged(self) -> bool:
        return len(self._recent) == self.window and self._failures >= self.threshold

    def feed(self, target: str, timestamp: datetime, success: bool):
        if target != self._target:
            self._flush()
            self._target = target
            self._recent.clear()
            self._failures = 0

        failed = not success
        if len(self._recent) == self.window and self._recent[0]:
            self._failures -= 1
        self._recent.append(failed)
        if failed:
            self._failures += 1

        if self.is_flagged():
            if self._run is None:
                self._run = _Run(target, timestamp, True)
            else:
                self._run.extend(timestamp)
        else:
            self._flush()

    def _flush(self):
        run = self._run
        if run is not None:
            self.outages.append(_outage(run.target, run.start, run.end, run.count))
        self._run = None

    def finish(self) -> List[Outage]:
        """Close the last run and return the most recent outages first."""
        self._flush()
        outages = sorted(self.outages, key=lambda o: o.start_time, reverse=True)
        if self.limit is not None:
            outages = outages[:self.limit]
        return outages
