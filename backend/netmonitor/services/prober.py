"""Prober - runs the system ping command against one target."""
import asyncio
import logging
import math
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

logger = logging.getLogger(__name__)

# Extra time allowed past the nominal timeout for the ping process to exit
GRACE_SECONDS = 0.5

PARSE_FAILURE = "unable to parse round-trip time"

# Tried in order, first match with a usable number wins.
RTT_PATTERNS = [
    # Windows reply: time=44ms (not time<1ms)
    re.compile(r"time=([0-9.]+)ms"),
    # macOS/Linux reply: time=44.347 ms
    re.compile(r"time=([0-9.]+)\s*ms"),
    # macOS summary: round-trip min/avg/max/stddev = 44.347/44.347/44.347/0.000 ms
    re.compile(r"round-trip min/avg/max/stddev = [0-9.]+/([0-9.]+)/[0-9.]+/[0-9.]+\s*ms"),
    # BusyBox summary: round-trip min/avg/max = 12.3/12.3/12.3 ms
    re.compile(r"round-trip min/avg/max = [0-9.]+/([0-9.]+)/[0-9.]+\s*ms"),
    # iputils summary: rtt min/avg/max/mdev = 12.3/12.3/12.3/0.000 ms
    re.compile(r"rtt min/avg/max/mdev = [0-9.]+/([0-9.]+)/[0-9.]+/[0-9.]+\s*ms"),
]


class ProbeError(Exception):
    """The ping command could not be started at all."""


@dataclass
class Sample:
    """Outcome of one ping."""
    timestamp: datetime
    target: str
    success: bool
    rtt_ms: Optional[float] = None  # set only on success
    error_message: Optional[str] = None  # set only on failure


def parse_round_trip_time(output: str) -> Optional[float]:
    """Extract the round-trip time in milliseconds from ping output.

    Returns None when no known timing format is present.
    """
    for pattern in RTT_PATTERNS:
        match = pattern.search(output)
        if not match:
            continue
        try:
            return float(match.group(1))
        except ValueError:
            continue
    return None


def normalize_timeout(timeout: float) -> float:
    if timeout is None or timeout <= 0:
        return 1.0
    return float(timeout)


def build_ping_args(target: str, timeout: float, platform: Optional[str] = None) -> List[str]:
    """Build the ping command line for a single echo request."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        ms = max(1, int(timeout * 1000))
        return ["ping", "-n", "1", "-w", str(ms), target]
    if platform == "darwin":
        ms = max(1, int(timeout * 1000))
        return ["ping", "-n", "-c", "1", "-W", str(ms), target]
    secs = max(1, math.ceil(timeout))
    return ["ping", "-n", "-c", "1", "-W", str(secs), target]


class Prober:
    """Sends a single ping and reports the outcome as a Sample.

    Unreachable hosts, timeouts and unreadable output are ordinary failed
    samples. Only a ping binary that cannot be spawned raises ProbeError.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform

    async def probe(self, target: str, timeout: float) -> Sample:
        timeout = normalize_timeout(timeout)
        started = datetime.utcnow()
        args = build_ping_args(target, timeout, self.platform)

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ProbeError(f"cannot run {args[0]}: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout + GRACE_SECONDS)
        except asyncio.TimeoutError:
            return Sample(
                timestamp=started,
                target=target,
                success=False,
                error_message=f"ping timed out after {timeout:g}s",
            )
        finally:
            # Covers timeouts and cancellation: never leave the child running
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        output = stdout.decode(errors="replace") if stdout else ""

        if proc.returncode != 0:
            message = output.strip() or f"ping exited with status {proc.returncode}"
            return Sample(timestamp=started, target=target, success=False, error_message=message)

        rtt = parse_round_trip_time(output)
        if rtt is None or rtt <= 0:
            logger.debug(f"Unparseable ping output for {target}: {output.strip()!r}")
            return Sample(timestamp=started, target=target, success=False, error_message=PARSE_FAILURE)

        return Sample(timestamp=started, target=target, success=True, rtt_ms=rtt)
