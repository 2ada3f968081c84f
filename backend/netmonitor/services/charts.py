"""PNG charts for connectivity reports.

Rendering uses matplotlib's Figure API on the Agg backend, without pyplot's
global state, so charts can be drawn off the event loop thread.
"""
import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import matplotlib

matplotlib.use("Agg")  # Use non-interactive backend

import matplotlib.dates as mdates  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

from ..schemas.analytics import HeatmapPoint  # noqa: E402
from .prober import Sample  # noqa: E402

logger = logging.getLogger(__name__)

# Points in the latency moving average
MOVING_AVERAGE_PERIOD = 10

FAILURE_CHART = "failure_by_hour.png"

_UNSAFE_CHARS = ".:/\\ "


def sanitize_filename(value: str) -> str:
    """Make a target usable as part of a file name."""
    for char in _UNSAFE_CHARS:
        value = value.replace(char, "_")
    return value


def moving_average(values: Sequence[float], period: int = MOVING_AVERAGE_PERIOD) -> List[float]:
    """Simple moving average; the first points average what is available."""
    averages = []
    total = 0.0
    for i, value in enumerate(values):
        total += value
        if i >= period:
            total -= values[i - period]
        averages.append(total / min(i + 1, period))
    return averages


def render_latency_charts(samples: Iterable[Sample], output_dir: Path) -> List[Path]:
    """Write one latency-over-time chart per target with successful pings."""
    series: Dict[str, List[Tuple]] = defaultdict(list)
    for sample in samples:
        if sample.success and sample.rtt_ms and sample.rtt_ms > 0:
            series[sample.target].append((sample.timestamp, sample.rtt_ms))

    paths = []
    for target in sorted(series):
        points = sorted(series[target])
        timestamps = [t for t, _ in points]
        latencies = [rtt for _, rtt in points]

        fig = Figure(figsize=(12, 4))
        ax = fig.subplots()
        ax.plot(timestamps, latencies, color="#1f77b4", linewidth=1.5, label=target)
        if len(latencies) > MOVING_AVERAGE_PERIOD:
            ax.plot(timestamps, moving_average(latencies), color="#ff7f0e", linewidth=2,
                    linestyle="--", label="Moving Avg")
        ax.set_title(f"Network Latency - {target}", fontsize=16)
        ax.set_xlabel("Time (UTC)")
        ax.set_ylabel("Latency (ms)")
        ax.grid(True, alpha=0.3)
        ax.xaxis.set_major_formatter(mdates.DateFormatter("%m-%d %H:%M"))
        ax.legend()
        fig.autofmt_xdate()
        fig.tight_layout()

        path = Path(output_dir) / f"latency_{sanitize_filename(target)}.png"
        fig.savefig(path, dpi=100)
        paths.append(path)
    return paths


def render_failure_chart(points: List[HeatmapPoint], output_dir: Path) -> Optional[Path]:
    """Write the hour-of-day failure rate chart, one line per target."""
    if not points:
        return None

    by_target: Dict[str, Dict[int, float]] = defaultdict(dict)
    for point in points:
        by_target[point.target][point.hour] = point.failure_rate

    fig = Figure(figsize=(12, 4))
    ax = fig.subplots()
    for target in sorted(by_target):
        hours = sorted(by_target[target])
        ax.plot(hours, [by_target[target][h] for h in hours], marker="o", linewidth=2, label=target)
    ax.set_title("Failure Rate by Hour of Day (UTC)", fontsize=16)
    ax.set_xlabel("Hour")
    ax.set_ylabel("Failure Rate %")
    ax.set_xticks(range(24))
    ax.set_xlim(-0.5, 23.5)
    ax.set_ylim(bottom=0)
    ax.grid(True, alpha=0.3)
    ax.legend()
    fig.tight_layout()

    path = Path(output_dir) / FAILURE_CHART
    fig.savefig(path, dpi=100)
    return path
