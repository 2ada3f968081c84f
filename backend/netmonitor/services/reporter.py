"""Report service - periodic connectivity reports.

Each report is a timestamped directory holding ``summary.txt`` with per-target
statistics and the outage periods found by both detection methods, plus PNG
latency charts per target and an hour-of-day failure chart.
"""
import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..schemas.analytics import HeatmapPoint, Outage, TargetStats
from .charts import render_failure_chart, render_latency_charts
from .prober import Sample
from .store import SampleStore

logger = logging.getLogger(__name__)

RULE = "=" * 60
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Days of hourly patterns behind the hour-of-day failure chart
HEATMAP_DAYS = 30


def format_duration(outage: Outage) -> str:
    seconds = int(outage.duration.total_seconds())
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


def render_summary(
    hours: int,
    stats: List[TargetStats],
    consecutive: List[Outage],
    sliding: List[Outage],
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the summary report as text."""
    generated_at = generated_at or datetime.utcnow()
    lines = [
        "Network Connectivity Report",
        f"Generated: {generated_at.strftime(TIME_FORMAT)} UTC",
        f"Period: Last {hours} hours",
        "",
        RULE,
        "",
        "OVERALL STATISTICS",
    ]

    if not stats:
        lines.append("No ping data recorded in this period.")
    for s in stats:
        uptime = 100 - s.packet_loss
        lines.append(f"Target: {s.target}")
        lines.append(f"  Total Pings: {s.total_pings}")
        lines.append(f"  Successful: {s.successful_pings} ({uptime:.2f}%)")
        lines.append(f"  Packet Loss: {s.packet_loss:.2f}%")
        if s.avg_rtt is not None:
            lines.append(f"  Average RTT: {s.avg_rtt:.2f} ms")
            lines.append(f"  Min RTT: {s.min_rtt:.2f} ms")
            lines.append(f"  Max RTT: {s.max_rtt:.2f} ms")
        lines.append("")

    lines.append(RULE)
    lines.extend(_outage_section("OUTAGE PERIODS (3+ consecutive failures)", consecutive))
    lines.append(RULE)
    lines.extend(_outage_section("DEGRADED PERIODS (5+ failures in 10 pings)", sliding))
    lines.append(RULE)
    lines.append("")
    lines.append("This report documents network connectivity issues.")
    return "\n".join(lines) + "\n"


def _outage_section(title: str, outages: List[Outage]) -> List[str]:
    lines = ["", title]
    for number, outage in enumerate(outages, start=1):
        lines.append(f"Outage #{number}")
        lines.append(f"  Target: {outage.target}")
        lines.append(f"  Start: {outage.start_time.strftime(TIME_FORMAT)}")
        lines.append(f"  End: {outage.end_time.strftime(TIME_FORMAT)}")
        lines.append(f"  Duration: {format_duration(outage)}")
        lines.append(f"  Failed Checks: {outage.failed_checks}")
        lines.append("")
    if outages:
        lines.append(f"Total Outages: {len(outages)}")
    else:
        lines.append("No significant outages detected.")
    return lines


class ReportGenerator:
    """Writes text and chart reports from the sample store."""

    def __init__(self, store: SampleStore, output_dir: str):
        self.store = store
        self.output_dir = output_dir

    async def generate(self, hours: int) -> Path:
        """Create a new report directory and return its path."""
        stats = await self.store.stats(hours)
        consecutive = await self.store.outages_simple(hours / 24)
        sliding = await self.store.outages_sliding(hours / 24)

        generated_at = datetime.utcnow()
        report_dir = Path(self.output_dir) / f"network_report_{generated_at:%Y-%m-%d_%H-%M-%S}"
        os.makedirs(report_dir, exist_ok=True)

        samples = await self.store.recent(hours)
        points = await self.store.heatmap(HEATMAP_DAYS)
        await asyncio.to_thread(self._render_charts, report_dir, samples, points)

        summary = render_summary(hours, stats, consecutive, sliding, generated_at)
        (report_dir / "summary.txt").write_text(summary, encoding="utf-8")

        logger.info(f"Report generated in: {report_dir}")
        return report_dir

    @staticmethod
    def _render_charts(report_dir: Path, samples: List[Sample], points: List[HeatmapPoint]):
        # A failed chart is logged; the rest of the report is still written
        try:
            render_latency_charts(samples, report_dir)
        except Exception as e:
            logger.error(f"Failed to generate latency chart: {e}")

        try:
            render_failure_chart(points, report_dir)
        except Exception as e:
            logger.error(f"Failed to generate failure chart: {e}")


class ReportScheduler:
    """Runs the report generator on a fixed interval."""

    def __init__(self, generator: ReportGenerator, interval_hours: int, report_hours: int):
        self.generator = generator
        self.interval_hours = interval_hours
        self.report_hours = report_hours
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._generate_report,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id="generate_report",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Report scheduler started (every {self.interval_hours}h, covering {self.report_hours}h)")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Report scheduler stopped")

    async def _generate_report(self):
        try:
            await self.generator.generate(self.report_hours)
        except Exception as e:
            logger.error(f"Failed to generate report: {e}")


async def generate_once() -> Path:
    """Generate a single report using the environment configuration."""
    from ..config import settings
    from ..database import close_db, engine, init_db

    await init_db(engine)
    try:
        store = SampleStore(
            engine,
            raw_retention_days=settings.raw_retention_days,
            aggregate_retention_days=settings.aggregate_retention_days,
            aggregation_window_days=settings.aggregation_window_days,
        )
        return await ReportGenerator(store, settings.report_dir).generate(settings.report_hours)
    finally:
        await close_db(engine)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(generate_once())


if __name__ == "__main__":
    main()
