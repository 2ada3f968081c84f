"""Sample store - persistence and analytics for ping outcomes.

The store is the only component that touches the database. The result sink
writes raw samples through ``append``; the maintenance cycle rolls them up and
prunes them through ``aggregate_recent`` and ``archive_and_prune``; the API and
report layers read through the query methods.

Retention:
- raw samples (``ping_results``) are kept for ``raw_retention_days``
- hour-of-day rollups (``hourly_patterns``) for ``aggregate_retention_days``
- archived hourly totals (``hourly_stats``) are never deleted
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import and_, case, delete, distinct, func, literal_column, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..database import build_session_factory
from ..models import HourlyPattern, HourlyStat, PingSample
from ..schemas.analytics import HeatmapPoint, Outage, PatternDetail, TargetStats
from ..utils.db_utils import retry_on_lock
from .outages import ConsecutiveFailureScanner, SlidingWindowScanner
from .prober import Sample

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Maximum rows returned by recent()
RECENT_LIMIT = 10000

# Days of hourly patterns shown by pattern_detail()
PATTERN_DETAIL_DAYS = 30

# Consecutive failures that make an outage in the simple definition
CONSECUTIVE_FAILURES = 3

# Sliding window definition: FAILURE_THRESHOLD failures within WINDOW_SIZE pings
WINDOW_SIZE = 10
FAILURE_THRESHOLD = 5
MAX_OUTAGES = 100

# Rows per multi-row INSERT, keeps SQLite under its bound-parameter limit
INSERT_CHUNK = 500


class StoreError(Exception):
    """Base error for sample store failures."""


class DataUnavailableError(StoreError):
    """A read query failed; the requested data cannot be served."""


@dataclass
class ArchiveResult:
    """What one archive_and_prune() pass did."""
    archived_hours: int = 0
    deleted_samples: int = 0
    deleted_patterns: int = 0
    compacted: bool = False


def floor_hour(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)


def failure_rate(failed: int, total: int) -> float:
    if not total:
        return 0.0
    return round(failed / total * 100, 2)


def packet_loss(successful: int, total: int) -> float:
    if not total:
        return 0.0
    return round((1 - successful / total) * 100, 2)


def _to_datetime(value: Any) -> datetime:
    """Hour buckets come back as strings from SQLite, datetimes elsewhere."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime.strptime(str(value), "%Y-%m-%d %H:%M:%S")


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


class SampleStore:
    """Owns all persisted monitoring state."""

    def __init__(
        self,
        engine: AsyncEngine,
        raw_retention_days: int = 7,
        aggregate_retention_days: int = 90,
        aggregation_window_days: int = 2,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.engine = engine
        self.session_factory = build_session_factory(engine)
        self.raw_retention_days = raw_retention_days
        self.aggregate_retention_days = aggregate_retention_days
        self.aggregation_window_days = aggregation_window_days
        self.clock = clock
        self._last_compaction: Optional[date] = None

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append(self, sample: Sample):
        """Persist one sample. Errors propagate after transient retries."""
        async def _write():
            async with self.session_factory() as session:
                session.add(PingSample(
                    timestamp=sample.timestamp,
                    target=sample.target,
                    success=sample.success,
                    rtt_ms=sample.rtt_ms if sample.success else None,
                    error_message=sample.error_message,
                ))
                await session.commit()

        await retry_on_lock(_write)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _read_session(self, operation: str):
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"{operation} query failed: {e}")
            raise DataUnavailableError(f"{operation} data unavailable") from e

    async def recent(self, window_hours: float) -> List[Sample]:
        """Samples from the last ``window_hours``, newest first."""
        since = self.clock() - timedelta(hours=window_hours)
        stmt = (
            select(
                PingSample.timestamp,
                PingSample.target,
                PingSample.success,
                PingSample.rtt_ms,
                PingSample.error_message,
            )
            .where(PingSample.timestamp > since)
            .order_by(PingSample.timestamp.desc())
            .limit(RECENT_LIMIT)
        )
        async with self._read_session("recent") as session:
            result = await session.execute(stmt)
            rows = result.all()

        return _convert_rows(rows, self._row_to_sample, "ping")

    @staticmethod
    def _row_to_sample(row) -> Sample:
        timestamp, target, success, rtt_ms, error_message = row
        if not isinstance(timestamp, datetime):
            raise TypeError(f"timestamp is {type(timestamp).__name__}")
        if not target:
            raise ValueError("empty target")
        return Sample(
            timestamp=timestamp,
            target=str(target),
            success=bool(success),
            rtt_ms=_optional_float(rtt_ms),
            error_message=error_message,
        )

    async def stats(self, window_hours: float) -> List[TargetStats]:
        """Per-target totals and latency over the last ``window_hours``."""
        since = self.clock() - timedelta(hours=window_hours)
        valid_rtt = self._valid_rtt()
        stmt = (
            select(
                PingSample.target,
                func.count().label("total"),
                func.sum(case((PingSample.success, 1), else_=0)).label("successful"),
                func.avg(valid_rtt).label("avg_rtt"),
                func.min(valid_rtt).label("min_rtt"),
                func.max(valid_rtt).label("max_rtt"),
            )
            .where(PingSample.timestamp > since)
            .group_by(PingSample.target)
            .order_by(PingSample.target)
        )
        async with self._read_session("stats") as session:
            rows = (await session.execute(stmt)).all()

        return _convert_rows(rows, self._row_to_stats, "stats")

    @staticmethod
    def _row_to_stats(row) -> TargetStats:
        total = int(row.total)
        successful = int(row.successful or 0)
        return TargetStats(
            target=row.target,
            total_pings=total,
            successful_pings=successful,
            avg_rtt=_optional_float(row.avg_rtt),
            min_rtt=_optional_float(row.min_rtt),
            max_rtt=_optional_float(row.max_rtt),
            packet_loss=packet_loss(successful, total),
        )

    async def outages_simple(self, window_days: float) -> List[Outage]:
        """Runs of 3+ consecutive failures, most recent first."""
        scanner = ConsecutiveFailureScanner(min_failures=CONSECUTIVE_FAILURES)
        return await self._scan_outages(scanner, window_days, "outages")

    async def outages_sliding(self, window_days: float) -> List[Outage]:
        """Periods with 5+ failures in every 10-ping window, most recent first."""
        scanner = SlidingWindowScanner(
            window=WINDOW_SIZE,
            threshold=FAILURE_THRESHOLD,
            limit=MAX_OUTAGES,
        )
        return await self._scan_outages(scanner, window_days, "outages")

    async def _scan_outages(self, scanner, window_days: float, operation: str) -> List[Outage]:
        since = self.clock() - timedelta(days=window_days)
        stmt = (
            select(PingSample.target, PingSample.timestamp, PingSample.success)
            .where(PingSample.timestamp > since)
            .order_by(PingSample.target, PingSample.timestamp)
        )
        async with self._read_session(operation) as session:
            result = await session.stream(stmt)
            async for target, timestamp, success in result:
                scanner.feed(target, timestamp, bool(success))
        return scanner.finish()

    async def heatmap(self, window_days: float) -> List[HeatmapPoint]:
        """Hour-of-day x target failure and latency averages."""
        since = (self.clock() - timedelta(days=window_days)).date()
        stmt = (
            select(
                HourlyPattern.hour,
                HourlyPattern.target,
                func.avg(HourlyPattern.failure_rate).label("failure_rate"),
                func.avg(HourlyPattern.avg_rtt_ms).label("avg_latency"),
                func.max(HourlyPattern.max_rtt_ms).label("max_latency"),
                func.sum(HourlyPattern.failed_pings).label("total_failures"),
                func.sum(HourlyPattern.total_pings).label("total_pings"),
                func.count(distinct(HourlyPattern.date)).label("days_with_data"),
            )
            .where(HourlyPattern.date > since)
            .group_by(HourlyPattern.hour, HourlyPattern.target)
            .order_by(HourlyPattern.hour, HourlyPattern.target)
        )
        async with self._read_session("heatmap") as session:
            rows = (await session.execute(stmt)).all()

        return _convert_rows(rows, self._row_to_heatmap_point, "heatmap")

    @staticmethod
    def _row_to_heatmap_point(row) -> HeatmapPoint:
        return HeatmapPoint(
            hour=row.hour,
            target=row.target,
            failure_rate=float(row.failure_rate or 0),
            avg_latency=_optional_float(row.avg_latency),
            max_latency=_optional_float(row.max_latency),
            total_failures=int(row.total_failures or 0),
            total_pings=int(row.total_pings or 0),
            days_with_data=int(row.days_with_data),
        )

    async def pattern_detail(self, hour: int) -> List[PatternDetail]:
        """Daily rollups of one hour of day over the last 30 days."""
        if not 0 <= hour <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {hour}")
        since = (self.clock() - timedelta(days=PATTERN_DETAIL_DAYS)).date()
        stmt = (
            select(HourlyPattern)
            .where(HourlyPattern.hour == hour, HourlyPattern.date > since)
            .order_by(HourlyPattern.date.desc(), HourlyPattern.target)
        )
        async with self._read_session("patterns") as session:
            patterns = (await session.execute(stmt)).scalars().all()

        return _convert_rows(patterns, self._row_to_pattern, "pattern")

    @staticmethod
    def _row_to_pattern(p: HourlyPattern) -> PatternDetail:
        return PatternDetail(
            date=p.date,
            target=p.target,
            total_pings=p.total_pings,
            failed_pings=p.failed_pings,
            avg_rtt=p.avg_rtt_ms,
            max_rtt=p.max_rtt_ms,
            failure_rate=p.failure_rate,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def aggregate_recent(self) -> int:
        """Recompute hourly patterns for the trailing aggregation window.

        Rows are replaced whole, so running this repeatedly never double
        counts. Returns the number of (date, hour, target) rows written.
        """
        since = floor_hour(self.clock() - timedelta(days=self.aggregation_window_days))

        async with self.session_factory() as session:
            buckets = await self._hourly_rollup(session, PingSample.timestamp >= since)
            rows = [
                {
                    "date": bucket["hour"].date(),
                    "hour": bucket["hour"].hour,
                    "target": bucket["target"],
                    "total_pings": bucket["total"],
                    "failed_pings": bucket["total"] - bucket["successful"],
                    "avg_rtt_ms": bucket["avg_rtt"],
                    "max_rtt_ms": bucket["max_rtt"],
                    "failure_rate": failure_rate(bucket["total"] - bucket["successful"], bucket["total"]),
                }
                for bucket in buckets
            ]

            for chunk in _chunks(rows):
                stmt = self._insert(HourlyPattern).values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["date", "hour", "target"],
                    set_={
                        name: stmt.excluded[name]
                        for name in ("total_pings", "failed_pings", "avg_rtt_ms", "max_rtt_ms", "failure_rate")
                    },
                )
                await session.execute(stmt)
            await session.commit()

        logger.info(f"Aggregated {len(rows)} hourly pattern rows since {since:%Y-%m-%d %H:%M}")
        return len(rows)

    async def archive_and_prune(self) -> ArchiveResult:
        """Archive hourly totals, then drop expired raw samples and patterns.

        Archiving runs up to the end of the hour holding the raw cutoff, so
        that hour is rolled up whole before its oldest samples are deleted.
        """
        now = self.clock()
        raw_cutoff = now - timedelta(days=self.raw_retention_days)
        archive_cutoff = floor_hour(raw_cutoff) + timedelta(hours=1)
        aggregate_cutoff = now - timedelta(days=self.aggregate_retention_days)
        outcome = ArchiveResult()

        async with self.session_factory() as session:
            buckets = await self._hourly_rollup(
                session,
                PingSample.timestamp < archive_cutoff,
                PingSample.timestamp > aggregate_cutoff,
            )
            rows = [
                {
                    "hour": bucket["hour"],
                    "target": bucket["target"],
                    "total_pings": bucket["total"],
                    "successful_pings": bucket["successful"],
                    "avg_rtt_ms": bucket["avg_rtt"],
                    "max_rtt_ms": bucket["max_rtt"],
                    "min_rtt_ms": bucket["min_rtt"],
                    "packet_loss_percent": packet_loss(bucket["successful"], bucket["total"]),
                }
                for bucket in buckets
            ]
            for chunk in _chunks(rows):
                stmt = self._insert(HourlyStat).values(chunk)
                stmt = stmt.on_conflict_do_nothing(index_elements=["hour", "target"])
                await session.execute(stmt)
            outcome.archived_hours = len(rows)

            result = await session.execute(
                delete(PingSample).where(PingSample.timestamp < raw_cutoff)
            )
            outcome.deleted_samples = result.rowcount or 0

            result = await session.execute(
                delete(HourlyPattern).where(HourlyPattern.date < aggregate_cutoff.date())
            )
            outcome.deleted_patterns = result.rowcount or 0

            await session.commit()

        if now.day == 1 and self._last_compaction != now.date():
            await self.compact()
            self._last_compaction = now.date()
            outcome.compacted = True

        logger.info(
            f"Archived {outcome.archived_hours} hours, pruned {outcome.deleted_samples} samples "
            f"and {outcome.deleted_patterns} patterns"
        )
        return outcome

    async def compact(self):
        """Reclaim free space. VACUUM cannot run inside a transaction."""
        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.exec_driver_sql("VACUUM")
        logger.info("Database compacted")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _valid_rtt():
        # A success without a positive rtt counts as no measurement
        return case((and_(PingSample.success, PingSample.rtt_ms > 0), PingSample.rtt_ms))

    def _hour_bucket(self, column):
        if self.dialect == "postgresql":
            return func.date_trunc(literal_column("'hour'"), column)
        return func.strftime("%Y-%m-%d %H:00:00", column)

    def _insert(self, model):
        if self.dialect == "postgresql":
            return postgresql.insert(model)
        return sqlite.insert(model)

    async def _hourly_rollup(self, session, *conditions) -> List[Dict[str, Any]]:
        """Group raw samples by (hour, target)."""
        bucket = self._hour_bucket(PingSample.timestamp)
        valid_rtt = self._valid_rtt()
        stmt = (
            select(
                bucket.label("bucket"),
                PingSample.target,
                func.count().label("total"),
                func.sum(case((PingSample.success, 1), else_=0)).label("successful"),
                func.avg(valid_rtt).label("avg_rtt"),
                func.max(valid_rtt).label("max_rtt"),
                func.min(valid_rtt).label("min_rtt"),
            )
            .where(*conditions)
            .group_by(bucket, PingSample.target)
        )
        rows = (await session.execute(stmt)).all()
        return [
            {
                "hour": _to_datetime(row.bucket),
                "target": row.target,
                "total": int(row.total),
                "successful": int(row.successful or 0),
                "avg_rtt": _optional_float(row.avg_rtt),
                "max_rtt": _optional_float(row.max_rtt),
                "min_rtt": _optional_float(row.min_rtt),
            }
            for row in rows
            if row.bucket is not None
        ]


def _convert_rows(rows, convert: Callable[[Any], T], kind: str) -> List[T]:
    """Convert result rows, skipping and logging any that do not convert."""
    converted = []
    for row in rows:
        try:
            converted.append(convert(row))
        except (TypeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            logger.warning(f"Skipping malformed {kind} row {row!r}: {e}")
    return converted


def _chunks(rows: List[Dict[str, Any]], size: int = INSERT_CHUNK):
    for start in range(0, len(rows), size):
        yield rows[start:start + size]
