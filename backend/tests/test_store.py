from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select, text

from netmonitor.models import HourlyPattern, HourlyStat, PingSample
from netmonitor.services.store import DataUnavailableError, SampleStore, floor_hour

from _helpers import NOW, make_sample

pytestmark = pytest.mark.anyio


async def _append_pattern(store, target, start, pattern, step=timedelta(seconds=1)):
    for i, flag in enumerate(pattern):
        await store.append(make_sample(target, start + i * step, success=flag == "S"))


async def _all(store, stmt):
    async with store.session_factory() as session:
        return (await session.execute(stmt)).scalars().all()


async def test_recent_returns_window_newest_first(anyio_backend, store):
    await store.append(make_sample("a", NOW - timedelta(minutes=30), rtt_ms=12.5))
    await store.append(make_sample("b", NOW - timedelta(minutes=10), success=False))
    await store.append(make_sample("a", NOW - timedelta(hours=2)))

    samples = await store.recent(1)

    assert [(s.target, s.success) for s in samples] == [("b", False), ("a", True)]
    assert samples[0].rtt_ms is None
    assert samples[0].error_message == "request timed out"
    assert samples[1].rtt_ms == 12.5


async def test_recent_skips_malformed_rows(anyio_backend, store):
    await store.append(make_sample("a", NOW - timedelta(minutes=5)))
    async with store.session_factory() as session:
        session.add(PingSample(timestamp=NOW - timedelta(minutes=4), target="", success=True, rtt_ms=3.0))
        await session.commit()

    samples = await store.recent(1)

    assert [s.target for s in samples] == ["a"]


async def test_stats_skips_malformed_rows(anyio_backend, store):
    await store.append(make_sample("a", NOW - timedelta(minutes=5), rtt_ms=12.0))
    async with store.session_factory() as session:
        await session.execute(
            text("INSERT INTO ping_results (timestamp, target, success, rtt_ms) VALUES (:ts, 'b', 1, 'n/a')"),
            {"ts": (NOW - timedelta(minutes=4)).strftime("%Y-%m-%d %H:%M:%S.%f")},
        )
        await session.commit()

    stats = await store.stats(1)

    assert [s.target for s in stats] == ["a"]


async def test_heatmap_skips_malformed_rows(anyio_backend, store):
    day = NOW.date() - timedelta(days=1)
    async with store.session_factory() as session:
        session.add_all([
            HourlyPattern(date=day, hour=14, target="a", total_pings=60, failed_pings=6,
                          avg_rtt_ms=11.0, max_rtt_ms=15.0, failure_rate=10.0),
            HourlyPattern(date=day, hour=30, target="a", total_pings=60, failed_pings=6,
                          avg_rtt_ms=11.0, max_rtt_ms=15.0, failure_rate=10.0),
        ])
        await session.commit()

    points = await store.heatmap(30)

    assert [(p.hour, p.target) for p in points] == [(14, "a")]


async def test_pattern_detail_skips_malformed_rows(anyio_backend, store):
    day = NOW.date() - timedelta(days=1)
    async with store.session_factory() as session:
        session.add(HourlyPattern(date=day, hour=9, target="a", total_pings=60, failed_pings=6,
                                  avg_rtt_ms=11.0, max_rtt_ms=15.0, failure_rate=10.0))
        await session.execute(
            text("INSERT INTO hourly_patterns (date, hour, target, total_pings, failed_pings, failure_rate) "
                 "VALUES (:day, 9, 'b', 'lots', 0, 0.0)"),
            {"day": day.isoformat()},
        )
        await session.commit()

    details = await store.pattern_detail(9)

    assert [d.target for d in details] == ["a"]


async def test_stats_packet_loss(anyio_backend, store):
    start = NOW - timedelta(minutes=20)
    await _append_pattern(store, "a", start, "SSSFSSFSFS")

    [stats] = await store.stats(1)

    assert stats.target == "a"
    assert stats.total_pings == 10
    assert stats.successful_pings == 7
    assert stats.packet_loss == 30.00
    assert stats.avg_rtt == pytest.approx(10.0)


async def test_stats_ignore_zero_rtt_successes_in_latency(anyio_backend, store):
    start = NOW - timedelta(minutes=20)
    await store.append(make_sample("a", start, rtt_ms=10.0))
    await store.append(make_sample("a", start + timedelta(seconds=1), rtt_ms=20.0))
    await store.append(make_sample("a", start + timedelta(seconds=2), rtt_ms=0.0))

    [stats] = await store.stats(1)

    assert stats.avg_rtt == pytest.approx(15.0)
    assert stats.min_rtt == pytest.approx(10.0)
    assert stats.max_rtt == pytest.approx(20.0)


async def test_stats_all_failures_has_no_latency(anyio_backend, store):
    await _append_pattern(store, "down", NOW - timedelta(minutes=5), "FFFF")

    [stats] = await store.stats(1)

    assert stats.packet_loss == 100.0
    assert stats.avg_rtt is None
    assert stats.max_rtt is None


async def test_outage_queries(anyio_backend, store):
    start = NOW - timedelta(hours=1)
    await _append_pattern(store, "a", start, "SSFFFSFF")
    await _append_pattern(store, "b", start, "FFFFFSSSSS")

    simple = await store.outages_simple(1)
    sliding = await store.outages_sliding(1)

    assert [(o.target, o.failed_checks) for o in simple] == [("a", 3), ("b", 5)]
    assert [(o.target, o.start_time) for o in sliding] == [("b", start + timedelta(seconds=9))]


async def test_aggregate_recent_is_idempotent(anyio_backend, store):
    hour_start = floor_hour(NOW) - timedelta(hours=1)
    await store.append(make_sample("a", hour_start + timedelta(minutes=1), rtt_ms=10.0))
    await store.append(make_sample("a", hour_start + timedelta(minutes=2), rtt_ms=30.0))
    await store.append(make_sample("a", hour_start + timedelta(minutes=3), success=False))
    await store.append(make_sample("a", floor_hour(NOW) + timedelta(minutes=5), rtt_ms=5.0))

    await store.aggregate_recent()
    first = [(p.date, p.hour, p.target, p.total_pings, p.failed_pings, p.avg_rtt_ms, p.max_rtt_ms, p.failure_rate)
             for p in await _all(store, select(HourlyPattern).order_by(HourlyPattern.hour))]
    await store.aggregate_recent()
    second = [(p.date, p.hour, p.target, p.total_pings, p.failed_pings, p.avg_rtt_ms, p.max_rtt_ms, p.failure_rate)
              for p in await _all(store, select(HourlyPattern).order_by(HourlyPattern.hour))]

    assert first == second
    assert first == [
        (NOW.date(), 11, "a", 3, 1, 20.0, 30.0, 33.33),
        (NOW.date(), 12, "a", 1, 0, 5.0, 5.0, 0.0),
    ]


async def test_aggregate_recent_replaces_rows_with_new_totals(anyio_backend, store):
    hour_start = floor_hour(NOW)
    await store.append(make_sample("a", hour_start + timedelta(minutes=1)))
    await store.aggregate_recent()

    await store.append(make_sample("a", hour_start + timedelta(minutes=2), success=False))
    await store.aggregate_recent()

    [pattern] = await _all(store, select(HourlyPattern))
    assert pattern.total_pings == 2
    assert pattern.failed_pings == 1
    assert pattern.failure_rate == 50.0


async def test_aggregate_recent_ignores_samples_outside_window(anyio_backend, store):
    await store.append(make_sample("a", NOW - timedelta(days=3)))

    assert await store.aggregate_recent() == 0


async def test_archive_and_prune_respects_retention(anyio_backend, store):
    old = NOW - timedelta(days=8)
    await store.append(make_sample("a", old, rtt_ms=10.0))
    await store.append(make_sample("a", old + timedelta(minutes=1), success=False))
    await store.append(make_sample("a", NOW - timedelta(days=1)))

    async with store.session_factory() as session:
        for day, hour in ((NOW.date() - timedelta(days=100), 3), (NOW.date() - timedelta(days=10), 4)):
            session.add(HourlyPattern(
                date=day, hour=hour, target="a", total_pings=10,
                failed_pings=1, avg_rtt_ms=10.0, max_rtt_ms=12.0, failure_rate=10.0,
            ))
        await session.commit()

    result = await store.archive_and_prune()

    remaining = await _all(store, select(PingSample))
    assert [s.timestamp for s in remaining] == [NOW - timedelta(days=1)]

    patterns = await _all(store, select(HourlyPattern))
    assert [p.date for p in patterns] == [NOW.date() - timedelta(days=10)]

    [stat] = await _all(store, select(HourlyStat))
    assert stat.hour == floor_hour(old)
    assert stat.total_pings == 2
    assert stat.successful_pings == 1
    assert stat.packet_loss_percent == 50.0
    assert stat.avg_rtt_ms == 10.0

    assert result.archived_hours == 1
    assert result.deleted_samples == 2
    assert result.deleted_patterns == 1
    assert result.compacted is False


async def test_archive_and_prune_deletes_within_cutoff_hour(anyio_backend, store):
    expired = NOW - timedelta(days=7, minutes=10)
    kept = NOW - timedelta(days=7) + timedelta(minutes=10)
    await store.append(make_sample("a", expired, rtt_ms=10.0))
    await store.append(make_sample("a", kept, rtt_ms=20.0))

    result = await store.archive_and_prune()

    remaining = await _all(store, select(PingSample))
    assert [s.timestamp for s in remaining] == [kept]
    assert result.deleted_samples == 1

    # the hour holding the cutoff is archived whole
    [stat] = await _all(store, select(HourlyStat))
    assert stat.hour == floor_hour(expired)
    assert stat.total_pings == 2
    assert stat.avg_rtt_ms == 15.0


async def test_archive_does_not_overwrite_existing_rollups(anyio_backend, store):
    old = NOW - timedelta(days=8)
    await store.append(make_sample("a", old))
    await store.archive_and_prune()

    # a late sample for the same hour must not change the archived row
    await store.append(make_sample("a", old + timedelta(minutes=1), success=False))
    await store.archive_and_prune()

    [stat] = await _all(store, select(HourlyStat))
    assert stat.total_pings == 1
    assert stat.successful_pings == 1


async def test_archive_compacts_once_on_first_of_month(anyio_backend, engine):
    store = SampleStore(engine, clock=lambda: datetime(2026, 4, 1, 3, 0, 0))

    first = await store.archive_and_prune()
    second = await store.archive_and_prune()

    assert first.compacted is True
    assert second.compacted is False


async def test_heatmap_averages_days(anyio_backend, store):
    today = NOW.date()
    async with store.session_factory() as session:
        session.add_all([
            HourlyPattern(date=today - timedelta(days=1), hour=14, target="a", total_pings=100,
                          failed_pings=10, avg_rtt_ms=20.0, max_rtt_ms=40.0, failure_rate=10.0),
            HourlyPattern(date=today - timedelta(days=2), hour=14, target="a", total_pings=100,
                          failed_pings=30, avg_rtt_ms=30.0, max_rtt_ms=90.0, failure_rate=30.0),
            HourlyPattern(date=today - timedelta(days=2), hour=3, target="b", total_pings=50,
                          failed_pings=0, avg_rtt_ms=None, max_rtt_ms=None, failure_rate=0.0),
            HourlyPattern(date=today - timedelta(days=40), hour=14, target="a", total_pings=100,
                          failed_pings=100, avg_rtt_ms=None, max_rtt_ms=None, failure_rate=100.0),
        ])
        await session.commit()

    points = await store.heatmap(30)

    assert [(p.hour, p.target) for p in points] == [(3, "b"), (14, "a")]
    cell = points[1]
    assert cell.failure_rate == pytest.approx(20.0)
    assert cell.avg_latency == pytest.approx(25.0)
    assert cell.max_latency == 90.0
    assert cell.total_failures == 40
    assert cell.total_pings == 200
    assert cell.days_with_data == 2
    assert points[0].avg_latency is None


async def test_pattern_detail_for_hour(anyio_backend, store):
    today = NOW.date()
    async with store.session_factory() as session:
        for days_ago, target in ((1, "b"), (1, "a"), (5, "a"), (45, "a")):
            session.add(HourlyPattern(date=today - timedelta(days=days_ago), hour=9, target=target,
                                      total_pings=60, failed_pings=6, avg_rtt_ms=11.0,
                                      max_rtt_ms=15.0, failure_rate=10.0))
        session.add(HourlyPattern(date=today, hour=10, target="a", total_pings=60, failed_pings=0,
                                  avg_rtt_ms=11.0, max_rtt_ms=15.0, failure_rate=0.0))
        await session.commit()

    details = await store.pattern_detail(9)

    assert [(d.date, d.target) for d in details] == [
        (today - timedelta(days=1), "a"),
        (today - timedelta(days=1), "b"),
        (today - timedelta(days=5), "a"),
    ]
    assert isinstance(details[0].date, date)
    assert details[0].avg_rtt == 11.0


async def test_pattern_detail_rejects_invalid_hour(anyio_backend, store):
    with pytest.raises(ValueError):
        await store.pattern_detail(24)


async def test_query_failure_raises_data_unavailable(anyio_backend, engine, store):
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE ping_results"))

    with pytest.raises(DataUnavailableError):
        await store.recent(1)
    with pytest.raises(DataUnavailableError):
        await store.outages_sliding(1)


async def test_indexes_created(anyio_backend, engine):
    async with engine.connect() as conn:
        rows = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'index'"))).all()
        tables = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))).all()

    assert {"idx_timestamp", "idx_target_timestamp", "idx_hourly_patterns"} <= {r[0] for r in rows}
    assert {"ping_results", "hourly_patterns", "hourly_stats", "outages"} <= {r[0] for r in tables}


async def test_append_roundtrip_count(anyio_backend, store):
    await _append_pattern(store, "a", NOW - timedelta(minutes=1), "SFS")

    async with store.session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(PingSample))).scalar_one()

    assert count == 3
