from datetime import datetime

from netmonitor.services.prober import Sample

# Mid-month so archive_and_prune() never triggers the day-1 compaction
NOW = datetime(2026, 3, 15, 12, 30, 0)


def make_sample(target, timestamp, success=True, rtt_ms=10.0, error="request timed out"):
    if success:
        return Sample(timestamp=timestamp, target=target, success=True, rtt_ms=rtt_ms)
    return Sample(timestamp=timestamp, target=target, success=False, error_message=error)


def scan(scanner, rows):
    """Feed (target, timestamp, success) rows through an outage scanner."""
    for target, timestamp, success in rows:
        scanner.feed(target, timestamp, success)
    return scanner.finish()
