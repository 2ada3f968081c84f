"""Database models."""
from .ping_sample import PingSample
from .hourly_pattern import HourlyPattern
from .hourly_stat import HourlyStat
from .outage import OutageRecord

__all__ = ["PingSample", "HourlyPattern", "HourlyStat", "OutageRecord"]
