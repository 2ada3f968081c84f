"""Services for probing, storage, monitoring, and reporting."""
from .prober import Prober, ProbeError, Sample
from .store import SampleStore, DataUnavailableError
from .monitor import Monitor
from .reporter import ReportGenerator, ReportScheduler

__all__ = [
    "Prober",
    "ProbeError",
    "Sample",
    "SampleStore",
    "DataUnavailableError",
    "Monitor",
    "ReportGenerator",
    "ReportScheduler",
]
