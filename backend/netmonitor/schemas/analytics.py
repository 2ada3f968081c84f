"""Analytics schemas returned by the sample store and the API."""
import datetime as dt
from typing import Optional
from pydantic import BaseModel, Field


class SampleResponse(BaseModel):
    """One raw ping outcome."""
    timestamp: dt.datetime
    target: str
    success: bool
    rtt_ms: Optional[float] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class TargetStats(BaseModel):
    """Aggregate ping statistics for one target over a window."""
    target: str
    total_pings: int
    successful_pings: int
    avg_rtt: Optional[float] = None  # successful pings only
    min_rtt: Optional[float] = None
    max_rtt: Optional[float] = None
    packet_loss: float  # percentage, 2 decimals


class Outage(BaseModel):
    """A period of failed pings for one target."""
    target: str
    start_time: dt.datetime
    end_time: dt.datetime
    duration: dt.timedelta
    failed_checks: int


class HeatmapPoint(BaseModel):
    """Hour-of-day x target cell of the failure heatmap."""
    hour: int = Field(..., ge=0, le=23)
    target: str
    failure_rate: float  # average of the daily rates
    avg_latency: Optional[float] = None
    max_latency: Optional[float] = None
    total_failures: int
    total_pings: int
    days_with_data: int


class PatternDetail(BaseModel):
    """One day's rollup for a given hour of day."""
    date: dt.date
    target: str
    total_pings: int
    failed_pings: int
    avg_rtt: Optional[float] = None
    max_rtt: Optional[float] = None
    failure_rate: float
