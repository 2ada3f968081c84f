"""Pydantic schemas for API response models."""
from .analytics import (
    SampleResponse,
    TargetStats,
    Outage,
    HeatmapPoint,
    PatternDetail,
)

__all__ = [
    "SampleResponse",
    "TargetStats",
    "Outage",
    "HeatmapPoint",
    "PatternDetail",
]
