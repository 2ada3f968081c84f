"""Analytics API endpoints for the dashboard."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..schemas.analytics import (
    SampleResponse,
    TargetStats,
    Outage,
    HeatmapPoint,
    PatternDetail,
)
from ..services.store import SampleStore, DataUnavailableError

router = APIRouter(prefix="/api", tags=["analytics"])


def get_store(request: Request) -> SampleStore:
    """Dependency to get the sample store created at startup."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Sample store not initialized")
    return store


def _unavailable(e: DataUnavailableError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(e))


@router.get("/recent", response_model=List[SampleResponse])
async def get_recent(
    hours: float = Query(24, gt=0),
    store: SampleStore = Depends(get_store),
):
    """Raw ping results, newest first."""
    try:
        samples = await store.recent(hours)
    except DataUnavailableError as e:
        raise _unavailable(e)
    return [SampleResponse.model_validate(s) for s in samples]


@router.get("/stats", response_model=List[TargetStats])
async def get_stats(
    hours: float = Query(24, gt=0),
    store: SampleStore = Depends(get_store),
):
    """Per-target totals, latency and packet loss."""
    try:
        return await store.stats(hours)
    except DataUnavailableError as e:
        raise _unavailable(e)


@router.get("/outages", response_model=List[Outage])
async def get_outages(
    days: float = Query(7, gt=0),
    store: SampleStore = Depends(get_store),
):
    """Outages by the sliding-window definition (5+ failures in 10 pings)."""
    try:
        return await store.outages_sliding(days)
    except DataUnavailableError as e:
        raise _unavailable(e)


@router.get("/outages/consecutive", response_model=List[Outage])
async def get_consecutive_outages(
    days: float = Query(7, gt=0),
    store: SampleStore = Depends(get_store),
):
    """Outages as runs of 3+ consecutive failures."""
    try:
        return await store.outages_simple(days)
    except DataUnavailableError as e:
        raise _unavailable(e)


@router.get("/heatmap", response_model=List[HeatmapPoint])
async def get_heatmap(
    days: float = Query(30, gt=0),
    store: SampleStore = Depends(get_store),
):
    """Hour-of-day failure heatmap."""
    try:
        return await store.heatmap(days)
    except DataUnavailableError as e:
        raise _unavailable(e)


@router.get("/patterns", response_model=List[PatternDetail])
async def get_patterns(
    hour: int = Query(..., ge=0, le=23),
    store: SampleStore = Depends(get_store),
):
    """Daily detail for one hour of day over the last 30 days."""
    try:
        return await store.pattern_detail(hour)
    except DataUnavailableError as e:
        raise _unavailable(e)
