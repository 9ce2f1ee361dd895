"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.schemas import (
    CleanupResponse,
    CollectionRequest,
    CollectionResponse,
    DailyReadingOut,
    FleetSummaryOut,
    PersistedSnapshot,
    PersistenceInfo,
)
from services.aggregator import FleetSummary
from services.collector import CollectionOrchestrator, build_default_orchestrator
from settings import get_settings

router = APIRouter()


def get_orchestrator() -> CollectionOrchestrator:
    return build_default_orchestrator()


def _summary_out(summary: FleetSummary) -> FleetSummaryOut:
    return FleetSummaryOut(
        total_distance=summary.total_distance,
        total_consumption=summary.total_consumption,
        avg_distance=summary.avg_distance,
        avg_consumption=summary.avg_consumption,
        avg_consumption_per_km=summary.avg_consumption_per_km,
        online_count=summary.online_count,
        offline_count=summary.offline_count,
        persisted_count=summary.persisted_count,
        error_count=summary.error_count,
        reading_count=summary.reading_count,
        reportable_count=summary.reportable_count,
    )


@router.post(
    "/collections",
    response_model=CollectionResponse,
    summary="Collect daily readings for a set of devices and summarize them.",
)
async def run_collection(
    request: CollectionRequest,
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
) -> CollectionResponse:
    try:
        result = await orchestrator.collect(
            request.device_ids,
            request.start_date,
            request.end_date,
            lookback_days=request.lookback_days,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return CollectionResponse(
        readings=[DailyReadingOut.from_reading(reading) for reading in result.readings],
        summary=_summary_out(result.summary),
        devices={
            device_id: _summary_out(summary)
            for device_id, summary in result.device_summaries.items()
        },
        cancelled=result.cancelled,
    )


@router.get(
    "/snapshots",
    response_model=PersistenceInfo,
    summary="List the last known cumulative readings per device.",
)
async def list_snapshots(
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
) -> PersistenceInfo:
    snapshots = orchestrator.store.snapshots()
    return PersistenceInfo(
        total_devices=len(snapshots),
        devices=[snapshot.device_id for snapshot in snapshots],
        snapshots=snapshots,
    )


@router.get(
    "/snapshots/{device_id}",
    response_model=PersistedSnapshot,
    summary="Fetch the snapshot of a single device.",
)
async def get_snapshot(
    device_id: str,
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
) -> PersistedSnapshot:
    snapshot = orchestrator.store.get(device_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No snapshot stored for device {device_id!r}.",
        )
    return snapshot


@router.post(
    "/snapshots/cleanup",
    response_model=CleanupResponse,
    summary="Remove snapshots older than the given age.",
)
async def cleanup_snapshots(
    max_age_days: Optional[int] = Query(default=None, ge=0),
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
) -> CleanupResponse:
    age = get_settings().snapshot_max_age_days if max_age_days is None else max_age_days
    return CleanupResponse(removed=orchestrator.store.cleanup(age))


@router.delete(
    "/snapshots",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Clear every stored snapshot.",
)
async def reset_snapshots(
    orchestrator: CollectionOrchestrator = Depends(get_orchestrator),
) -> Response:
    orchestrator.store.reset()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
