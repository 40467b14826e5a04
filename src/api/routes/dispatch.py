"""Job-creation hook, alert cancellation hooks and admin dispatch endpoints."""

import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from src.alerts.service import AlertEngine
from src.api.auth import verify_api_key
from src.api.dependencies import get_alert_engine
from src.api.models import (
    DeleteResponse,
    DispatchResponse,
    DispatchStatsResponse,
    ErrorResponse,
    JobCreatedRequest,
    ScanResponse,
)
from src.jobs.schemas import Job

logger = structlog.get_logger(__name__)
router = APIRouter()

_ERRORS = {
    401: {"model": ErrorResponse, "description": "Invalid API key"},
    500: {"model": ErrorResponse, "description": "Server error"},
}


@router.post(
    "/jobs/created",
    response_model=ScanResponse,
    responses=_ERRORS,
    summary="Job creation hook",
    description=(
        "Store a newly posted job and evaluate it against every active alert. "
        "Instant matches are released immediately unless quiet hours apply; "
        "daily and weekly matches join their digest bucket."
    ),
)
async def job_created(
    request: JobCreatedRequest,
    api_key: str = Depends(verify_api_key),
    engine: AlertEngine = Depends(get_alert_engine),
) -> ScanResponse:
    start_time = time.perf_counter()

    try:
        job = Job.from_dict(request.model_dump())
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    try:
        result = await engine.on_job_created(job)
    except Exception as e:
        logger.error(f"Failed to scan job {job.job_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to scan job: {str(e)}",
        )

    latency_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "Job scanned",
        job_id=job.job_id,
        matched=result.matched,
        errors=result.errors,
        latency_ms=round(latency_ms, 2),
    )
    return ScanResponse(**result.to_dict(), latency_ms=round(latency_ms, 2))


@router.delete(
    "/jobs/{job_id}",
    response_model=DeleteResponse,
    responses=_ERRORS,
    summary="Job deletion hook",
    description="Deleted jobs are dropped from pending digests; sent notifications stay.",
)
async def job_deleted(
    job_id: str,
    api_key: str = Depends(verify_api_key),
    engine: AlertEngine = Depends(get_alert_engine),
) -> DeleteResponse:
    found = await engine.on_job_deleted(job_id)
    return DeleteResponse(id=job_id, found=found)


@router.post(
    "/alerts/{alert_id}/deactivate",
    response_model=DeleteResponse,
    responses={**_ERRORS, 404: {"model": ErrorResponse, "description": "Alert not found"}},
    summary="Deactivate an alert",
    description="Pause the alert and discard its pending digest entries and deferred matches.",
)
async def deactivate_alert(
    alert_id: str,
    api_key: str = Depends(verify_api_key),
    engine: AlertEngine = Depends(get_alert_engine),
) -> DeleteResponse:
    found = await engine.deactivate_alert(alert_id)
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id!r} not found",
        )
    return DeleteResponse(id=alert_id, found=True)


@router.delete(
    "/alerts/{alert_id}",
    response_model=DeleteResponse,
    responses={**_ERRORS, 404: {"model": ErrorResponse, "description": "Alert not found"}},
    summary="Delete an alert",
    description="Delete the alert and discard its pending matches. Sent records are kept.",
)
async def delete_alert(
    alert_id: str,
    api_key: str = Depends(verify_api_key),
    engine: AlertEngine = Depends(get_alert_engine),
) -> DeleteResponse:
    found = await engine.delete_alert(alert_id)
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id!r} not found",
        )
    return DeleteResponse(id=alert_id, found=True)


@router.post(
    "/dispatch/force",
    response_model=DispatchResponse,
    responses=_ERRORS,
    summary="Force dispatch now",
    description=(
        "Release every pending digest and deferred match immediately. "
        "Quiet hours are bypassed; dedup and the daily call cap still apply."
    ),
)
async def force_dispatch(
    api_key: str = Depends(verify_api_key),
    engine: AlertEngine = Depends(get_alert_engine),
) -> DispatchResponse:
    start_time = time.perf_counter()

    try:
        result = await engine.force_dispatch()
    except Exception as e:
        logger.error(f"Forced dispatch failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Forced dispatch failed: {str(e)}",
        )

    latency_ms = (time.perf_counter() - start_time) * 1000
    return DispatchResponse(**result.to_dict(), latency_ms=round(latency_ms, 2))


@router.get(
    "/dispatch/stats",
    response_model=DispatchStatsResponse,
    responses=_ERRORS,
    summary="Dispatch statistics",
    description="Sent and failed counts, pending work and phone calls placed today.",
)
async def dispatch_stats(
    api_key: str = Depends(verify_api_key),
    engine: AlertEngine = Depends(get_alert_engine),
) -> DispatchStatsResponse:
    try:
        stats = await engine.stats()
    except Exception as e:
        logger.error(f"Failed to compute dispatch stats: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to compute dispatch stats: {str(e)}",
        )
    return DispatchStatsResponse(**stats.to_dict())
