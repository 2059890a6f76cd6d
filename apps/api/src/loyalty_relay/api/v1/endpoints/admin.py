"""Operator endpoints for queue inspection and backfills."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from loyalty_relay.api.dependencies.relay import get_job_queue
from loyalty_relay.api.dependencies.security import require_admin_api_key
from loyalty_relay.observability.relay import get_relay_store
from loyalty_relay.schemas.relay import (
    HistoricalSyncAccepted,
    HistoricalSyncRequest,
    JobStatus,
    JobStatusResponse,
    QueueStats,
    QueueStatsResponse,
)
from loyalty_relay.services.queue.job_queue import JobQueue, JobRecord, JobStateError

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


def _to_status(job: JobRecord) -> JobStatus:
    return JobStatus(
        jobId=str(job.id),
        type=job.job_type.value,
        state=job.state.value,
        priority=job.priority,
        attempts=job.attempts,
        maxAttempts=job.max_attempts,
        lastError=job.last_error,
        result=job.result,
        data=job.payload,
        createdAt=job.created_at,
        finishedAt=job.finished_at,
    )


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def queue_stats(queue: JobQueue = Depends(get_job_queue)) -> QueueStatsResponse:
    counts = await queue.get_stats()
    return QueueStatsResponse(
        stats=QueueStats(**counts),
        metrics=get_relay_store().snapshot().as_dict(),
    )


@router.get("/queue/job/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: int, queue: JobQueue = Depends(get_job_queue)) -> JobStatusResponse:
    job = await queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return JobStatusResponse(job=_to_status(job))


@router.post("/queue/job/{job_id}/retry", response_model=JobStatusResponse)
async def retry_job(job_id: int, queue: JobQueue = Depends(get_job_queue)) -> JobStatusResponse:
    """Put a failed job back in the queue with a fresh attempt budget."""

    try:
        job = await queue.retry_job(job_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    except JobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return JobStatusResponse(job=_to_status(job))


@router.post("/sync/historical", response_model=HistoricalSyncAccepted)
async def trigger_historical_sync(
    payload: HistoricalSyncRequest,
    queue: JobQueue = Depends(get_job_queue),
) -> HistoricalSyncAccepted:
    job = await queue.enqueue_historical_sync(payload.start_date, payload.end_date)
    logger.info(
        "Historical sync requested",
        job_id=job.id,
        start_date=payload.start_date.isoformat(),
        end_date=payload.end_date.isoformat(),
    )
    return HistoricalSyncAccepted(jobId=str(job.id))
