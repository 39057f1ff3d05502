"""
Job endpoints - enqueue in-process jobs and poll their progress.

- POST /jobs           - queue a "job:<type>" event, returns immediately
- GET  /jobs/{job_id}  - status, progress and result
"""
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import get_services, require_service_token
from src.schemas.jobs import JobCreateRequest, JobCreateResponse, JobStatusResponse
from src.services.container import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_service_token)])


@router.post("", response_model=JobCreateResponse)
async def create_job(
    request: JobCreateRequest,
    services: Services = Depends(get_services),
):
    job = await services.queue.enqueue_job(
        request.type,
        params=request.params,
        priority=request.priority,
        scheduled_at=request.scheduled_at,
        user_id=request.user_id,
    )
    if request.type not in services.job_handlers:
        logger.warning("Job queued with no registered handler: %s", request.type)

    return JobCreateResponse(
        job_id=str(job.id),
        message="Job queued. Processing starts on the next dispatcher run.",
    )


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job(
    job_id: str,
    services: Services = Depends(get_services),
):
    try:
        job_uuid = uuid.UUID(job_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Job not found")

    job = await services.queue.get_event(job_uuid)
    if job is None or not job.is_job:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobStatusResponse(
        id=str(job.id),
        event_type=job.event_type,
        job_type=job.job_type,
        status=job.status,
        progress=job.progress,
        result=job.result,
        error_message=job.error_message,
        retry_count=job.retry_count,
        created_at=job.created_at,
        processed_at=job.processed_at,
    )
