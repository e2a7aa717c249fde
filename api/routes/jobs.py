"""
Job control endpoints
"""

from fastapi import APIRouter, Depends, status
from api.dependencies import get_job_scheduler
from connectors.jobs import DataJobScheduler
from core.exceptions import JobAlreadyFinishedError
from models.base import JobState
from schemas.job import CleanupResult, CreateJobRequest, DataJobInfo
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post("", response_model=DataJobInfo, status_code=status.HTTP_201_CREATED)
async def create_job(body: CreateJobRequest, scheduler: DataJobScheduler = Depends(get_job_scheduler)):
    """Create a load job, canceling any unfinished job of the connector"""
    return await scheduler.create(body.connector_id)


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup_jobs(scheduler: DataJobScheduler = Depends(get_job_scheduler)):
    return await scheduler.cleanup()


@router.get("/{job_id}", response_model=DataJobInfo)
async def get_job(job_id: str, scheduler: DataJobScheduler = Depends(get_job_scheduler)):
    return await scheduler.get(job_id)


@router.post("/{job_id}/run", response_model=DataJobInfo, status_code=status.HTTP_202_ACCEPTED)
async def run_job(job_id: str, scheduler: DataJobScheduler = Depends(get_job_scheduler)):
    """Accept the job and run it in the background, continuations included"""
    job = await scheduler.get(job_id)
    if job.state == JobState.FINISHED:
        raise JobAlreadyFinishedError(
            f"Job {job_id} already finished with result {job.result}",
            context={"job_id": job_id}
        )
    scheduler.trigger(job_id)
    logger.info(f"Job {job_id} dispatched")
    return job


@router.post("/{job_id}/cancel", response_model=DataJobInfo)
async def cancel_job(job_id: str, scheduler: DataJobScheduler = Depends(get_job_scheduler)):
    return await scheduler.cancel(job_id)
