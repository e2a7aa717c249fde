"""
Pydantic schemas for data job views
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from core.timeutil import elapsed_ms
from models.base import JobType, JobState, JobResult


class DataJobInfo(BaseModel):
    """Job projection without the checkpoint"""
    id: str
    connector_id: str
    type: JobType
    state: JobState
    result: Optional[JobResult] = None
    updated_record_count: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    run_time_ms: Optional[int] = None

    class Config:
        from_attributes = True
        use_enum_values = True

    @classmethod
    def from_job(cls, job) -> "DataJobInfo":
        info = cls.model_validate(job)
        if job.started_at is not None:
            info.run_time_ms = elapsed_ms(job.started_at, job.finished_at)
        return info


class CreateJobRequest(BaseModel):
    connector_id: str


class RunJobResult(BaseModel):
    job: DataJobInfo
    next_job_ids: List[str] = Field(default_factory=list)


class CleanupResult(BaseModel):
    checked_count: int = 0
    canceled_count: int = 0


class JobWaitResult(BaseModel):
    job: Optional[DataJobInfo] = None
    completed: bool = False
    duration_ms: int = 0
