from sqlalchemy import Column, String, Enum, DateTime, Text, Index, text
from core.timeutil import utcnow
from models.base import Base, JSONType, JobType, JobState, JobResult
import uuid


def _new_job_id() -> str:
    return str(uuid.uuid4())


class DataJob(Base):
    """
    One persisted execution of a connector load pass.

    Lifecycle: created -> running -> finished{success|error|canceled}.
    A finished job is never resumed. At most one job per connector is
    unfinished at any time.
    """
    __tablename__ = "data_jobs"

    id = Column(String(36), primary_key=True, default=_new_job_id)
    connector_id = Column(String(255), nullable=False, index=True)

    type = Column(Enum(JobType), nullable=False, default=JobType.LOAD)
    state = Column(Enum(JobState), nullable=False, default=JobState.CREATED, index=True)
    result = Column(Enum(JobResult), nullable=True)

    params = Column(JSONType, nullable=True)
    sync_context = Column(JSONType, nullable=True)
    progress = Column(JSONType, nullable=True)  # {"updated_record_count": n}
    error = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_data_job_connector_created", "connector_id", "created_at"),
        # At most one created/running job per connector
        Index(
            "uq_data_job_active_connector",
            "connector_id",
            unique=True,
            postgresql_where=text("state IN ('CREATED', 'RUNNING')"),
            sqlite_where=text("state IN ('CREATED', 'RUNNING')"),
        ),
    )

    @property
    def updated_record_count(self) -> int:
        return int((self.progress or {}).get("updated_record_count", 0))
