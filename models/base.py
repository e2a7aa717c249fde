from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class JobType(str, enum.Enum):
    """Data job types"""
    LOAD = "load"


class JobState(str, enum.Enum):
    """Data job lifecycle state"""
    CREATED = "created"
    RUNNING = "running"
    FINISHED = "finished"


class JobResult(str, enum.Enum):
    """Outcome of a finished data job"""
    SUCCESS = "success"
    ERROR = "error"
    CANCELED = "canceled"
