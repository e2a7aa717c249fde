"""
Health check endpoint with database and connector status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, text
from api.dependencies import get_db, get_catalog
from connectors.catalog import Catalog
from schemas.api import HealthCheckResponse
from models.base import JobState
from models.connector import ConnectorStatus
from models.data_job import DataJob
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db), catalog: Catalog = Depends(get_catalog)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Connector connection / loading / error counts
    - Number of unfinished data jobs
    """

    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")
        return HealthCheckResponse(database_connected=False)

    counts = {}
    try:
        counts["total_connectors"] = len(await catalog.list())
        counts["connected_connectors"] = await db.scalar(
            select(func.count()).select_from(ConnectorStatus).where(ConnectorStatus.is_connected.is_(True))
        )
        counts["loading_connectors"] = await db.scalar(
            select(func.count()).select_from(ConnectorStatus).where(ConnectorStatus.is_loading.is_(True))
        )
        counts["connectors_with_errors"] = await db.scalar(
            select(func.count()).select_from(ConnectorStatus).where(ConnectorStatus.last_error.is_not(None))
        )
        counts["active_jobs"] = await db.scalar(
            select(func.count()).select_from(DataJob).where(DataJob.state.in_([JobState.CREATED, JobState.RUNNING]))
        )
    except Exception as e:
        logger.error(f"Failed to fetch connector status: {str(e)}")

    return HealthCheckResponse(database_connected=db_connected, **counts)
