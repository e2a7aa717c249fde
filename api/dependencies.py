"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker
from connectors.catalog import Catalog
from connectors.jobs import DataJobScheduler

# Jobs open their own sessions, so one scheduler serves the whole app
job_scheduler = DataJobScheduler()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped database session"""
    async with async_session_maker() as session:
        yield session


async def get_catalog(db: AsyncSession = Depends(get_db)) -> Catalog:
    return Catalog(db)


def get_job_scheduler() -> DataJobScheduler:
    return job_scheduler
