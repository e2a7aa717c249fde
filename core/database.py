"""
Async engine and session factory for the bookkeeping database.

Synced connector data shares this database; each connector writes into
its own schema through connectors.writer.
"""

import json
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def _json_serializer(value) -> str:
    # Checkpoints may carry datetimes straight from a provider payload
    return json.dumps(value, default=str)


def build_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    return create_async_engine(
        database_url,
        echo=False,
        poolclass=NullPool,
        json_serializer=_json_serializer,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Sessions keep loaded attributes after commit; jobs read them across transactions"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_bookkeeping_tables(bind: AsyncEngine) -> None:
    # Every model must be imported to register on Base.metadata
    from models.base import Base
    from models import connector, data_job, table_status  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Bookkeeping tables ready: {', '.join(sorted(Base.metadata.tables))}")


engine = build_engine()
async_session_maker = build_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
