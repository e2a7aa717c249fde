"""
Pytest configuration and fixtures

Bookkeeping tables run on a file-backed SQLite database (one per test) so
concurrent sessions, background job tasks included, see each other's
commits. Tests that need PostgreSQL DDL live under integration/ and are
skipped unless TEST_DATABASE_URL is set.
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from unittest.mock import AsyncMock, MagicMock
from typing import Any, AsyncGenerator, Dict, List, Optional
from models.base import Base
# Register every table on Base.metadata
from models.connector import DataConnectorConfigRecord, ConnectorStatus
from models.table_status import TableStatus
from models.data_job import DataJob
from connectors.catalog import Catalog
from connectors.connector import Connector
from connectors.loaders.base import DataLoader
from schemas.connector import ConnectorConfig, ResourceConfig
from schemas.loader import AuthInfo, DataRecord, FetchBatch, ResourceInfo


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create test database engine"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'bookkeeping.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Connector doubles
# ============================================================================

EVENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": "A test event",
    "properties": {
        "id": {"type": "string"},
        "title": {"type": "string", "description": "Event title"},
    },
}


class StaticPagesLoader(DataLoader):
    """
    Loader serving pre-built pages; page ``n`` is selected by the
    checkpoint's ``page`` key, so resumption is observable.
    """

    def __init__(self, pages: Optional[List[List[Dict[str, Any]]]] = None, resource_name: str = "TestEvent", error: Optional[Exception] = None):
        super().__init__({})
        self.pages = pages if pages is not None else [[]]
        self.resource_name = resource_name
        self.error = error
        self.fetch_calls: List[Dict[str, Any]] = []
        self.closed = False

    async def authenticate(self, redirect_to, user_id=None):
        return AuthInfo(auth_url="https://provider.example/consent", success=False)

    async def continue_to_authenticate(self, code, redirect_to):
        self.set_token_pair(self.get_token_pair().model_copy(update={"access_token": f"token-for-{code}"}))

    async def get_available_resource_names(self):
        return [self.resource_name]

    async def get_resource_info(self, resource_name):
        return ResourceInfo(name=resource_name, record_schema=EVENT_SCHEMA, columns=["id", "title"])

    async def fetch(self, resources, sync_context=None, last_synced_at=None, max_duration_ms=None):
        checkpoint = dict(sync_context or {})
        self.fetch_calls.append(checkpoint)
        if self.error is not None:
            raise self.error

        page = int(checkpoint.get("page", 0))
        rows = self.pages[page] if page < len(self.pages) else []
        has_more = page + 1 < len(self.pages)
        yield FetchBatch(
            records=[DataRecord(resource_name=self.resource_name, data=row) for row in rows],
            sync_context={"page": page + 1 if has_more else 0},
            has_more=has_more,
        )

    async def close(self):
        self.closed = True


def make_event_config(connector_id: str = "test") -> ConnectorConfig:
    return ConnectorConfig(
        id=connector_id,
        name="Test Events",
        description="Events for tests",
        resources=[ResourceConfig(name="TestEvent")],
        openapi_spec={"components": {"schemas": {"TestEvent": EVENT_SCHEMA}}},
        loader_type="test",
    )


def make_mock_writer() -> MagicMock:
    """Writer double that reports every row as written"""
    writer = MagicMock()
    writer.sync_table_schema = AsyncMock()
    writer.sync_table_records = AsyncMock(side_effect=lambda resource_name, schema, rows, primary_key=None: len(rows))
    writer.drop_tables = AsyncMock()
    return writer


@pytest.fixture
def event_config() -> ConnectorConfig:
    return make_event_config()


@pytest.fixture
def mock_writer() -> MagicMock:
    return make_mock_writer()


def make_catalog_factory(config: ConnectorConfig, loader: DataLoader, writer: MagicMock):
    """Catalog factory serving ``config`` through the given loader and writer"""

    class FixtureCatalog(Catalog):
        async def get_connector(self, connector_id):
            connector_config = await self.get(connector_id)
            return await Connector.create(connector_config, self.session, loader=loader, writer=writer)

    def factory(session: AsyncSession) -> Catalog:
        return FixtureCatalog(session, bundled={config.id: config}, loader_factory=lambda *args: loader)

    return factory


async def mark_connected(session_factory, connector_id: str = "test", **fields) -> None:
    """Insert a connected status row for ``connector_id``"""
    values = {"is_connected": True, "is_loading": False, **fields}
    async with session_factory() as session:
        session.add(ConnectorStatus(connector_id=connector_id, **values))
        await session.commit()
