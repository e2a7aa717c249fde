"""
Unit tests for the relational source loader
"""

import pytest
import pytest_asyncio
from datetime import datetime
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from unittest.mock import AsyncMock
from connectors.loaders.sql import SqlDataLoader
from core.exceptions import ConnectorAuthenticationError, FetchError, InvalidConnectorConfigError
from schemas.connector import ResourceConfig


CONFIG = {
    "host": "localhost",
    "username": "reader",
    "password": "secret",
    "database": "analytics",
    "schema": "main",
    "batch_size": 2,
}


@pytest_asyncio.fixture
async def source_engine(tmp_path):
    """Source database with three orders and one customer"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'source.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.execute(text("CREATE TABLE orders (id TEXT PRIMARY KEY, total REAL, updated_at TEXT)"))
        await conn.execute(text(
            "INSERT INTO orders VALUES "
            "('o1', 10.5, '2024-01-01 00:00:00'), "
            "('o2', 20.0, '2024-02-01 00:00:00'), "
            "('o3', 30.0, '2024-03-01 00:00:00')"
        ))
        await conn.execute(text("CREATE TABLE customers (id TEXT PRIMARY KEY, name TEXT)"))
        await conn.execute(text("INSERT INTO customers VALUES ('c1', 'Ada')"))
    yield engine
    await engine.dispose()


async def fetch_once(loader, resources, sync_context=None, last_synced_at=None):
    batches = [batch async for batch in loader.fetch(resources, sync_context, last_synced_at)]
    assert len(batches) == 1
    return batches[0]


class TestSqlLoaderConfig:
    """Test config validation and auth behavior"""

    def test_missing_credentials(self):
        with pytest.raises(InvalidConnectorConfigError):
            SqlDataLoader({"host": "localhost"})

    def test_schema_alias_and_defaults(self):
        loader = SqlDataLoader({k: v for k, v in CONFIG.items() if k not in ("schema", "batch_size")})

        assert loader.settings.db_schema == "public"
        assert loader.settings.port == 5432
        assert loader.settings.batch_size > 0

    @pytest.mark.asyncio
    async def test_authenticate_succeeds_without_flow(self):
        loader = SqlDataLoader(CONFIG)

        auth_info = await loader.authenticate("https://app.example/callback")

        assert auth_info.success is True
        with pytest.raises(ConnectorAuthenticationError):
            await loader.continue_to_authenticate("code", "https://app.example/callback")


class TestSqlFetch:
    """Test paged, resumable reads"""

    @pytest.mark.asyncio
    async def test_pages_through_a_table(self, source_engine):
        loader = SqlDataLoader(CONFIG, engine=source_engine)
        resources = [ResourceConfig(name="orders")]

        first = await fetch_once(loader, resources)

        assert [record.get("id") for record in first.records] == ["o1", "o2"]
        assert first.has_more is True
        assert first.sync_context == {"resource_index": 0, "offset": 2}

        second = await fetch_once(loader, resources, first.sync_context)

        assert [record.get("id") for record in second.records] == ["o3"]
        assert second.has_more is False
        assert second.sync_context == {"resource_index": 0, "offset": 0}

    @pytest.mark.asyncio
    async def test_moves_to_next_resource(self, source_engine):
        loader = SqlDataLoader(CONFIG, engine=source_engine)
        resources = [ResourceConfig(name="orders"), ResourceConfig(name="customers")]

        batch = await fetch_once(loader, resources, {"resource_index": 0, "offset": 2})

        assert batch.has_more is True
        assert batch.sync_context == {"resource_index": 1, "offset": 0}

        batch = await fetch_once(loader, resources, batch.sync_context)

        assert [record.resource_name for record in batch.records] == ["customers"]
        assert batch.has_more is False

    @pytest.mark.asyncio
    async def test_incremental_filter_on_declared_column(self):
        loader = SqlDataLoader(CONFIG)
        loader._query = AsyncMock(return_value=[{"id": "o2"}])
        resources = [ResourceConfig(name="orders", updated_at_column="updated_at")]

        batch = await fetch_once(loader, resources, last_synced_at=datetime(2024, 1, 15))

        sql, params = loader._query.call_args.args
        assert sql == (
            'SELECT * FROM "main"."orders" WHERE "updated_at" > :last_synced_at '
            'ORDER BY "updated_at" LIMIT :limit OFFSET :offset'
        )
        assert params == {"limit": 2, "offset": 0, "last_synced_at": datetime(2024, 1, 15)}
        assert batch.has_more is False

    @pytest.mark.asyncio
    async def test_introspects_bigint_as_int64(self):
        loader = SqlDataLoader(CONFIG)
        loader._query = AsyncMock(side_effect=[
            [
                {"column_name": "id", "data_type": "bigint", "is_nullable": "NO", "description": None},
                {"column_name": "quantity", "data_type": "integer", "is_nullable": "YES", "description": "Units"},
                {"column_name": "updated_at", "data_type": "timestamp without time zone", "is_nullable": "YES", "description": None},
            ],
            [{"column_name": "id"}],
            [{"record_count": 3}],
        ])

        info = await loader.get_resource_info("orders")

        properties = info.record_schema["properties"]
        assert properties["id"] == {"type": "integer", "format": "int64"}
        assert properties["quantity"] == {"type": "integer", "description": "Units"}
        assert info.record_schema["required"] == ["id"]
        assert info.timestamp_columns == ["updated_at"]
        assert info.primary_key_column == "id"
        assert info.record_count == 3

    @pytest.mark.asyncio
    async def test_given_checkpoint_is_not_mutated(self, source_engine):
        loader = SqlDataLoader(CONFIG, engine=source_engine)
        checkpoint = {"resource_index": 0, "offset": 0}

        await fetch_once(loader, [ResourceConfig(name="orders")], checkpoint)

        assert checkpoint == {"resource_index": 0, "offset": 0}

    @pytest.mark.asyncio
    async def test_missing_table_raises_fetch_error(self, source_engine):
        loader = SqlDataLoader(CONFIG, engine=source_engine)

        with pytest.raises(FetchError):
            await fetch_once(loader, [ResourceConfig(name="missing")])

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self, source_engine):
        loader = SqlDataLoader(CONFIG, engine=source_engine)

        await loader.close()

        assert loader._engine is None
