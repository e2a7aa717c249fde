"""
Relational source loader.

Reads one full table per resource from a PostgreSQL database using
LIMIT/OFFSET pages. The checkpoint is ``{"resource_index", "offset"}``;
each ``fetch`` call reads a single page so the caller decides whether to
continue. When a previous pass completed, rows are filtered on the
resource's timestamp column.
"""

from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional
import logging

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from connectors.loaders.base import DataLoader
from core.config import settings
from core.exceptions import (
    ConnectorAuthenticationError,
    FetchError,
    InvalidConnectorConfigError,
    ResourceNotFoundError,
)
from core.timeutil import to_naive_utc
from schemas.connector import ResourceConfig
from schemas.loader import AuthInfo, DataRecord, FetchBatch, ResourceInfo

logger = logging.getLogger(__name__)

TIMESTAMP_COLUMN_PREFERENCE = ["updated_at", "modified_at", "created_at", "inserted_at"]

# information_schema.data_type -> record schema property
PG_TYPE_MAP: Dict[str, Dict[str, Any]] = {
    "smallint": {"type": "integer"},
    "integer": {"type": "integer"},
    "bigint": {"type": "integer", "format": "int64"},
    "numeric": {"type": "number"},
    "decimal": {"type": "number"},
    "real": {"type": "number"},
    "double precision": {"type": "number"},
    "boolean": {"type": "boolean"},
    "json": {"type": "object"},
    "jsonb": {"type": "object"},
    "ARRAY": {"type": "array"},
    "date": {"type": "string", "format": "date"},
    "time without time zone": {"type": "string", "format": "time"},
    "time with time zone": {"type": "string", "format": "time"},
    "timestamp without time zone": {"type": "string", "format": "date-time"},
    "timestamp with time zone": {"type": "string", "format": "date-time"},
}

COLUMNS_QUERY = """
    SELECT
        c.column_name,
        c.data_type,
        c.is_nullable,
        col_description(
            (quote_ident(c.table_schema) || '.' || quote_ident(c.table_name))::regclass,
            c.ordinal_position
        ) AS description
    FROM information_schema.columns c
    WHERE c.table_schema = :schema AND c.table_name = :table
    ORDER BY c.ordinal_position
"""

PRIMARY_KEY_QUERY = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
        ON tc.constraint_schema = kcu.constraint_schema
        AND tc.constraint_name = kcu.constraint_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
        AND tc.table_schema = :schema
        AND tc.table_name = :table
    ORDER BY kcu.ordinal_position
"""

TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = :schema AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SqlLoaderConfig(BaseModel):
    host: str
    port: int = 5432
    username: str
    password: str
    database: str
    db_schema: str = Field("public", alias="schema")
    batch_size: int = Field(default_factory=lambda: settings.SQL_LOADER_BATCH_SIZE, gt=0)

    class Config:
        populate_by_name = True


class SqlDataLoader(DataLoader):
    """
    Load rows from tables of a PostgreSQL database.

    No auth flow: credentials come from the loader config, so
    ``authenticate`` succeeds immediately.
    """

    example_config = {
        "host": "localhost",
        "port": 5432,
        "username": "reader",
        "password": "secret",
        "database": "analytics",
        "schema": "public",
    }

    def __init__(self, config: Optional[Dict[str, Any]] = None, engine: Optional[AsyncEngine] = None):
        super().__init__(config)
        try:
            self.settings = SqlLoaderConfig(**self.config)
        except ValidationError as e:
            raise InvalidConnectorConfigError(
                f"Invalid SQL loader config: {e.errors()[0]['loc'][0]} {e.errors()[0]['msg']}",
                context={"loader": "sql"},
                original_exception=e
            )
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            url = URL.create(
                "postgresql+asyncpg",
                username=self.settings.username,
                password=self.settings.password,
                host=self.settings.host,
                port=self.settings.port,
                database=self.settings.database,
            )
            self._engine = create_async_engine(url, poolclass=NullPool)
        return self._engine

    def _qualified(self, table: str) -> str:
        return f"{quote_ident(self.settings.db_schema)}.{quote_ident(table)}"

    async def _query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().all()]

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self, redirect_to: str, user_id: Optional[str] = None) -> AuthInfo:
        return AuthInfo(auth_url="", success=True)

    async def continue_to_authenticate(self, code: str, redirect_to: str) -> None:
        raise ConnectorAuthenticationError(
            "SQL loader does not use an auth code flow",
            context={"loader": "sql"}
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get_available_resource_names(self) -> List[str]:
        rows = await self._query(TABLES_QUERY, {"schema": self.settings.db_schema})
        return [row["table_name"] for row in rows]

    async def _get_columns(self, table: str) -> List[Dict[str, Any]]:
        return await self._query(COLUMNS_QUERY, {"schema": self.settings.db_schema, "table": table})

    async def get_resource_info(self, resource_name: str) -> ResourceInfo:
        columns = await self._get_columns(resource_name)
        if not columns:
            raise ResourceNotFoundError(
                f"Schema {resource_name} not found",
                context={"schema": self.settings.db_schema, "resource_name": resource_name}
            )

        pk_rows = await self._query(PRIMARY_KEY_QUERY, {"schema": self.settings.db_schema, "table": resource_name})
        count_rows = await self._query(f"SELECT COUNT(*) AS record_count FROM {self._qualified(resource_name)}")

        properties: Dict[str, Any] = {}
        required: List[str] = []
        timestamp_columns: List[str] = []
        for column in columns:
            prop = dict(PG_TYPE_MAP.get(column["data_type"], {"type": "string"}))
            if column.get("description"):
                prop["description"] = column["description"]
            properties[column["column_name"]] = prop
            if column["is_nullable"] == "NO":
                required.append(column["column_name"])
            if prop.get("format") == "date-time":
                timestamp_columns.append(column["column_name"])

        return ResourceInfo(
            name=resource_name,
            record_schema={"type": "object", "properties": properties, "required": required},
            columns=[column["column_name"] for column in columns],
            timestamp_columns=timestamp_columns,
            primary_key_column=pk_rows[0]["column_name"] if pk_rows else None,
            record_count=count_rows[0]["record_count"] if count_rows else None,
        )

    async def detect_timestamp_column(self, resource: ResourceConfig) -> Optional[str]:
        """Declared hint first, then the conventional column names present in the table."""
        if resource.updated_at_column or resource.created_at_column:
            return resource.updated_at_column or resource.created_at_column

        names = {column["column_name"] for column in await self._get_columns(resource.name)}
        for candidate in TIMESTAMP_COLUMN_PREFERENCE:
            if candidate in names:
                return candidate
        return None

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        resources: List[ResourceConfig],
        sync_context: Optional[Dict[str, Any]] = None,
        last_synced_at: Optional[datetime] = None,
        max_duration_ms: Optional[int] = None,
    ) -> AsyncIterator[FetchBatch]:
        checkpoint = dict(sync_context or {})
        resource_index = int(checkpoint.get("resource_index", 0))
        offset = int(checkpoint.get("offset", 0))
        batch_size = self.settings.batch_size

        if resource_index >= len(resources):
            yield FetchBatch(records=[], sync_context={**checkpoint, "resource_index": 0, "offset": 0}, has_more=False)
            return

        resource = resources[resource_index]
        timestamp_column = None
        if last_synced_at is not None:
            timestamp_column = await self.detect_timestamp_column(resource)

        sql = f"SELECT * FROM {self._qualified(resource.name)}"
        params: Dict[str, Any] = {"limit": batch_size, "offset": offset}
        if timestamp_column:
            sql += f" WHERE {quote_ident(timestamp_column)} > :last_synced_at"
            sql += f" ORDER BY {quote_ident(timestamp_column)}"
            params["last_synced_at"] = to_naive_utc(last_synced_at)
        sql += " LIMIT :limit OFFSET :offset"

        try:
            rows = await self._query(sql, params)
        except Exception as e:
            raise FetchError(
                f"Failed to read {resource.name}: {str(e)}",
                context={"resource_name": resource.name, "offset": offset},
                original_exception=e
            )

        records = [DataRecord(resource_name=resource.name, data=row) for row in rows]

        if len(rows) == batch_size:
            offset += batch_size
            has_more = True
        else:
            resource_index += 1
            offset = 0
            has_more = resource_index < len(resources)

        if not has_more:
            resource_index = 0
            offset = 0

        logger.info(
            f"Fetched {len(records)} rows from {resource.name} "
            f"(next resource_index={resource_index}, offset={offset}, has_more={has_more})"
        )

        yield FetchBatch(
            records=records,
            sync_context={**checkpoint, "resource_index": resource_index, "offset": offset},
            has_more=has_more,
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
