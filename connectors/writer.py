"""
Destination writer: schema synchronization and batched upsert.

Each connector owns one PostgreSQL schema (connector id with dots folded
to underscores) holding one table per resource (resource name lower-cased).
Record schemas are OpenAPI-style object schemas; the writer derives DDL
from them, migrates existing tables toward them, and upserts records in a
single ``INSERT ... ON CONFLICT DO UPDATE`` statement per batch.

Guarantees:
- Schema sync is idempotent: an unchanged schema issues no DDL
- Re-upserting a primary key leaves one row with the latest values
- Out-of-range or unparsable dates become NULL instead of failing the batch
"""

from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import json
import logging

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.openapi import find_primary_key, property_type
from core.exceptions import NoPrimaryKeyError, SchemaSyncError, UpsertError
from core.timeutil import to_naive_utc, utcnow
from models.table_status import TableStatus

logger = logging.getLogger(__name__)

COLUMN_SUFFIX = "_col"

MIN_VALID_YEAR = 1000
MAX_VALID_YEAR = 9999

INTEGER_RANGES = {
    "INTEGER": (-2**31, 2**31 - 1),
    "BIGINT": (-2**63, 2**63 - 1),
}

SQL_RESERVED_KEYWORDS = frozenset({
    # statements and clauses
    "select", "from", "where", "insert", "update", "delete", "create", "drop", "alter", "table",
    "index", "view", "schema", "database", "user", "role", "grant", "revoke", "commit", "rollback",
    "begin", "end", "if", "else", "while", "for", "case", "when", "then", "order", "by",
    "group", "having", "union", "join", "inner", "left", "right", "outer", "cross", "natural",
    "on", "as", "in", "not", "and", "or", "is", "null", "true", "false", "like", "between",
    "exists", "all", "any", "some", "distinct", "top", "limit", "offset", "fetch", "first",
    "last", "only", "with", "recursive", "window", "over", "partition", "rows", "range",
    "preceding", "following", "current", "row", "unbounded", "cte", "materialized",
    # functions
    "lead", "lag", "first_value", "last_value", "nth_value", "rank", "dense_rank", "row_number",
    "percent_rank", "cume_dist", "ntile", "cast", "convert", "extract", "now", "today",
    "yesterday", "tomorrow", "trunc", "round", "floor", "ceil", "abs", "sign", "mod", "power",
    "sqrt", "exp", "ln", "log", "sin", "cos", "tan", "asin", "acos", "atan", "atan2", "sinh",
    "cosh", "tanh", "degrees", "radians", "pi", "random", "count", "sum", "avg", "min", "max",
    "stddev", "variance", "stddev_pop", "stddev_samp", "var_pop", "var_samp", "corr",
    "covar_pop", "covar_samp", "regr_avgx", "regr_avgy", "regr_count", "regr_intercept",
    "regr_r2", "regr_slope", "regr_sxx", "regr_sxy", "regr_syy", "string_agg", "array_agg",
    "json_agg", "jsonb_agg", "json_object_agg", "jsonb_object_agg", "bool_and", "bool_or",
    "every", "bit_and", "bit_or", "bit_xor", "mode", "percentile_cont", "percentile_disc",
    "median", "width_bucket", "nextval", "currval", "setval", "lastval",
    # date and time
    "date", "time", "timestamp", "interval", "year", "month", "day", "hour", "minute", "second",
    "millisecond", "microsecond", "nanosecond", "quarter", "week", "dow", "doy", "epoch",
    "timezone", "zone", "at", "current_date", "current_time", "current_timestamp", "localtime",
    "localtimestamp", "datetime", "datetime2", "smalldatetime", "datetimeoffset",
    # constraints and DDL
    "constraint", "primary", "key", "foreign", "references", "unique", "check", "default",
    "auto_increment", "identity", "serial", "bigserial", "smallserial", "sequence", "generated",
    "always", "stored", "virtual", "computed", "persisted", "collate", "nocase",
    # encodings
    "binary", "ascii", "unicode", "utf8", "utf16", "utf32", "latin1", "cp1252", "iso8859_1",
    "koi8r", "koi8u", "gbk", "gb18030", "big5", "eucjp", "euckr", "euctw", "sjis", "ujis", "utf8mb4",
    # types
    "character", "varchar", "char", "text", "nchar", "nvarchar", "ntext", "clob", "blob",
    "varbinary", "image", "bit", "tinyint", "smallint", "int", "integer", "bigint", "decimal",
    "numeric", "float", "real", "double", "precision", "money", "smallmoney", "rowversion",
    "uniqueidentifier", "sql_variant", "xml", "geography", "geometry", "hierarchyid", "cursor",
    "sql", "udt", "type",
    # objects
    "assembly", "function", "procedure", "trigger", "event", "package", "body", "specification",
    "library", "java", "source", "class", "method", "field", "property", "attribute",
    "annotation", "interface", "enum", "exception", "error", "warning", "info", "debug", "trace",
    "audit", "security", "privilege", "permission", "authorization", "authentication", "login",
    "password", "encryption", "decryption", "hash", "checksum", "signature", "certificate",
    "public", "private", "protected", "internal", "external", "global", "local", "session",
    "connection", "transaction",
    # locking and execution
    "isolation", "level", "read", "uncommitted", "committed", "repeatable", "serializable",
    "snapshot", "versioning", "locking", "blocking", "deadlock", "timeout", "wait", "nowait",
    "skip", "locked", "no", "share", "exclusive", "access", "lock", "escalation", "hint",
    "optimizer", "plan", "statistics", "force", "seek", "scan", "lookup", "merge", "nested",
    "loop", "sort", "stream", "aggregate", "compute", "scalar", "spool", "lazy", "eager",
    "tempdb", "temp", "temporary", "variable", "dynamic", "static", "forward_only", "scroll",
    "sensitive", "insensitive", "keyset", "fast_forward", "read_only", "scroll_locks",
    "optimistic", "concurrency", "control",
})

# information_schema.columns.data_type -> DDL type emitted by get_postgres_type
INTROSPECTED_TYPES = {
    "timestamp without time zone": "TIMESTAMP",
    "date": "DATE",
    "time without time zone": "TIME",
    "text": "TEXT",
    "numeric": "DECIMAL",
    "integer": "INTEGER",
    "bigint": "BIGINT",
    "boolean": "BOOLEAN",
    "jsonb": "JSONB",
}

TABLE_COLUMNS_QUERY = """
    SELECT
        c.column_name,
        c.data_type,
        c.character_maximum_length,
        c.is_nullable,
        EXISTS (
            SELECT 1
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_schema = kcu.constraint_schema
                AND tc.constraint_name = kcu.constraint_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
                AND tc.table_schema = c.table_schema
                AND tc.table_name = c.table_name
                AND kcu.column_name = c.column_name
        ) AS is_primary_key,
        col_description(
            (quote_ident(c.table_schema) || '.' || quote_ident(c.table_name))::regclass,
            c.ordinal_position
        ) AS description
    FROM information_schema.columns c
    WHERE c.table_schema = :schema AND c.table_name = :table
    ORDER BY c.ordinal_position
"""

TABLE_COMMENT_QUERY = """
    SELECT obj_description(to_regclass(:qualified), 'pg_class') AS description
"""

_datetime_adapter = TypeAdapter(datetime)
_date_adapter = TypeAdapter(date)
_time_adapter = TypeAdapter(time)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def map_property_to_column_name(property_name: str) -> str:
    """Suffix reserved keywords (case-insensitive), keeping the original casing."""
    if property_name.lower() in SQL_RESERVED_KEYWORDS:
        return f"{property_name}{COLUMN_SUFFIX}"
    return property_name


def get_postgres_type(prop: Dict[str, Any]) -> str:
    prop_type = property_type(prop)
    if prop_type == "string":
        fmt = prop.get("format")
        if fmt == "date-time":
            return "TIMESTAMP"
        if fmt == "date":
            return "DATE"
        if fmt == "time":
            return "TIME"
        if prop.get("enum"):
            return "VARCHAR(255)"
        return "TEXT"
    if prop_type == "number":
        return "DECIMAL"
    if prop_type == "integer":
        return "BIGINT" if prop.get("format") == "int64" else "INTEGER"
    if prop_type == "boolean":
        return "BOOLEAN"
    if prop_type in ("array", "object"):
        return "JSONB"
    return "TEXT"


def normalize_introspected_type(data_type: str, max_length: Optional[int] = None) -> str:
    if data_type == "character varying":
        return f"VARCHAR({max_length})" if max_length else "VARCHAR"
    return INTROSPECTED_TYPES.get(data_type, data_type.upper())


def _coerce_temporal(value: Any, pg_type: str) -> Any:
    try:
        if pg_type == "TIMESTAMP":
            parsed = _datetime_adapter.validate_python(value)
            if not MIN_VALID_YEAR <= parsed.year <= MAX_VALID_YEAR:
                return None
            return to_naive_utc(parsed)
        if pg_type == "DATE":
            if isinstance(value, datetime):
                parsed = value.date()
            else:
                try:
                    parsed = _date_adapter.validate_python(value)
                except ValidationError:
                    parsed = _datetime_adapter.validate_python(value).date()
            if not MIN_VALID_YEAR <= parsed.year <= MAX_VALID_YEAR:
                return None
            return parsed
        parsed = _time_adapter.validate_python(value)
        return parsed.replace(tzinfo=None)
    except (ValidationError, ValueError, OverflowError):
        return None


def coerce_value(value: Any, pg_type: str) -> Any:
    """
    Convert a record value into the driver type for its column.

    Values that cannot represent the column type become None so a single
    bad field never aborts the batch.
    """
    if value is None:
        return None

    if pg_type == "JSONB":
        return json.dumps(value, default=str)

    if pg_type in ("TIMESTAMP", "DATE", "TIME"):
        return _coerce_temporal(value, pg_type)

    if pg_type == "DECIMAL":
        if isinstance(value, bool):
            return Decimal(int(value))
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    if pg_type in INTEGER_RANGES:
        try:
            number = int(value)
        except (TypeError, ValueError, OverflowError):
            return None
        low, high = INTEGER_RANGES[pg_type]
        return number if low <= number <= high else None

    if pg_type == "BOOLEAN":
        if isinstance(value, str):
            return value.strip().lower() in ("true", "t", "1", "yes")
        return bool(value)

    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value if isinstance(value, str) else str(value)


class DatabaseClient:
    """Thin raw-SQL facade over an AsyncSession"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        result = await self.session.execute(text(sql), params or {})
        return [dict(row) for row in result.mappings().all()]

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> None:
        if params:
            await self.session.execute(text(sql), params)
            return
        # DDL goes to the driver verbatim; literals may contain colons
        connection = await self.session.connection()
        await connection.exec_driver_sql(sql)


class DataWriter:
    """
    Write resource records into the connector's schema.

    Attributes:
        connector_id: Owning connector; also determines the schema name
        db: DatabaseClient issuing raw SQL on the shared session
    """

    def __init__(self, session: AsyncSession, connector_id: str, db_client: Optional[DatabaseClient] = None):
        self.session = session
        self.connector_id = connector_id
        self.db = db_client or DatabaseClient(session)

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    @property
    def schema_name(self) -> str:
        return self.connector_id.replace(".", "_")

    def get_table_name(self, resource_name: str) -> str:
        return f"{self.schema_name}.{resource_name.lower()}"

    def _quoted_table(self, resource_name: str) -> str:
        return f"{quote_ident(self.schema_name)}.{quote_ident(resource_name.lower())}"

    # ------------------------------------------------------------------
    # Table status
    # ------------------------------------------------------------------

    async def update_table_status(self, resource_name: str, last_synced_at: Optional[datetime] = None) -> TableStatus:
        """Create or update the watermark row for a resource table"""
        table_name = self.get_table_name(resource_name)
        result = await self.session.execute(
            select(TableStatus).where(
                TableStatus.connector_id == self.connector_id,
                TableStatus.table_name == table_name
            )
        )
        table_status = result.scalar_one_or_none()

        if table_status is None:
            table_status = TableStatus(connector_id=self.connector_id, table_name=table_name)
            self.session.add(table_status)

        table_status.last_synced_at = last_synced_at or utcnow()
        table_status.updated_at = utcnow()
        await self.session.flush()
        logger.info(f"Updated table status for {table_name} (connector: {self.connector_id})")
        return table_status

    async def get_table_status(self, resource_name: str) -> Optional[TableStatus]:
        result = await self.session.execute(
            select(TableStatus).where(
                TableStatus.connector_id == self.connector_id,
                TableStatus.table_name == self.get_table_name(resource_name)
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def _get_table_schema(self, resource_name: str) -> Dict[str, Dict[str, Any]]:
        rows = await self.db.query(TABLE_COLUMNS_QUERY, {"schema": self.schema_name, "table": resource_name.lower()})
        return {
            row["column_name"]: {
                "type": normalize_introspected_type(row["data_type"], row.get("character_maximum_length")),
                "not_null": row["is_nullable"] == "NO",
                "is_primary_key": bool(row["is_primary_key"]),
                "description": row.get("description"),
            }
            for row in rows
        }

    async def _get_table_comment(self, resource_name: str) -> Optional[str]:
        rows = await self.db.query(TABLE_COMMENT_QUERY, {"qualified": self._quoted_table(resource_name)})
        return rows[0]["description"] if rows else None

    def _build_target_columns(self, schema: Dict[str, Any], primary_key: str) -> Dict[str, Dict[str, Any]]:
        # Only the primary key is NOT NULL; other fields may be nulled by coercion
        return {
            map_property_to_column_name(name): {
                "type": get_postgres_type(prop),
                "not_null": name == primary_key,
                "is_primary_key": name == primary_key,
                "description": prop.get("description"),
            }
            for name, prop in schema["properties"].items()
        }

    def _resolve_primary_key(self, resource_name: str, schema: Dict[str, Any], primary_key: Optional[str]) -> str:
        table_name = self.get_table_name(resource_name)
        if not schema.get("properties"):
            raise SchemaSyncError(
                f"Schema for table {table_name} must have properties defined",
                context={"table_name": table_name}
            )
        resolved = find_primary_key(schema, primary_key)
        if not resolved:
            raise NoPrimaryKeyError(
                f"No primary key column found for table {table_name}. "
                f"Add an 'id' property, a required '*_id' property, or set id_column on the resource.",
                context={"table_name": table_name}
            )
        return resolved

    # ------------------------------------------------------------------
    # Schema sync
    # ------------------------------------------------------------------

    async def _apply_ddl(self, resource_name: str, sql: str) -> None:
        logger.info(f"Applying DDL to {self.get_table_name(resource_name)}: {' '.join(sql.split())}")
        try:
            await self.db.execute(sql)
        except Exception as e:
            raise SchemaSyncError(
                f"DDL failed for {self.get_table_name(resource_name)}: {str(e)}",
                context={"table_name": self.get_table_name(resource_name)},
                original_exception=e
            )

    async def sync_table_schema(self, resource_name: str, schema: Dict[str, Any], primary_key: Optional[str] = None) -> None:
        """
        Create or migrate the resource table to match ``schema``.

        Args:
            resource_name: Resource (table name before lower-casing)
            schema: Object schema with ``properties``
            primary_key: Explicit primary-key property; inferred when omitted

        Raises:
            NoPrimaryKeyError: No primary key could be resolved
            SchemaSyncError: The schema is unusable or DDL failed
        """
        pk_property = self._resolve_primary_key(resource_name, schema, primary_key)
        pk_column = map_property_to_column_name(pk_property)
        table = self._quoted_table(resource_name)

        current = await self._get_table_schema(resource_name)
        target = self._build_target_columns(schema, pk_property)

        if not current:
            await self._apply_ddl(resource_name, f"CREATE SCHEMA IF NOT EXISTS {quote_ident(self.schema_name)}")
            column_defs = [
                f"{quote_ident(column)} {spec['type']}"
                + (" NOT NULL" if spec["not_null"] else "")
                + (" PRIMARY KEY" if spec["is_primary_key"] else "")
                for column, spec in target.items()
            ]
            await self._apply_ddl(resource_name, f"CREATE TABLE {table} ({', '.join(column_defs)})")
            current_table_comment = None
        else:
            clauses: List[str] = []

            for column, spec in target.items():
                quoted = quote_ident(column)
                existing = current.get(column)
                if existing is None:
                    clauses.append(f"ADD COLUMN {quoted} {spec['type']}" + (" NOT NULL" if spec["not_null"] else ""))
                    continue
                if existing["type"] != spec["type"]:
                    clauses.append(f"ALTER COLUMN {quoted} TYPE {spec['type']} USING {quoted}::{spec['type']}")
                if spec["not_null"] and not existing["not_null"]:
                    clauses.append(f"ALTER COLUMN {quoted} SET NOT NULL")
                elif not spec["not_null"] and existing["not_null"]:
                    clauses.append(f"ALTER COLUMN {quoted} DROP NOT NULL")

            current_pk = next((column for column, spec in current.items() if spec["is_primary_key"]), None)
            if current_pk != pk_column:
                if current_pk:
                    clauses.append(f"DROP CONSTRAINT IF EXISTS {quote_ident(resource_name.lower() + '_pkey')}")
                clauses.append(f"ADD PRIMARY KEY ({quote_ident(pk_column)})")

            for column in current:
                if column not in target:
                    clauses.append(f"DROP COLUMN {quote_ident(column)}")

            if clauses:
                await self._apply_ddl(resource_name, f"ALTER TABLE {table} {', '.join(clauses)}")

            current_table_comment = await self._get_table_comment(resource_name)

        description = schema.get("description")
        if description and description != current_table_comment:
            await self._apply_ddl(resource_name, f"COMMENT ON TABLE {table} IS {quote_literal(description)}")

        for column, spec in target.items():
            existing_description = (current.get(column) or {}).get("description")
            if spec["description"] and spec["description"] != existing_description:
                await self._apply_ddl(
                    resource_name,
                    f"COMMENT ON COLUMN {table}.{quote_ident(column)} IS {quote_literal(spec['description'])}"
                )

        await self.update_table_status(resource_name)
        await self.session.commit()

    # ------------------------------------------------------------------
    # Record sync
    # ------------------------------------------------------------------

    async def sync_table_records(
        self,
        resource_name: str,
        schema: Dict[str, Any],
        records: List[Dict[str, Any]],
        primary_key: Optional[str] = None,
    ) -> int:
        """
        Upsert records into the resource table in one statement.

        Returns:
            Number of records written
        """
        if not records:
            return 0

        await self.sync_table_schema(resource_name, schema, primary_key)

        pk_property = self._resolve_primary_key(resource_name, schema, primary_key)
        pk_column = map_property_to_column_name(pk_property)
        table_name = self.get_table_name(resource_name)

        properties = schema["properties"]
        columns = [
            (name, map_property_to_column_name(name), get_postgres_type(prop))
            for name, prop in properties.items()
        ]

        # One statement cannot update the same key twice; the last occurrence wins
        unique_records: Dict[Any, Dict[str, Any]] = {}
        for record in records:
            unique_records[record.get(pk_property)] = record
        if len(unique_records) < len(records):
            logger.debug(f"Collapsed {len(records) - len(unique_records)} duplicate keys in batch for {table_name}")

        params: Dict[str, Any] = {}
        value_sets: List[str] = []
        for row_index, record in enumerate(unique_records.values()):
            placeholders = []
            for col_index, (name, _column, pg_type) in enumerate(columns):
                param = f"p{row_index}_{col_index}"
                params[param] = coerce_value(record.get(name), pg_type)
                placeholders.append(f":{param}")
            value_sets.append(f"({', '.join(placeholders)})")

        quoted_columns = ", ".join(quote_ident(column) for _name, column, _type in columns)
        update_clause = ", ".join(
            f"{quote_ident(column)} = EXCLUDED.{quote_ident(column)}"
            for _name, column, _type in columns
            if column != pk_column
        )
        conflict_action = f"DO UPDATE SET {update_clause}" if update_clause else "DO NOTHING"

        upsert_sql = (
            f"INSERT INTO {self._quoted_table(resource_name)} ({quoted_columns}) "
            f"VALUES {', '.join(value_sets)} "
            f"ON CONFLICT ({quote_ident(pk_column)}) {conflict_action}"
        )

        try:
            await self.db.execute(upsert_sql, params)
        except Exception as e:
            await self.session.rollback()
            raise UpsertError(
                f"Upsert into {table_name} failed: {str(e)}",
                context={"table_name": table_name, "record_count": len(unique_records)},
                original_exception=e
            )

        await self.update_table_status(resource_name)
        await self.session.commit()
        logger.info(f"Synced {len(unique_records)} records to {table_name}")
        return len(unique_records)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def drop_tables(self, resource_names: List[str]) -> None:
        """Drop resource tables and the connector schema"""
        for resource_name in resource_names:
            await self._apply_ddl(resource_name, f"DROP TABLE IF EXISTS {self._quoted_table(resource_name)}")
        await self.db.execute(f"DROP SCHEMA IF EXISTS {quote_ident(self.schema_name)} CASCADE")
        await self.session.commit()
        logger.info(f"Dropped schema {self.schema_name} for connector {self.connector_id}")
