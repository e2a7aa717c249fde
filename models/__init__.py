"""
SQLAlchemy ORM models for the engine's bookkeeping tables.

Models:
    base: Declarative Base, the JSON column type and shared enums
          (JobType, JobState, JobResult)
    connector: DataConnectorConfigRecord (registered configs) and
               ConnectorStatus (per-connector sync state)
    table_status: TableStatus (per destination table watermark)
    data_job: DataJob (load job lifecycle and checkpoint)

Database Schema:
    Bookkeeping tables live in the default schema. Synced data lives in
    one schema per connector and is managed by connectors.writer, not by
    these models. JSON columns use JSONB on PostgreSQL and plain JSON on
    other dialects so the same models run against SQLite in tests.

Usage:
    from models.connector import ConnectorStatus
    from models.data_job import DataJob
    from models.base import JobState, JobResult
"""

__all__ = [
    "Base",
    "JSONType",
    "JobType",
    "JobState",
    "JobResult",
    "DataConnectorConfigRecord",
    "ConnectorStatus",
    "TableStatus",
    "DataJob",
]
