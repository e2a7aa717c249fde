"""
Pydantic schemas for data validation and serialization.

Schemas:
    connector: Connector configs, resources, status projections, load results
    loader: Values exchanged across the loader contract (tokens, auth info,
            resource info, records, fetch batches)
    job: Data job views and scheduler results
    tool: Agent tool parameters and results
    api: API endpoint request/response schemas

Usage:
    from schemas.connector import ConnectorConfig, ResourceConfig
    from schemas.loader import FetchBatch, DataRecord
    from schemas.job import DataJobInfo

Example:
    # A checkpointed page of records
    batch = FetchBatch(
        records=[DataRecord(resource_name="Event", data={"id": "1"})],
        sync_context={"nextPageToken": "abc"},
        has_more=True
    )

    # FetchBatch is frozen: a new checkpoint means a new batch
    assert batch.sync_context["nextPageToken"] == "abc"
"""

__all__ = [
    "ResourceConfig",
    "ConnectorConfig",
    "ConnectorCreate",
    "ConnectorUpdate",
    "ConnectorInfo",
    "LoadResult",
    "TokenPair",
    "AuthInfo",
    "ConnectResult",
    "ResourceInfo",
    "DataRecord",
    "FetchBatch",
    "LoaderInfo",
    "DataJobInfo",
    "RunJobResult",
    "CleanupResult",
    "JobWaitResult",
    "DataConnectorToolParams",
    "HealthCheckResponse",
    "ConnectRequest",
    "ConnectResponse",
    "ErrorResponse",
]
