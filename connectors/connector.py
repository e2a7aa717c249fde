"""
Connector: one loader, one writer and the persisted status of a named source.

Drives the connect cycle (consent, code exchange, token storage) and the
load cycle (table preparation, resumable fetch, null-key filtering,
batched upsert, checkpoint persistence).
"""

from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.loaders.base import DataLoader, Deadline
from connectors.loaders.registry import create_data_loader
from connectors.openapi import ensure_id_field, find_primary_key, get_component_schema
from connectors.writer import DataWriter
from core.config import settings
from core.exceptions import (
    AlreadyLoadingError,
    IntrospectionUnavailableError,
    InvalidConnectorConfigError,
    NotConnectedError,
    ResourceNotFoundError,
)
from core.timeutil import utcnow
from models.connector import ConnectorStatus
from models.table_status import TableStatus
from schemas.connector import ConnectorConfig, LoadResult
from schemas.loader import ConnectResult, DataRecord, TokenPair

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]


def validate_connector_config(config: Dict[str, Any]) -> Optional[str]:
    """Return a human-readable problem with a raw connector config, or None."""
    if not config.get("name"):
        return "Missing required field: name"
    if not config.get("description"):
        return "Missing required field: description"

    resources = config.get("resources")
    if not isinstance(resources, list) or not resources:
        return "Missing or invalid required field: resources (must be a non-empty array)"

    for index, resource in enumerate(resources):
        name = resource.get("name") if isinstance(resource, dict) else getattr(resource, "name", None)
        if not name:
            return f"Invalid resource at index {index}: missing required field 'name'"
    return None


class Connector:
    """
    Live binding of a ConnectorConfig to its loader, writer and status row.

    Build instances with ``Connector.create`` so every resource schema is
    resolved up front.
    """

    def __init__(
        self,
        config: ConnectorConfig,
        session: AsyncSession,
        loader: DataLoader,
        schemas: Dict[str, Dict[str, Any]],
        primary_keys: Dict[str, str],
        writer: Optional[DataWriter] = None,
    ):
        self.config = config
        self.session = session
        self.loader = loader
        self.schemas = schemas
        self.primary_keys = primary_keys
        self.writer = writer or DataWriter(session, config.id)

    @classmethod
    async def create(
        cls,
        config: ConnectorConfig,
        session: AsyncSession,
        loader: Optional[DataLoader] = None,
        writer: Optional[DataWriter] = None,
    ) -> "Connector":
        """
        Validate the config, build the loader and resolve every resource schema.

        Schemas come from the config's OpenAPI document first, then from
        loader introspection.

        Raises:
            InvalidConnectorConfigError: The config is structurally invalid
            UnknownLoaderError: The loader type is not registered
            ResourceNotFoundError: A resource has no resolvable schema
        """
        problem = validate_connector_config(config.model_dump())
        if problem:
            raise InvalidConnectorConfigError(problem, context={"connector_id": config.id})

        loader = loader or create_data_loader(config.loader_type, config.loader_config)

        schemas: Dict[str, Dict[str, Any]] = {}
        primary_keys: Dict[str, str] = {}
        for resource in config.resources:
            schema = get_component_schema(config.openapi_spec, resource.name)
            introspected_key = None
            if schema is None:
                try:
                    info = await loader.get_resource_info(resource.name)
                except (IntrospectionUnavailableError, ResourceNotFoundError) as e:
                    raise ResourceNotFoundError(
                        f"Schema {resource.name} not found",
                        context={"connector_id": config.id, "resource_name": resource.name},
                        original_exception=e
                    )
                schema = info.record_schema
                introspected_key = info.primary_key_column

            explicit_key = resource.id_column or introspected_key
            primary_key = find_primary_key(schema, explicit_key)
            if primary_key is None:
                schema = ensure_id_field(schema)
                primary_key = "id"

            schemas[resource.name] = schema
            primary_keys[resource.name] = primary_key

        logger.info(f"Loaded and cached schemas for {config.id}: {', '.join(schemas)}")
        return cls(config, session, loader, schemas, primary_keys, writer)

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def description(self) -> str:
        return self.config.description

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self) -> Optional[ConnectorStatus]:
        result = await self.session.execute(
            select(ConnectorStatus)
            .where(ConnectorStatus.connector_id == self.id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_status(self, **fields: Any) -> ConnectorStatus:
        """Create-or-update the status row with ``fields`` and commit"""
        status = await self.get_status()
        if status is None:
            status = ConnectorStatus(connector_id=self.id, is_connected=False, is_loading=False)
            self.session.add(status)

        for key, value in fields.items():
            setattr(status, key, value)
        status.updated_at = utcnow()

        await self.session.commit()
        return status

    async def is_connected(self) -> bool:
        status = await self.get_status()
        return bool(status and status.is_connected)

    async def is_loading(self) -> bool:
        status = await self.get_status()
        return bool(status and status.is_loading)

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def connect(self, redirect_to: str, user_id: Optional[str] = None) -> ConnectResult:
        """Start authentication unless already connected"""
        status = await self.get_status()
        if status is not None and status.is_connected:
            return ConnectResult(success=True)

        auth_info = await self.loader.authenticate(redirect_to, user_id)
        if auth_info.success:
            await self.update_status(
                is_connected=True, last_connected_at=utcnow(), last_error=None, asked_to_connect_until=None
            )
            logger.info(f"Connector {self.id} connected without an auth flow")
            return ConnectResult(success=True)

        await self.update_status(is_connected=False)
        return ConnectResult(success=False, auth_info=auth_info)

    async def continue_to_connect(self, auth_code: str, redirect_to: str) -> None:
        """Exchange the auth code and persist tokens; a failed exchange leaves the status untouched"""
        await self.loader.continue_to_authenticate(auth_code, redirect_to)
        tokens = self.loader.get_token_pair()
        await self.update_status(
            is_connected=True,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            last_connected_at=utcnow(),
            last_error=None,
            asked_to_connect_until=None,
        )
        logger.info(f"Connector {self.id} connected")

    async def disconnect(self) -> None:
        """Drop synced tables and forget status, tokens and table watermarks"""
        await self.writer.drop_tables(self.config.resource_names)
        await self.session.execute(delete(TableStatus).where(TableStatus.connector_id == self.id))
        await self.session.execute(delete(ConnectorStatus).where(ConnectorStatus.connector_id == self.id))
        await self.session.commit()
        logger.info(f"Connector {self.id} disconnected")

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def acquire_loading(self, job_id: Optional[str] = None) -> ConnectorStatus:
        """
        Atomically set is_loading on a connected, idle connector.

        The job that currently owns the connector (``data_job_id``) may
        re-acquire it for continuation runs.

        Raises:
            NotConnectedError: The connector is not connected
            AlreadyLoadingError: Another load holds the flag
        """
        idle = ConnectorStatus.is_loading.is_(False)
        if job_id is not None:
            idle = or_(idle, ConnectorStatus.data_job_id == job_id)

        result = await self.session.execute(
            update(ConnectorStatus)
            .where(
                ConnectorStatus.connector_id == self.id,
                ConnectorStatus.is_connected.is_(True),
                idle,
            )
            .values(is_loading=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        status = await self.get_status()
        if result.rowcount == 1:
            return status

        if status is None or not status.is_connected:
            raise NotConnectedError(f"Connector {self.id} is not connected", context={"connector_id": self.id})
        raise AlreadyLoadingError(f"Connector {self.id} is already loading", context={"connector_id": self.id})

    async def _release_loading(self, job_id: Optional[str] = None) -> None:
        """Clear is_loading unless another job has taken the connector over"""
        owner = ConnectorStatus.data_job_id.is_(None)
        if job_id is not None:
            owner = or_(owner, ConnectorStatus.data_job_id == job_id)

        await self.session.execute(
            update(ConnectorStatus)
            .where(ConnectorStatus.connector_id == self.id, owner)
            .values(is_loading=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    async def prepare_tables(self) -> None:
        logger.info(f"Preparing data tables for {self.name}")
        for resource_name, schema in self.schemas.items():
            await self.writer.sync_table_schema(resource_name, schema, self.primary_keys[resource_name])
            logger.info(f"Prepared table for resource: {resource_name}")

    async def process_batch(self, records: List[DataRecord]) -> int:
        """Drop records without a primary key and upsert the rest per resource"""
        records_by_resource: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for record in records:
            records_by_resource[record.resource_name].append(record.data)

        total_updated = 0
        for resource_name, rows in records_by_resource.items():
            schema = self.schemas.get(resource_name)
            if schema is None:
                logger.warning(f"Schema not found for {resource_name}, skipping {len(rows)} records")
                continue

            primary_key = self.primary_keys[resource_name]
            valid_rows = []
            for row in rows:
                if row.get(primary_key) is None:
                    logger.warning(f"Dropping {resource_name} record with null {primary_key}")
                    continue
                valid_rows.append(row)

            dropped = len(rows) - len(valid_rows)
            if dropped:
                logger.warning(f"Filtered out {dropped} {resource_name} records with null {primary_key}")

            batch_size = settings.CONNECTOR_BATCH_SIZE
            for start in range(0, len(valid_rows), batch_size):
                total_updated += await self.writer.sync_table_records(
                    resource_name, schema, valid_rows[start:start + batch_size], primary_key
                )

        return total_updated

    async def load(
        self,
        max_duration_ms: Optional[int] = None,
        sync_context: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
        job_id: Optional[str] = None,
    ) -> LoadResult:
        """
        Run one duration-bounded load pass.

        Args:
            max_duration_ms: Time budget; None runs until the loader is exhausted
            sync_context: Checkpoint to resume from; defaults to the persisted one
            on_progress: Awaited with the number of records written per batch
            job_id: Owning job, allowed to re-acquire the loading flag

        Returns:
            LoadResult with written record count and whether the pass finished

        Raises:
            NotConnectedError / AlreadyLoadingError: Load was not admitted
        """
        status = await self.acquire_loading(job_id)
        deadline = Deadline(max_duration_ms)
        checkpoint = dict(sync_context if sync_context is not None else (status.sync_context or {}))
        last_synced_at = status.last_synced_at
        updated_record_count = 0
        has_more = False

        try:
            self.loader.set_token_pair(TokenPair(
                access_token=status.access_token,
                refresh_token=status.refresh_token,
                expires_at=status.token_expires_at,
            ))

            await self.prepare_tables()

            while True:
                has_more = False
                async for batch in self.loader.fetch(
                    self.config.resources, checkpoint, last_synced_at, deadline.remaining_ms
                ):
                    written = await self.process_batch(batch.records)
                    updated_record_count += written
                    checkpoint = dict(batch.sync_context)
                    has_more = batch.has_more
                    await self.update_status(sync_context=checkpoint)
                    if on_progress is not None:
                        await on_progress(written)

                if not has_more or deadline.expired():
                    break

            tokens = self.loader.get_token_pair()
            fields: Dict[str, Any] = {
                "sync_context": checkpoint,
                "last_error": None,
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token,
                "token_expires_at": tokens.expires_at,
            }
            if not has_more:
                fields["last_synced_at"] = utcnow()
            await self.update_status(**fields)

            logger.info(
                f"Load for {self.id} wrote {updated_record_count} records "
                f"({'finished' if not has_more else 'paused, more to fetch'}) in {deadline.elapsed_ms}ms"
            )
            return LoadResult(
                updated_record_count=updated_record_count,
                is_finished=not has_more,
                sync_context=checkpoint,
            )
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Load for {self.id} failed: {e}")
            await self.update_status(last_error=str(e))
            raise
        finally:
            await self._release_loading(job_id)
            await self.loader.close()
