"""
Agent-facing tool over the catalog and job scheduler.

Operations:
    list: connectors with id, name and connection status
    ask_to_connect: flag the connector as awaiting the user's consent and
        poll its status until they respond or the wait times out
    load_data: run (or join) a load job and wait for it to finish

Tokens and checkpoints never leave this surface.
"""

from datetime import timedelta
from typing import Any, Callable, Dict, Optional
import asyncio
import logging
import time

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.catalog import Catalog
from connectors.jobs import DataJobScheduler
from core.config import settings
from core.database import async_session_maker
from core.exceptions import ActionableError, ConnectorNotFoundError
from core.timeutil import utcnow
from models.base import JobResult
from models.connector import ConnectorStatus
from schemas.tool import AskToConnectResult, ConnectorSummary, DataConnectorToolParams, LoadDataResult

logger = logging.getLogger(__name__)


class DataConnectorTool:
    """
    Can list data connectors with their information and status. Also can
    ask users to connect to a specific connector and load data from
    connected connectors.
    """

    name = "data_connector"

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        catalog_factory: Callable[[AsyncSession], Catalog] = Catalog,
        job_scheduler: Optional[DataJobScheduler] = None,
        ask_to_connect_timeout_seconds: Optional[float] = None,
        load_data_timeout_seconds: Optional[float] = None,
        polling_interval_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.catalog_factory = catalog_factory
        self.job_scheduler = job_scheduler or DataJobScheduler(self.session_factory, catalog_factory)
        self.ask_to_connect_timeout_seconds = (
            settings.ASK_TO_CONNECT_TIMEOUT_SECONDS if ask_to_connect_timeout_seconds is None
            else ask_to_connect_timeout_seconds
        )
        self.load_data_timeout_seconds = (
            settings.LOAD_DATA_TIMEOUT_SECONDS if load_data_timeout_seconds is None
            else load_data_timeout_seconds
        )
        self.polling_interval_seconds = (
            settings.POLLING_INTERVAL_SECONDS if polling_interval_seconds is None
            else polling_interval_seconds
        )

    async def execute(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Dispatch one tool call.

        Raises:
            ActionableError: Invalid parameters, unknown connector, or a
                connector that must be connected first
        """
        try:
            request = DataConnectorToolParams(**params)
        except ValidationError as e:
            raise ActionableError(
                "Invalid parameters: operation must be one of list, ask_to_connect, load_data",
                context={"errors": e.errors(include_url=False, include_context=False)},
                original_exception=e
            )

        if request.operation == "list":
            return await self.list_connectors()

        if not request.connector_id:
            raise ActionableError(f"Connector ID is required for {request.operation} operation")

        if request.operation == "ask_to_connect":
            result = await self.ask_to_connect(request.connector_id)
        else:
            result = await self.load_data(request.connector_id)
        return result.model_dump()

    # ------------------------------------------------------------------
    # list
    # ------------------------------------------------------------------

    async def list_connectors(self) -> Dict[str, Any]:
        async with self.session_factory() as session:
            infos = await self.catalog_factory(session).get_all()
        connectors = [ConnectorSummary(**info.model_dump()).model_dump(mode="json") for info in infos]
        return {"connectors": connectors}

    # ------------------------------------------------------------------
    # ask_to_connect
    # ------------------------------------------------------------------

    async def _get_connector_name(self, connector_id: str) -> str:
        async with self.session_factory() as session:
            try:
                config = await self.catalog_factory(session).get(connector_id)
            except ConnectorNotFoundError as e:
                raise ActionableError(f"Connector with ID '{connector_id}' not found", original_exception=e)
        return config.name

    async def _read_status(self, connector_id: str) -> Optional[ConnectorStatus]:
        async with self.session_factory() as session:
            return await session.get(ConnectorStatus, connector_id, populate_existing=True)

    async def _clear_ask_flag(self, connector_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(ConnectorStatus)
                .where(ConnectorStatus.connector_id == connector_id)
                .values(asked_to_connect_until=None)
            )
            await session.commit()

    async def _start_asking(self, connector_id: str):
        """Reuse a still-valid wait deadline or set a new one"""
        async with self.session_factory() as session:
            status = await session.get(ConnectorStatus, connector_id, populate_existing=True)
            now = utcnow()
            if status is not None and status.asked_to_connect_until and now < status.asked_to_connect_until:
                return status.asked_to_connect_until

            deadline = now + timedelta(seconds=self.ask_to_connect_timeout_seconds)
            if status is None:
                status = ConnectorStatus(connector_id=connector_id, is_connected=False, is_loading=False)
                session.add(status)
            status.asked_to_connect_until = deadline
            status.updated_at = now
            await session.commit()
            return deadline

    async def ask_to_connect(self, connector_id: str) -> AskToConnectResult:
        name = await self._get_connector_name(connector_id)
        deadline = await self._start_asking(connector_id)
        logger.info(f"Asked user to connect to {connector_id}, waiting until {deadline.isoformat()}")

        start = time.monotonic()
        while utcnow() < deadline:
            status = await self._read_status(connector_id)
            waited = round(time.monotonic() - start)

            # Flag cleared by the connect flow: the user answered
            if status is not None and status.asked_to_connect_until is None:
                is_connected = bool(status.is_connected)
                logger.info(f"User responded to connection request for {connector_id}, connected: {is_connected}")
                return AskToConnectResult(
                    success=True,
                    is_connected=is_connected,
                    connector_id=connector_id,
                    message=(
                        f"User successfully connected to {name} (responded in {waited}s)" if is_connected
                        else f"User declined or failed to connect to {name} (responded in {waited}s)"
                    ),
                )

            if status is not None and status.is_connected:
                await self._clear_ask_flag(connector_id)
                logger.info(f"User connected to {connector_id} during wait period")
                return AskToConnectResult(
                    success=True,
                    is_connected=True,
                    connector_id=connector_id,
                    message=f"User successfully connected to {name} (connected in {waited}s)",
                )

            await asyncio.sleep(self.polling_interval_seconds)

        waited = round(time.monotonic() - start)
        logger.info(f"Connection request for {connector_id} timed out after {self.ask_to_connect_timeout_seconds} seconds")
        await self._clear_ask_flag(connector_id)

        status = await self._read_status(connector_id)
        is_connected = bool(status and status.is_connected)
        return AskToConnectResult(
            success=True,
            is_connected=is_connected,
            connector_id=connector_id,
            message=(
                f"Connection request for {name} timed out after {waited}s. "
                f"Current status: {'connected' if is_connected else 'not connected'}"
            ),
        )

    # ------------------------------------------------------------------
    # load_data
    # ------------------------------------------------------------------

    async def _get_or_create_load_job(self, connector_id: str) -> str:
        async with self.session_factory() as session:
            try:
                info = await self.catalog_factory(session).get_connector_info(connector_id)
            except ConnectorNotFoundError as e:
                raise ActionableError(f"Connector with ID '{connector_id}' not found", original_exception=e)

        if not info.is_connected:
            raise ActionableError(
                f"Connector '{info.name}' is not connected. Please connect first using ask_to_connect operation."
            )

        if info.is_loading and info.data_job_id:
            logger.info(f"Connector {connector_id} is already loading (job {info.data_job_id}), waiting for completion")
            return info.data_job_id

        logger.info(f"Starting data load for connector {connector_id} ({info.name})")
        job = await self.job_scheduler.create(connector_id)
        self.job_scheduler.trigger(job.id)
        logger.info(f"Data load job {job.id} triggered for connector {connector_id}")
        return job.id

    async def load_data(self, connector_id: str) -> LoadDataResult:
        job_id = await self._get_or_create_load_job(connector_id)

        wait = await self.job_scheduler.wait_for_completion(
            job_id,
            timeout_seconds=self.load_data_timeout_seconds,
            polling_interval_seconds=self.polling_interval_seconds,
        )
        duration = round(wait.duration_ms / 1000)

        if not wait.completed:
            logger.warning(f"Data load for {connector_id} timed out after {duration}s")
            return LoadDataResult(
                success=False,
                connector_id=connector_id,
                job_id=job_id,
                message=f"Data load from {connector_id} timed out after {duration} seconds. The job is still running in the background.",
            )

        job = wait.job
        records_loaded = job.updated_record_count
        if job.result == JobResult.SUCCESS:
            logger.info(f"Data load completed for {connector_id} in {duration}s. Records loaded: {records_loaded}")
            return LoadDataResult(
                success=True,
                connector_id=connector_id,
                job_id=job_id,
                message=f"Successfully loaded {records_loaded} records from {connector_id} in {duration} seconds",
                records_loaded=records_loaded,
            )

        error = job.error or "Unknown error"
        logger.error(f"Data load failed for {connector_id}: {error}")
        return LoadDataResult(
            success=False,
            connector_id=connector_id,
            job_id=job_id,
            message=f"Failed to load data from {connector_id}: {error}",
        )
