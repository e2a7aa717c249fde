"""
Catalog: registry of connector configurations.

Bundled configs ship with the code and are read-only; user configs are
persisted in ``data_connector_configs``. The catalog resolves ids to live
Connector instances and exposes token-free status projections.
"""

from typing import Callable, Dict, List, Optional
import logging
import re
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.configs import get_bundled_configs
from connectors.connector import Connector, validate_connector_config
from connectors.loaders.base import DataLoader
from connectors.loaders.registry import create_data_loader, get_loader_class
from core.exceptions import (
    ConnectorExistsError,
    ConnectorNotFoundError,
    ForbiddenError,
    InvalidConnectorConfigError,
)
from models.connector import ConnectorStatus, DataConnectorConfigRecord
from models.data_job import DataJob
from schemas.connector import ConnectorConfig, ConnectorCreate, ConnectorInfo, ConnectorUpdate
from schemas.job import DataJobInfo
from schemas.loader import ResourceInfo

logger = logging.getLogger(__name__)

LoaderFactory = Callable[..., DataLoader]


def generate_id_from_name(name: str) -> str:
    """SQL-identifier-safe id: lower-case slug plus a random 6-character suffix"""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "connector"
    if slug[0].isdigit():
        slug = f"c_{slug}"
    return f"{slug[:48]}_{secrets.token_hex(3)}"


class Catalog:
    """
    Read-through connector registry bound to one session.

    Attributes:
        bundled: Code-defined configs keyed by id
        loader_factory: Builds loaders for connectors and discovery calls
    """

    def __init__(
        self,
        session: AsyncSession,
        bundled: Optional[Dict[str, ConnectorConfig]] = None,
        loader_factory: LoaderFactory = create_data_loader,
    ):
        self.session = session
        self.bundled = get_bundled_configs() if bundled is None else bundled
        self.loader_factory = loader_factory
        self._connectors: Dict[str, Connector] = {}

    def is_bundled(self, connector_id: str) -> bool:
        return connector_id in self.bundled

    # ------------------------------------------------------------------
    # Configs
    # ------------------------------------------------------------------

    async def _get_record(self, connector_id: str) -> Optional[DataConnectorConfigRecord]:
        result = await self.session.execute(
            select(DataConnectorConfigRecord).where(DataConnectorConfigRecord.id == connector_id)
        )
        return result.scalar_one_or_none()

    async def get_config(self, connector_id: str) -> Optional[ConnectorConfig]:
        if connector_id in self.bundled:
            return self.bundled[connector_id]
        record = await self._get_record(connector_id)
        return ConnectorConfig.model_validate(record) if record else None

    async def get(self, connector_id: str) -> ConnectorConfig:
        config = await self.get_config(connector_id)
        if config is None:
            raise ConnectorNotFoundError(f"Connector {connector_id} not found", context={"connector_id": connector_id})
        return config

    async def list(self) -> List[ConnectorConfig]:
        result = await self.session.execute(select(DataConnectorConfigRecord).order_by(DataConnectorConfigRecord.name))
        stored = [ConnectorConfig.model_validate(record) for record in result.scalars().all()]
        return list(self.bundled.values()) + stored

    async def create(self, data: ConnectorCreate) -> ConnectorConfig:
        """Register a user connector under a generated id"""
        problem = validate_connector_config(data.model_dump())
        if problem:
            raise InvalidConnectorConfigError(problem)

        loader_class = get_loader_class(data.loader_type)
        if loader_class.is_hidden:
            raise InvalidConnectorConfigError(
                f"Loader {data.loader_type} needs code-level hooks and cannot be registered at runtime",
                context={"loader_type": data.loader_type}
            )
        # Constructor validates loader_config
        loader = self.loader_factory(data.loader_type, data.loader_config)
        await loader.close()

        connector_id = generate_id_from_name(data.name)
        if self.is_bundled(connector_id) or await self._get_record(connector_id) is not None:
            raise ConnectorExistsError(f"Connector {connector_id} already exists", context={"connector_id": connector_id})

        record = DataConnectorConfigRecord(
            id=connector_id,
            name=data.name,
            description=data.description,
            resources=[resource.model_dump() for resource in data.resources],
            openapi_spec=data.openapi_spec,
            loader_type=data.loader_type,
            loader_config=data.loader_config,
        )
        self.session.add(record)
        await self.session.commit()
        logger.info(f"Registered connector {connector_id} ({data.loader_type})")
        return ConnectorConfig.model_validate(record)

    async def update(self, connector_id: str, data: ConnectorUpdate) -> ConnectorConfig:
        if self.is_bundled(connector_id):
            raise ForbiddenError(f"Bundled connector {connector_id} cannot be modified", context={"connector_id": connector_id})
        record = await self._get_record(connector_id)
        if record is None:
            raise ConnectorNotFoundError(f"Connector {connector_id} not found", context={"connector_id": connector_id})

        changes = data.model_dump(exclude_unset=True)
        if "resources" in changes:
            changes["resources"] = [resource.model_dump() for resource in data.resources]

        candidate = {**ConnectorConfig.model_validate(record).model_dump(), **changes}
        problem = validate_connector_config(candidate)
        if problem:
            raise InvalidConnectorConfigError(problem, context={"connector_id": connector_id})

        for key, value in changes.items():
            setattr(record, key, value)
        await self.session.commit()

        self._connectors.pop(connector_id, None)
        logger.info(f"Updated connector {connector_id}: {', '.join(changes) or 'no changes'}")
        return ConnectorConfig.model_validate(record)

    async def delete(self, connector_id: str) -> None:
        """Disconnect (dropping synced data) and remove a user connector"""
        if self.is_bundled(connector_id):
            raise ForbiddenError(f"Bundled connector {connector_id} cannot be removed", context={"connector_id": connector_id})
        record = await self._get_record(connector_id)
        if record is None:
            raise ConnectorNotFoundError(f"Connector {connector_id} not found", context={"connector_id": connector_id})

        await self.disconnect(connector_id)
        await self.session.delete(record)
        await self.session.commit()
        logger.info(f"Deleted connector {connector_id}")

    # ------------------------------------------------------------------
    # Live connectors
    # ------------------------------------------------------------------

    async def get_connector(self, connector_id: str) -> Connector:
        if connector_id not in self._connectors:
            config = await self.get(connector_id)
            loader = self.loader_factory(config.loader_type, config.loader_config)
            self._connectors[connector_id] = await Connector.create(config, self.session, loader=loader)
        return self._connectors[connector_id]

    async def disconnect(self, connector_id: str) -> None:
        connector = await self.get_connector(connector_id)
        await connector.disconnect()

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    async def _to_info(self, config: ConnectorConfig) -> ConnectorInfo:
        status = await self.session.get(ConnectorStatus, config.id, populate_existing=True)
        last_job = None
        if status is not None and status.last_data_job_id:
            job = await self.session.get(DataJob, status.last_data_job_id)
            last_job = DataJobInfo.from_job(job) if job else None

        return ConnectorInfo(
            id=config.id,
            name=config.name,
            description=config.description,
            is_connected=bool(status and status.is_connected),
            is_loading=bool(status and status.is_loading),
            last_loaded_at=status.last_synced_at if status else None,
            last_connected_at=status.last_connected_at if status else None,
            last_error=status.last_error if status else None,
            data_job_id=status.data_job_id if status else None,
            last_data_job=last_job,
            is_removable=not self.is_bundled(config.id),
        )

    async def get_connector_info(self, connector_id: str) -> ConnectorInfo:
        return await self._to_info(await self.get(connector_id))

    async def get_all(self) -> List[ConnectorInfo]:
        return [await self._to_info(config) for config in await self.list()]

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def get_available_resource_names(self, connector_id: str) -> List[str]:
        config = await self.get(connector_id)
        loader = self.loader_factory(config.loader_type, config.loader_config)
        try:
            return await loader.get_available_resource_names()
        finally:
            await loader.close()

    async def get_resource_info(self, connector_id: str, resource_name: str) -> ResourceInfo:
        config = await self.get(connector_id)
        loader = self.loader_factory(config.loader_type, config.loader_config)
        try:
            return await loader.get_resource_info(resource_name)
        finally:
            await loader.close()
