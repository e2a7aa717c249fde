"""
Connector endpoints: registry, connect cycle, discovery and job history
"""

from fastapi import APIRouter, Depends, Request, Response, status
from api.dependencies import get_catalog, get_job_scheduler
from connectors.catalog import Catalog
from connectors.jobs import DataJobScheduler
from core.exceptions import ConnectorAuthenticationError
from schemas.api import ConnectRequest, ConnectResponse
from schemas.connector import ConnectorCreate, ConnectorInfo, ConnectorUpdate
from schemas.job import DataJobInfo
from schemas.loader import ResourceInfo
from typing import List
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/connectors", tags=["Connectors"])


@router.get("", response_model=List[ConnectorInfo])
async def list_connectors(catalog: Catalog = Depends(get_catalog)):
    """All bundled and registered connectors with their status"""
    return await catalog.get_all()


@router.post("", response_model=ConnectorInfo, status_code=status.HTTP_201_CREATED)
async def create_connector(data: ConnectorCreate, catalog: Catalog = Depends(get_catalog)):
    config = await catalog.create(data)
    return await catalog.get_connector_info(config.id)


@router.get("/{connector_id}", response_model=ConnectorInfo)
async def get_connector(connector_id: str, catalog: Catalog = Depends(get_catalog)):
    return await catalog.get_connector_info(connector_id)


@router.patch("/{connector_id}", response_model=ConnectorInfo)
async def update_connector(connector_id: str, data: ConnectorUpdate, catalog: Catalog = Depends(get_catalog)):
    await catalog.update(connector_id, data)
    return await catalog.get_connector_info(connector_id)


@router.delete("/{connector_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connector(connector_id: str, catalog: Catalog = Depends(get_catalog)):
    await catalog.delete(connector_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{connector_id}/connect", response_model=ConnectResponse)
async def connect(
    connector_id: str,
    body: ConnectRequest,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    scheduler: DataJobScheduler = Depends(get_job_scheduler),
):
    """
    Connect a connector.

    Without ``auth_code`` this starts authentication and returns the URL
    the user must visit (or connects directly for credential loaders).
    With ``auth_code`` it completes authentication. Either way, a
    successful connection creates and triggers a load job.
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    connector = await catalog.get_connector(connector_id)

    if body.auth_code:
        logger.info(f"[{request_id}] Completing authentication for {connector_id}")
        try:
            await connector.continue_to_connect(body.auth_code, body.redirect_to)
        except ConnectorAuthenticationError as e:
            # The user answered, just not successfully
            await connector.update_status(asked_to_connect_until=None, last_error=str(e))
            raise
    else:
        logger.info(f"[{request_id}] Starting authentication for {connector_id}")
        result = await connector.connect(body.redirect_to, body.user_id)
        if not result.success:
            return ConnectResponse(success=False, auth_url=result.auth_info.auth_url if result.auth_info else None)

    job = await scheduler.create(connector_id)
    scheduler.trigger(job.id)
    logger.info(f"[{request_id}] Connector {connector_id} connected, load job {job.id} triggered")
    return ConnectResponse(success=True, job=job)


@router.post("/{connector_id}/disconnect", response_model=ConnectorInfo)
async def disconnect(connector_id: str, catalog: Catalog = Depends(get_catalog)):
    """Drop synced data and forget tokens"""
    await catalog.disconnect(connector_id)
    return await catalog.get_connector_info(connector_id)


@router.get("/{connector_id}/resources", response_model=List[str])
async def list_resources(connector_id: str, catalog: Catalog = Depends(get_catalog)):
    return await catalog.get_available_resource_names(connector_id)


@router.get("/{connector_id}/resources/{resource_name}", response_model=ResourceInfo)
async def get_resource(connector_id: str, resource_name: str, catalog: Catalog = Depends(get_catalog)):
    return await catalog.get_resource_info(connector_id, resource_name)


@router.get("/{connector_id}/jobs", response_model=List[DataJobInfo])
async def list_jobs(
    connector_id: str,
    catalog: Catalog = Depends(get_catalog),
    scheduler: DataJobScheduler = Depends(get_job_scheduler),
):
    """Jobs of a connector, newest first"""
    await catalog.get(connector_id)
    return await scheduler.get_by_config(connector_id)
