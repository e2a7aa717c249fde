"""
Pydantic schemas for connector configuration and status projections
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from schemas.job import DataJobInfo


class ResourceConfig(BaseModel):
    """One named collection at the source, mapped to one destination table"""
    name: str
    created_at_column: Optional[str] = None
    updated_at_column: Optional[str] = None
    # Explicit primary key; overrides the "id" / "*_id" inference
    id_column: Optional[str] = None


class ConnectorConfig(BaseModel):
    """Registered connector: resources plus the loader that serves them"""
    id: str
    name: str
    description: str = ""
    resources: List[ResourceConfig] = Field(default_factory=list)
    openapi_spec: Optional[Dict[str, Any]] = None
    loader_type: str
    loader_config: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True
        arbitrary_types_allowed = True

    @property
    def resource_names(self) -> List[str]:
        return [resource.name for resource in self.resources]

    def get_resource(self, name: str) -> Optional[ResourceConfig]:
        return next((r for r in self.resources if r.name == name), None)


class ConnectorCreate(BaseModel):
    """Payload for registering a connector; the id is generated from the name"""
    name: str
    description: str = ""
    resources: List[ResourceConfig]
    openapi_spec: Optional[Dict[str, Any]] = None
    loader_type: str
    loader_config: Dict[str, Any] = Field(default_factory=dict)


class ConnectorUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    resources: Optional[List[ResourceConfig]] = None
    openapi_spec: Optional[Dict[str, Any]] = None
    loader_config: Optional[Dict[str, Any]] = None


class ConnectorInfo(BaseModel):
    """Token-free connector projection for callers and the agent tool"""
    id: str
    name: str
    description: str
    is_connected: bool = False
    is_loading: bool = False
    last_loaded_at: Optional[datetime] = None
    last_connected_at: Optional[datetime] = None
    last_error: Optional[str] = None
    data_job_id: Optional[str] = None
    last_data_job: Optional[DataJobInfo] = None
    is_removable: bool = False


class LoadResult(BaseModel):
    """Outcome of one duration-bounded Connector.load call"""
    updated_record_count: int = 0
    is_finished: bool = True
    sync_context: Dict[str, Any] = Field(default_factory=dict)
