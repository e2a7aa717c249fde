"""
Value types exchanged across the loader plugin contract
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class TokenPair(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class AuthInfo(BaseModel):
    """Result of Loader.authenticate: a consent URL, or immediate success"""
    auth_url: str = ""
    success: bool = False


class ConnectResult(BaseModel):
    success: bool
    auth_info: Optional[AuthInfo] = None


class ResourceInfo(BaseModel):
    """Introspection result for a single resource"""
    name: str
    record_schema: Dict[str, Any]
    columns: List[str] = Field(default_factory=list)
    timestamp_columns: List[str] = Field(default_factory=list)
    primary_key_column: Optional[str] = None
    record_count: Optional[int] = None


class DataRecord(BaseModel):
    """A resource tag plus an open map of field name to value"""
    resource_name: str
    data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    def get(self, field: str, default: Any = None) -> Any:
        return self.data.get(field, default)


class FetchBatch(BaseModel):
    """
    Records fetched in one step plus the checkpoint valid once they are stored.

    The checkpoint is a fresh value per batch; the has_more flag of the last
    batch of a fetch call is authoritative.
    """
    records: List[DataRecord] = Field(default_factory=list)
    sync_context: Dict[str, Any] = Field(default_factory=dict)
    has_more: bool = False

    class Config:
        frozen = True


class LoaderInfo(BaseModel):
    name: str
    example_config: Dict[str, Any] = Field(default_factory=dict)
    is_hidden: bool = False
