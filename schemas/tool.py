"""
Pydantic schemas for the agent-facing data connector tool
"""

from pydantic import BaseModel
from typing import Optional, Literal
from datetime import datetime


class DataConnectorToolParams(BaseModel):
    operation: Literal["list", "ask_to_connect", "load_data"]
    # Required for ask_to_connect and load_data
    connector_id: Optional[str] = None


class ConnectorSummary(BaseModel):
    """What the agent may see about a connector: no tokens, no checkpoint"""
    id: str
    name: str
    description: str
    is_connected: bool = False
    is_loading: bool = False
    last_loaded_at: Optional[datetime] = None


class AskToConnectResult(BaseModel):
    success: bool
    is_connected: bool
    connector_id: str
    message: str


class LoadDataResult(BaseModel):
    success: bool
    connector_id: str
    job_id: str
    message: str
    records_loaded: Optional[int] = None
