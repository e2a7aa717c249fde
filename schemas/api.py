"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, Dict, Any
from datetime import datetime
from core.timeutil import utcnow
from schemas.job import DataJobInfo


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    total_connectors: int = 0
    connected_connectors: int = 0
    loading_connectors: int = 0
    active_jobs: int = 0
    connectors_with_errors: int = 0

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.connectors_with_errors:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "total_connectors": 3,
                "connected_connectors": 2,
                "loading_connectors": 1,
                "active_jobs": 1,
                "connectors_with_errors": 0
            }
        }


# ============================================================================
# Connect Schemas
# ============================================================================

class ConnectRequest(BaseModel):
    """Start or finish authentication; ``auth_code`` finishes it"""
    redirect_to: str = Field(..., description="Where the provider redirects after consent")
    auth_code: Optional[str] = Field(None, description="Code (or Plaid public token) returned by the provider")
    user_id: Optional[str] = None


class ConnectResponse(BaseModel):
    """Connect outcome: connected (with the load job started) or an auth URL to visit"""
    success: bool
    auth_url: Optional[str] = None
    job: Optional[DataJobInfo] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "auth_url": "https://accounts.google.com/o/oauth2/v2/auth?client_id=...",
                "job": None
            }
        }


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "AlreadyLoadingError",
                "detail": "Connector gmail is already loading",
                "context": {"connector_id": "gmail"},
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
