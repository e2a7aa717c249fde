from sqlalchemy import Column, String, Text, Boolean, DateTime
from core.timeutil import utcnow
from models.base import Base, JSONType


class DataConnectorConfigRecord(Base):
    """
    User-registered connector configuration.

    Bundled connectors live in code and never get a row here.
    """
    __tablename__ = "data_connector_configs"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")

    resources = Column(JSONType, nullable=False, default=list)
    openapi_spec = Column(JSONType, nullable=True)
    loader_type = Column(String(100), nullable=False)
    loader_config = Column(JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ConnectorStatus(Base):
    """
    Mutable sync state for one connector.

    Created lazily on the first connect attempt. Tokens are only kept while
    the connector is connected; is_loading marks the single in-flight load.
    """
    __tablename__ = "data_connector_statuses"

    connector_id = Column(String(255), primary_key=True)

    is_connected = Column(Boolean, nullable=False, default=False)
    is_loading = Column(Boolean, nullable=False, default=False)

    # Credentials
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    last_connected_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    # Opaque loader checkpoint
    sync_context = Column(JSONType, nullable=True)

    data_job_id = Column(String(36), nullable=True)
    last_data_job_id = Column(String(36), nullable=True)
    asked_to_connect_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
