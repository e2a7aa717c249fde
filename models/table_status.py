from sqlalchemy import Column, Integer, String, DateTime, Index
from core.timeutil import utcnow
from models.base import Base


class TableStatus(Base):
    """
    Per-table sync watermark.

    One row per (connector, qualified table); written by the writer after
    every schema or record sync.
    """
    __tablename__ = "data_table_statuses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    connector_id = Column(String(255), nullable=False)
    table_name = Column(String(255), nullable=False)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_table_status_connector_table", "connector_id", "table_name", unique=True),
    )
