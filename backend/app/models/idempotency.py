from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, JSON, String, Text

from app.core.database import Base


class SyncOperationKey(Base):
    __tablename__ = "sync_operation_keys"

    operation_id = Column(String(190), primary_key=True)
    entity_kind = Column(String(16), nullable=False, index=True)
    operation = Column(String(16), nullable=False)
    status = Column(String(24), nullable=False, default="running", index=True)  # running|completed|failed|compensation_failed
    entity_id = Column(String(32), nullable=True, index=True)
    result_json = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    __table_args__ = (
        Index("ix_sync_operation_kind_status", "entity_kind", "status"),
    )
