"""
Project aggregate: owns opinions, tasks and topics.

Opinion counts are never stored here; see DerivedCountService.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from app.core.database import Base
from app.utils.ids import new_id, new_replica_id


class ProjectStatus(str, enum.Enum):
    COLLECTING = "collecting"
    PAUSED = "paused"
    READY_FOR_ANALYSIS = "ready-for-analysis"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    ERROR = "error"


class PriorityLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(32), primary_key=True, default=new_id)
    replica_id = Column(String(40), nullable=False, unique=True, default=new_replica_id)
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default=ProjectStatus.COLLECTING.value, index=True)

    is_archived = Column(Boolean, nullable=False, default=False, index=True)
    archived_at = Column(DateTime, nullable=True)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)

    priority_level = Column(String(16), nullable=True)
    priority_reason = Column(Text, nullable=True)
    priority_updated_at = Column(DateTime, nullable=True)

    last_analysis_at = Column(DateTime, nullable=True)
    last_analyzed_opinion_count = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_projects_owner_archived", "owner_id", "is_archived"),
    )
