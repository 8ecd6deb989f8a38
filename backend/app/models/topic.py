"""
Topics are produced by the analysis engine. ``has_active_actions`` is a cache of
what ProtectionClassifier derives from child opinions.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from app.core.database import Base
from app.utils.ids import new_id


class TopicStatus(str, enum.Enum):
    UNHANDLED = "unhandled"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class Topic(Base):
    __tablename__ = "topics"

    id = Column(String(32), primary_key=True, default=new_id)
    project_id = Column(String(32), ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    summary = Column(Text, nullable=True)
    status = Column(String(24), nullable=False, default=TopicStatus.UNHANDLED.value)
    count = Column(Integer, nullable=False, default=0)
    has_active_actions = Column(Boolean, nullable=False, default=False)
    last_action_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_topics_project_status", "project_id", "status"),
    )
