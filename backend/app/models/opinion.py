import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, JSON, String, Text

from app.core.database import Base
from app.utils.ids import new_id


class Sentiment(str, enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class ActionStatus(str, enum.Enum):
    UNHANDLED = "unhandled"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


# Child statuses that mark a topic as acted upon.
ACTIVE_ACTION_STATUSES = (ActionStatus.IN_PROGRESS.value, ActionStatus.RESOLVED.value)


class Opinion(Base):
    __tablename__ = "opinions"

    id = Column(String(32), primary_key=True, default=new_id)
    project_id = Column(String(32), ForeignKey("projects.id"), nullable=False, index=True)
    topic_id = Column(String(32), ForeignKey("topics.id"), nullable=True, index=True)
    content = Column(Text, nullable=False)
    sentiment = Column(String(16), nullable=False, default=Sentiment.NEUTRAL.value)
    character_count = Column(Integer, nullable=False, default=0)
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    is_bookmarked = Column(Boolean, nullable=False, default=False)

    action_status = Column(String(24), nullable=True, index=True)
    action_status_reason = Column(Text, nullable=True)
    action_status_updated_at = Column(DateTime, nullable=True)
    priority_level = Column(String(16), nullable=True)
    priority_reason = Column(Text, nullable=True)
    priority_updated_at = Column(DateTime, nullable=True)
    due_date = Column(DateTime, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_opinions_project_submitted", "project_id", "submitted_at"),
        Index("ix_opinions_topic_action", "topic_id", "action_status"),
    )


class OpinionAnalysisState(Base):
    __tablename__ = "opinion_analysis_states"

    opinion_id = Column(String(32), ForeignKey("opinions.id"), primary_key=True)
    last_analyzed_at = Column(DateTime, nullable=True)
    analysis_version = Column(Integer, nullable=False, default=1)
    classification_confidence = Column(Float, nullable=True)
    manual_review_flag = Column(Boolean, nullable=False, default=False)
