"""Models package."""
from app.models.user import User, PlanType
from app.models.project import Project, ProjectStatus, PriorityLevel
from app.models.topic import Topic, TopicStatus
from app.models.opinion import (
    Opinion, OpinionAnalysisState,
    Sentiment, ActionStatus, ACTIVE_ACTION_STATUSES,
)
from app.models.task import Task, TaskStatus
from app.models.usage import AnalysisUsageRecord
from app.models.idempotency import SyncOperationKey

__all__ = [
    "User", "PlanType",
    "Project", "ProjectStatus", "PriorityLevel",
    "Topic", "TopicStatus",
    "Opinion", "OpinionAnalysisState",
    "Sentiment", "ActionStatus", "ACTIVE_ACTION_STATUSES",
    "Task", "TaskStatus",
    "AnalysisUsageRecord",
    "SyncOperationKey",
]
