"""
Replica document layout.

Documents live under ``users/{owner_id}/projects/{replica_id}``; opinions and
tasks are children of their project document. Keys are camelCase because
connected clients read them directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.utils.clock import isoformat_or_none, utcnow

SYNC_STATUS_SYNCED = "synced"


def project_path(owner_id: str, replica_id: str) -> str:
    return f"users/{owner_id}/projects/{replica_id}"


def opinion_path(owner_id: str, replica_id: str, opinion_id: str) -> str:
    return f"{project_path(owner_id, replica_id)}/opinions/{opinion_id}"


def task_path(owner_id: str, replica_id: str, task_id: str) -> str:
    return f"{project_path(owner_id, replica_id)}/tasks/{task_id}"


def _sync_fields(version: int, synced_at: datetime | None) -> dict[str, Any]:
    return {
        "version": version,
        "lastSyncAt": isoformat_or_none(synced_at or utcnow()),
        "syncStatus": SYNC_STATUS_SYNCED,
    }


def project_document(project, synced_at: datetime | None = None) -> dict[str, Any]:
    doc = {
        "id": project.replica_id,
        "sqlId": project.id,
        "ownerId": project.owner_id,
        "name": project.name,
        "description": project.description,
        "status": project.status,
        "isArchived": bool(project.is_archived),
        "archivedAt": isoformat_or_none(project.archived_at),
        "isCompleted": bool(project.is_completed),
        "completedAt": isoformat_or_none(project.completed_at),
        "priority": None,
        "lastAnalysisAt": isoformat_or_none(project.last_analysis_at),
        "lastAnalyzedOpinionCount": project.last_analyzed_opinion_count or 0,
        "createdAt": isoformat_or_none(project.created_at),
        "updatedAt": isoformat_or_none(project.updated_at),
    }
    if project.priority_level:
        doc["priority"] = {
            "level": project.priority_level,
            "reason": project.priority_reason,
            "updatedAt": isoformat_or_none(project.priority_updated_at),
        }
    doc.update(_sync_fields(project.version, synced_at))
    return doc


def opinion_document(opinion, synced_at: datetime | None = None) -> dict[str, Any]:
    doc = {
        "id": opinion.id,
        "projectId": opinion.project_id,
        "topicId": opinion.topic_id,
        "content": opinion.content,
        "sentiment": opinion.sentiment,
        "characterCount": opinion.character_count,
        "submittedAt": isoformat_or_none(opinion.submitted_at),
        "isBookmarked": bool(opinion.is_bookmarked),
        "actionStatus": opinion.action_status,
        "priority": None,
        "dueDate": isoformat_or_none(opinion.due_date),
        "metadata": opinion.extra_metadata,
        "updatedAt": isoformat_or_none(opinion.updated_at),
    }
    if opinion.priority_level:
        doc["priority"] = {
            "level": opinion.priority_level,
            "reason": opinion.priority_reason,
            "updatedAt": isoformat_or_none(opinion.priority_updated_at),
        }
    doc.update(_sync_fields(opinion.version, synced_at))
    return doc


def task_document(task, synced_at: datetime | None = None) -> dict[str, Any]:
    doc = {
        "id": task.id,
        "projectId": task.project_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "dueDate": isoformat_or_none(task.due_date),
        "createdAt": isoformat_or_none(task.created_at),
        "updatedAt": isoformat_or_none(task.updated_at),
    }
    doc.update(_sync_fields(task.version, synced_at))
    return doc
