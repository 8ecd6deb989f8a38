"""
Bulk opinion ingestion.

Opinions are written in fixed-size batches; items inside a batch run
concurrently through the sync coordinator and the next batch starts only when
the current one has fully resolved. Failures are reported per item and never
roll back their siblings.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from app.core.config import get_settings
from app.core.errors import NotFoundError, PrimaryStoreError, ReplicaStoreError, SyncEngineError, ValidationError
from app.core.logging import get_logger
from app.domain.sync.documents import project_path
from app.domain.sync.state_machine import EntityKind, SyncOperation
from app.schemas.entities import IngestResult
from app.services.archive_guard import ArchiveGuard
from app.services.realtime_notifier import project_scope
from app.utils.clock import isoformat_or_none, utcnow

logger = get_logger("bulk_ingestion")
settings = get_settings()

INVALID_CONTENT = "content is required and must be a string"

# Accepted item keys, including the camelCase spellings clients send.
_ITEM_FIELDS = {
    "content": "content",
    "sentiment": "sentiment",
    "is_bookmarked": "is_bookmarked",
    "isBookmarked": "is_bookmarked",
    "submitted_at": "submitted_at",
    "submittedAt": "submitted_at",
    "metadata": "metadata",
    "topic_id": "topic_id",
    "topicId": "topic_id",
}


@dataclass(slots=True)
class ItemOutcome:
    success: bool
    index: int
    error: str | None = None


def _item_payload(project_id: str, item: Any) -> dict[str, Any]:
    if not isinstance(item, dict):
        raise ValidationError(INVALID_CONTENT, field="content")
    content = item.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError(INVALID_CONTENT, field="content")
    payload: dict[str, Any] = {"project_id": project_id}
    for key, target in _ITEM_FIELDS.items():
        if key in item and item[key] is not None:
            payload[target] = item[key]
    return payload


class BulkIngestionPipeline:
    def __init__(
        self,
        primary,
        replica,
        coordinator,
        *,
        archive_guard=None,
        quota_gate=None,
        notifier=None,
        batch_size: int | None = None,
        max_reported_errors: int | None = None,
    ):
        self._primary = primary
        self._replica = replica
        self._coordinator = coordinator
        self._guard = archive_guard or ArchiveGuard(primary)
        self._quota = quota_gate
        self._notifier = notifier
        self._batch_size = max(1, batch_size or settings.bulk_batch_size)
        self._max_errors = max_reported_errors or settings.bulk_max_reported_errors

    async def ingest(self, project_id: str, opinions: Any, *, actor_id: str | None = None) -> IngestResult:
        if not isinstance(opinions, list):
            raise ValidationError("opinions must be an array", field="opinions")

        project = await self._primary.find_project(project_id, owner_id=actor_id)
        if project is None:
            raise NotFoundError("project", project_id)
        decision = self._guard.decide(project)
        if not decision.allowed:
            raise decision.to_violation()
        if self._quota is not None:
            await self._quota.require_opinion_submission_allowed(project)

        total = len(opinions)
        success_count = 0
        errors: list[str] = []
        logger.info("bulk_ingest_started", project_id=project.id, total=total, batch_size=self._batch_size)

        for start in range(0, total, self._batch_size):
            batch = opinions[start:start + self._batch_size]
            outcomes = await asyncio.gather(
                *[self._ingest_one(project.id, item, start + offset, actor_id) for offset, item in enumerate(batch)],
                return_exceptions=True,
            )
            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    outcome = ItemOutcome(success=False, index=start + offset, error=str(outcome) or "Unknown error")
                if outcome.success:
                    success_count += 1
                elif len(errors) < self._max_errors:
                    errors.append(f"Opinion {outcome.index + 1}: {outcome.error}")
            logger.info("bulk_ingest_progress", project_id=project.id, processed=min(start + len(batch), total), total=total)

        if success_count > 0:
            await self._after_success(project, success_count)

        logger.info("bulk_ingest_completed", project_id=project.id, success_count=success_count, total=total, failed=total - success_count)
        return IngestResult(success_count=success_count, total_count=total, errors=errors)

    async def _ingest_one(self, project_id: str, item: Any, index: int, actor_id: str | None) -> ItemOutcome:
        try:
            payload = _item_payload(project_id, item)
            await self._coordinator.write(
                EntityKind.OPINION,
                SyncOperation.CREATE,
                payload,
                actor_id=actor_id,
                bulk=True,
            )
        except SyncEngineError as exc:
            logger.info("bulk_item_failed", project_id=project_id, index=index + 1, code=exc.code, error=exc.message)
            return ItemOutcome(success=False, index=index, error=exc.message)
        return ItemOutcome(success=True, index=index)

    async def _after_success(self, project, success_count: int) -> None:
        try:
            await self._replica.update(
                project_path(project.owner_id, project.replica_id),
                {"updatedAt": isoformat_or_none(utcnow())},
            )
        except (ReplicaStoreError, PrimaryStoreError) as exc:
            logger.warning("bulk_project_touch_failed", project_id=project.id, error=exc.message)
        if self._notifier is None:
            return
        try:
            await self._notifier.publish(
                project_scope(project.id),
                "opinions.bulk_ingested",
                {"project_id": project.id, "count": success_count},
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("bulk_notify_failed", project_id=project.id, error=str(exc))
