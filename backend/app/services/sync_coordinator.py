"""
Sync Coordinator
================
Keeps the primary store and the replica store consistent for projects,
opinions and tasks without a shared transaction.

Create/update write the primary store first and the replica second; a replica
failure is compensated in the primary store (the new row is deleted, or the
prior values are restored under a version compare-and-set) and surfaces as
``ReplicaSyncFailed``. Deletes run in the opposite order; a primary failure
after the replica removal re-creates the replica documents from the
pre-delete snapshot. A failed compensation raises ``CompensationFailed`` and
is never retried.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.core.correlation import correlation_scope, get_correlation_id
from app.core.errors import (
    CompensationFailed,
    ConflictError,
    NotFoundError,
    PrimaryStoreError,
    ReplicaStoreError,
    ReplicaSyncFailed,
    ValidationError,
)
from app.core.logging import get_logger
from app.domain.sync.documents import (
    opinion_document,
    opinion_path,
    project_document,
    project_path,
    task_document,
    task_path,
)
from app.domain.sync.state_machine import EntityKind, SyncOperation, SyncPhase, SyncState
from app.repositories.primary_store import row_to_dict
from app.schemas.entities import (
    EntityRef,
    OpinionCreate,
    OpinionUpdate,
    ProjectCreate,
    ProjectUpdate,
    TaskCreate,
    TaskUpdate,
)
from app.services.archive_guard import ArchiveGuard
from app.services.realtime_notifier import project_scope, user_scope
from app.utils.clock import utcnow

logger = get_logger("sync_coordinator")

SCHEMAS = {
    (EntityKind.PROJECT, SyncOperation.CREATE): ProjectCreate,
    (EntityKind.PROJECT, SyncOperation.UPDATE): ProjectUpdate,
    (EntityKind.PROJECT, SyncOperation.DELETE): EntityRef,
    (EntityKind.OPINION, SyncOperation.CREATE): OpinionCreate,
    (EntityKind.OPINION, SyncOperation.UPDATE): OpinionUpdate,
    (EntityKind.OPINION, SyncOperation.DELETE): EntityRef,
    (EntityKind.TASK, SyncOperation.CREATE): TaskCreate,
    (EntityKind.TASK, SyncOperation.UPDATE): TaskUpdate,
    (EntityKind.TASK, SyncOperation.DELETE): EntityRef,
}

# Archived projects accept only this change (needed to unarchive).
ARCHIVE_TOGGLE_FIELDS = frozenset({"is_archived"})

EVENT_SUFFIX = {
    SyncOperation.CREATE: "created",
    SyncOperation.UPDATE: "updated",
    SyncOperation.DELETE: "deleted",
}


def validate_payload(kind: EntityKind, operation: SyncOperation, payload: Any):
    if not isinstance(payload, dict):
        raise ValidationError(f"{kind.value} payload must be an object")
    schema = SCHEMAS[(kind, operation)]
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as exc:
        errors = []
        for item in exc.errors():
            message = str(item.get("msg", "invalid value"))
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            errors.append({"field": ".".join(str(part) for part in item.get("loc", ())), "message": message})
        first = errors[0] if errors else {"field": None, "message": "invalid payload"}
        raise ValidationError(
            f"Invalid {kind.value} payload: {first['message']}",
            field=first["field"] or None,
            errors=errors,
        ) from exc


class SyncCoordinator:
    def __init__(
        self,
        primary,
        replica,
        *,
        archive_guard: ArchiveGuard | None = None,
        quota_gate=None,
        notifier=None,
        sentiment=None,
        protection=None,
    ):
        self._primary = primary
        self._replica = replica
        self._guard = archive_guard or ArchiveGuard(primary)
        self._quota = quota_gate
        self._notifier = notifier
        self._sentiment = sentiment
        self._protection = protection

    # ── Public entry point ──

    async def write(
        self,
        kind: EntityKind | str,
        operation: SyncOperation | str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        operation_id: str | None = None,
        expected_version: int | None = None,
        bulk: bool = False,
    ):
        """
        Apply one create/update/delete to both stores.

        Returns the committed primary row; deletes return ``None``.
        """
        try:
            kind = EntityKind(kind)
            operation = SyncOperation(operation)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if get_correlation_id():
            return await self._write(kind, operation, payload, actor_id, operation_id, expected_version, bulk)
        with correlation_scope():
            return await self._write(kind, operation, payload, actor_id, operation_id, expected_version, bulk)

    async def _write(self, kind, operation, payload, actor_id, operation_id, expected_version, bulk):
        if operation_id:
            replay = await self._acquire(kind, operation, operation_id)
            if replay is not None:
                return replay[0]

        handler = getattr(self, f"_{operation.value}_{kind.value}")
        try:
            data = validate_payload(kind, operation, payload)
            if operation is SyncOperation.CREATE:
                entity = await handler(data, actor_id=actor_id, bulk=bulk)
            else:
                entity = await handler(data, actor_id=actor_id, expected_version=expected_version)
        except CompensationFailed as exc:
            if operation_id:
                await self._release(operation_id, exc, compensation_failed=True)
            raise
        except Exception as exc:
            if operation_id:
                await self._release(operation_id, exc)
            raise

        if operation_id:
            await self._primary.complete_operation(
                operation_id=operation_id,
                entity_id=getattr(entity, "id", None) or (payload.get("id") if isinstance(payload, dict) else None),
                result_json={"version": getattr(entity, "version", None)},
            )
        return entity

    async def _acquire(self, kind: EntityKind, operation: SyncOperation, operation_id: str):
        """Returns ``(entity,)`` when the operation already completed, ``None`` to proceed."""
        state, key = await self._primary.acquire_operation(
            operation_id=operation_id,
            entity_kind=kind.value,
            operation=operation.value,
        )
        if state == "acquired":
            return None
        if state == "completed":
            logger.info("sync_operation_replayed", operation_id=operation_id, entity_id=key.get("entity_id"))
            if operation is SyncOperation.DELETE or not key.get("entity_id"):
                return (None,)
            return (await self._primary.get(kind, key["entity_id"]),)
        if state == "running":
            raise ConflictError(
                "Operation is already in progress",
                operation_id=operation_id,
                entity_kind=kind.value,
            )
        raise CompensationFailed(
            "A previous attempt left the stores inconsistent; manual reconciliation is required",
            {"operation_id": operation_id, "error": key.get("error")},
        )

    async def _release(self, operation_id: str, exc: Exception, *, compensation_failed: bool = False) -> None:
        try:
            await self._primary.fail_operation(
                operation_id=operation_id,
                error=str(exc),
                compensation_failed=compensation_failed,
            )
        except PrimaryStoreError as release_exc:
            logger.error("sync_operation_release_failed", operation_id=operation_id, error=str(release_exc))

    # ── Phase helpers ──

    def _phase(self, state: SyncState, target: SyncPhase | None = None, **fields) -> None:
        if target is not None:
            state.advance(target)
        logger.info("sync_phase", **state.as_log_fields(), **fields)

    async def _compensate(
        self,
        state: SyncState,
        cause: Exception,
        action: Callable[[], Awaitable[Any]],
        *,
        before: Any,
        after: Any,
    ) -> None:
        state.advance(SyncPhase.COMPENSATING)
        state.error = str(cause)
        logger.warning("sync_compensation_started", **state.as_log_fields(), error=str(cause))
        try:
            await action()
        except Exception as exc:  # noqa: BLE001
            state.advance(SyncPhase.FAILED)
            logger.critical(
                "sync_compensation_failed",
                **state.as_log_fields(),
                cause=str(cause),
                error=str(exc),
                before=before,
                after=after,
            )
            raise CompensationFailed(
                "Compensation failed; primary and replica stores are inconsistent",
                {
                    "entity_kind": state.kind.value,
                    "operation": state.operation.value,
                    "entity_id": state.entity_id,
                    "cause": str(cause),
                    "error": str(exc),
                },
            ) from exc
        state.advance(SyncPhase.COMPENSATED)
        logger.warning("sync_compensated", **state.as_log_fields())

    async def _notify(self, scope: str, kind: EntityKind, operation: SyncOperation, payload: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        event_kind = f"{kind.value}.{EVENT_SUFFIX[operation]}"
        try:
            await self._notifier.publish(scope, event_kind, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("sync_notify_failed", scope=scope, event_kind=event_kind, error=str(exc))

    # ── Generic protocols ──

    async def _run_create(self, kind: EntityKind, values: dict[str, Any], path_for, document_for):
        state = SyncState(kind=kind, operation=SyncOperation.CREATE)
        self._phase(state)
        try:
            row = await self._primary.create(kind, values)
        except PrimaryStoreError as exc:
            state.error = exc.message
            self._phase(state, SyncPhase.FAILED, error=exc.message)
            raise
        state.entity_id = row.id
        self._phase(state, SyncPhase.PRIMARY_COMMITTED, version=row.version)

        try:
            await self._replica.set(path_for(row), document_for(row))
        except ReplicaStoreError as exc:
            await self._compensate(
                state,
                exc,
                lambda: self._primary.delete(kind, row.id),
                before=None,
                after=row_to_dict(row),
            )
            raise ReplicaSyncFailed(
                f"Replica sync failed; the {kind.value} was not created",
                {"entity_kind": kind.value, "operation": "create", **exc.details},
            ) from exc
        self._phase(state, SyncPhase.REPLICA_COMMITTED)
        return row

    async def _run_update(
        self,
        kind: EntityKind,
        entity_id: str,
        changes: dict[str, Any],
        expected_version: int | None,
        path_for,
        document_for,
    ):
        state = SyncState(kind=kind, operation=SyncOperation.UPDATE, entity_id=entity_id)
        self._phase(state, fields=sorted(changes))
        try:
            result = await self._primary.update(kind, entity_id, changes, expected_version=expected_version)
        except (PrimaryStoreError, ConflictError) as exc:
            state.error = exc.message
            self._phase(state, SyncPhase.FAILED, error=exc.message)
            raise
        if result is None:
            self._phase(state, SyncPhase.FAILED, error="not_found")
            raise NotFoundError(kind.value, entity_id)
        before, row = result
        self._phase(state, SyncPhase.PRIMARY_COMMITTED, version=row.version)

        try:
            await self._replica.set(path_for(row), document_for(row))
        except ReplicaStoreError as exc:
            await self._compensate(
                state,
                exc,
                lambda: self._primary.restore(kind, entity_id, before, produced_version=row.version),
                before=before,
                after=row_to_dict(row),
            )
            raise ReplicaSyncFailed(
                f"Replica sync failed; the {kind.value} update was rolled back",
                {"entity_kind": kind.value, "operation": "update", "entity_id": entity_id, **exc.details},
            ) from exc
        self._phase(state, SyncPhase.REPLICA_COMMITTED)
        return row

    async def _run_delete(self, kind: EntityKind, row, path: str) -> None:
        state = SyncState(kind=kind, operation=SyncOperation.DELETE, entity_id=row.id)
        self._phase(state)
        try:
            snapshot = await self._replica.snapshot(path)
            await self._replica.remove(path)
        except ReplicaStoreError as exc:
            state.error = exc.message
            self._phase(state, SyncPhase.FAILED, error=exc.message)
            raise ReplicaSyncFailed(
                f"Replica removal failed; the {kind.value} was not deleted",
                {"entity_kind": kind.value, "operation": "delete", "entity_id": row.id, **exc.details},
            ) from exc
        self._phase(state, SyncPhase.REPLICA_COMMITTED, documents=len(snapshot))

        try:
            await self._primary.delete(kind, row.id)
        except PrimaryStoreError as exc:
            await self._compensate(
                state,
                exc,
                lambda: self._replica.restore(snapshot),
                before=sorted(snapshot),
                after=None,
            )
            raise
        self._phase(state, SyncPhase.PRIMARY_COMMITTED)

    # ── Resolution ──

    async def _project_for_child(self, project_ref: str, actor_id: str | None):
        project = await self._primary.find_project(project_ref, owner_id=actor_id)
        if project is None:
            raise NotFoundError("project", project_ref)
        return project

    async def _owning_project(self, kind: EntityKind, entity_id: str, actor_id: str | None):
        row = await self._primary.get(kind, entity_id)
        if row is None:
            raise NotFoundError(kind.value, entity_id)
        project = await self._primary.get(EntityKind.PROJECT, row.project_id)
        if project is None or (actor_id is not None and project.owner_id != actor_id):
            raise NotFoundError(kind.value, entity_id)
        return row, project

    def _guard_project(self, project, actor_id: str | None) -> None:
        decision = self._guard.decide(project, action="unarchive_required" if actor_id else "contact_owner")
        if not decision.allowed:
            raise decision.to_violation()

    # ── Projects ──

    async def _create_project(self, data: ProjectCreate, *, actor_id: str | None, bulk: bool = False):
        owner_id = data.owner_id or actor_id
        if not owner_id:
            raise ValidationError("owner_id is required", field="owner_id")
        if self._quota is not None:
            await self._quota.require_project_creation_allowed(owner_id)

        values = data.model_dump(exclude={"owner_id"})
        values["owner_id"] = owner_id
        if data.priority_level:
            values["priority_updated_at"] = utcnow()
        project = await self._run_create(
            EntityKind.PROJECT,
            values,
            lambda row: project_path(row.owner_id, row.replica_id),
            project_document,
        )
        await self._notify(user_scope(owner_id), EntityKind.PROJECT, SyncOperation.CREATE, {"id": project.id, "replica_id": project.replica_id})
        return project

    async def _update_project(self, data: ProjectUpdate, *, actor_id: str | None, expected_version: int | None):
        project = await self._primary.find_project(data.id, owner_id=actor_id)
        if project is None:
            raise NotFoundError("project", data.id)
        changes = data.model_dump(exclude_unset=True, exclude={"id"})
        if not changes:
            raise ValidationError("No fields to update")
        if project.is_archived and set(changes) - ARCHIVE_TOGGLE_FIELDS:
            self._guard_project(project, actor_id or project.owner_id)

        now = utcnow()
        if "is_archived" in changes:
            changes["archived_at"] = now if changes["is_archived"] else None
        if "is_completed" in changes:
            changes["completed_at"] = now if changes["is_completed"] else None
        if "priority_level" in changes:
            changes["priority_updated_at"] = now if changes["priority_level"] else None

        updated = await self._run_update(
            EntityKind.PROJECT,
            project.id,
            changes,
            expected_version,
            lambda row: project_path(row.owner_id, row.replica_id),
            project_document,
        )
        await self._notify(project_scope(project.id), EntityKind.PROJECT, SyncOperation.UPDATE, {"id": project.id, "version": updated.version, "fields": sorted(changes)})
        return updated

    async def _delete_project(self, data: EntityRef, *, actor_id: str | None, expected_version: int | None):
        project = await self._primary.find_project(data.id, owner_id=actor_id)
        if project is None:
            raise NotFoundError("project", data.id)
        self._guard_project(project, actor_id or project.owner_id)
        self._check_version(EntityKind.PROJECT, project, expected_version)
        await self._run_delete(EntityKind.PROJECT, project, project_path(project.owner_id, project.replica_id))
        await self._notify(user_scope(project.owner_id), EntityKind.PROJECT, SyncOperation.DELETE, {"id": project.id})
        return None

    # ── Opinions ──

    async def _create_opinion(self, data: OpinionCreate, *, actor_id: str | None, bulk: bool = False):
        project = await self._project_for_child(data.project_id, actor_id)
        self._guard_project(project, actor_id)
        if self._quota is not None:
            await self._quota.require_opinion_submission_allowed(project)

        sentiment = data.sentiment
        if sentiment is None and self._sentiment is not None:
            sentiment = (await self._sentiment.classify(data.content, bulk=bulk)).value
        values = {
            "project_id": project.id,
            "content": data.content,
            "sentiment": sentiment or "neutral",
            "character_count": len(data.content),
            "topic_id": data.topic_id,
            "submitted_at": data.submitted_at or utcnow(),
            "is_bookmarked": data.is_bookmarked,
            "extra_metadata": data.metadata,
        }
        opinion = await self._run_create(
            EntityKind.OPINION,
            values,
            lambda row: opinion_path(project.owner_id, project.replica_id, row.id),
            opinion_document,
        )
        if not bulk:
            await self._notify(project_scope(project.id), EntityKind.OPINION, SyncOperation.CREATE, {"id": opinion.id})
        return opinion

    async def _update_opinion(self, data: OpinionUpdate, *, actor_id: str | None, expected_version: int | None):
        opinion, project = await self._owning_project(EntityKind.OPINION, data.id, actor_id)
        self._guard_project(project, actor_id or project.owner_id)
        changes = data.model_dump(exclude_unset=True, exclude={"id"})
        if not changes:
            raise ValidationError("No fields to update")

        now = utcnow()
        if "metadata" in changes:
            changes["extra_metadata"] = changes.pop("metadata")
        if "content" in changes:
            changes["character_count"] = len(changes["content"] or "")
        if "action_status" in changes:
            changes["action_status_updated_at"] = now
        if "priority_level" in changes:
            changes["priority_updated_at"] = now if changes["priority_level"] else None

        updated = await self._run_update(
            EntityKind.OPINION,
            opinion.id,
            changes,
            expected_version,
            lambda row: opinion_path(project.owner_id, project.replica_id, row.id),
            opinion_document,
        )
        if "action_status" in changes or "topic_id" in changes:
            await self._refresh_topics(opinion.topic_id, updated.topic_id)
        await self._notify(project_scope(project.id), EntityKind.OPINION, SyncOperation.UPDATE, {"id": opinion.id, "version": updated.version})
        return updated

    async def _delete_opinion(self, data: EntityRef, *, actor_id: str | None, expected_version: int | None):
        opinion, project = await self._owning_project(EntityKind.OPINION, data.id, actor_id)
        self._guard_project(project, actor_id or project.owner_id)
        self._check_version(EntityKind.OPINION, opinion, expected_version)
        await self._run_delete(EntityKind.OPINION, opinion, opinion_path(project.owner_id, project.replica_id, opinion.id))
        await self._refresh_topics(opinion.topic_id)
        await self._notify(project_scope(project.id), EntityKind.OPINION, SyncOperation.DELETE, {"id": opinion.id})
        return None

    async def _refresh_topics(self, *topic_ids: str | None) -> None:
        if self._protection is None:
            return
        for topic_id in {item for item in topic_ids if item}:
            try:
                await self._protection.refresh_protection_flags(topic_id)
            except PrimaryStoreError as exc:
                logger.warning("topic_protection_refresh_failed", topic_id=topic_id, error=exc.message)

    # ── Tasks ──

    async def _create_task(self, data: TaskCreate, *, actor_id: str | None, bulk: bool = False):
        project = await self._project_for_child(data.project_id, actor_id)
        self._guard_project(project, actor_id or project.owner_id)
        values = data.model_dump(exclude={"project_id"})
        values["project_id"] = project.id
        task = await self._run_create(
            EntityKind.TASK,
            values,
            lambda row: task_path(project.owner_id, project.replica_id, row.id),
            task_document,
        )
        await self._notify(project_scope(project.id), EntityKind.TASK, SyncOperation.CREATE, {"id": task.id})
        return task

    async def _update_task(self, data: TaskUpdate, *, actor_id: str | None, expected_version: int | None):
        task, project = await self._owning_project(EntityKind.TASK, data.id, actor_id)
        self._guard_project(project, actor_id or project.owner_id)
        changes = data.model_dump(exclude_unset=True, exclude={"id"})
        if not changes:
            raise ValidationError("No fields to update")
        updated = await self._run_update(
            EntityKind.TASK,
            task.id,
            changes,
            expected_version,
            lambda row: task_path(project.owner_id, project.replica_id, row.id),
            task_document,
        )
        await self._notify(project_scope(project.id), EntityKind.TASK, SyncOperation.UPDATE, {"id": task.id, "version": updated.version})
        return updated

    async def _delete_task(self, data: EntityRef, *, actor_id: str | None, expected_version: int | None):
        task, project = await self._owning_project(EntityKind.TASK, data.id, actor_id)
        self._guard_project(project, actor_id or project.owner_id)
        self._check_version(EntityKind.TASK, task, expected_version)
        await self._run_delete(EntityKind.TASK, task, task_path(project.owner_id, project.replica_id, task.id))
        await self._notify(project_scope(project.id), EntityKind.TASK, SyncOperation.DELETE, {"id": task.id})
        return None

    @staticmethod
    def _check_version(kind: EntityKind, row, expected_version: int | None) -> None:
        if expected_version is not None and row.version != expected_version:
            raise ConflictError(
                f"{kind.value} was modified by another operation",
                entity_kind=kind.value,
                entity_id=row.id,
                expected_version=expected_version,
                actual_version=row.version,
            )
