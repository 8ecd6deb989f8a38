"""
Primary store adapter (PostgreSQL via async SQLAlchemy).

Every method runs in its own short session and commits before returning, so
each call is one durable step of a coordinated write. ``SQLAlchemyError`` is
translated into ``PrimaryStoreError``; "not found" is reported as ``None`` or
``False``, never as an error.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, inspect as sa_inspect, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import ConflictError, PrimaryStoreError
from app.domain.sync.state_machine import EntityKind
from app.models import (
    ACTIVE_ACTION_STATUSES,
    AnalysisUsageRecord,
    Opinion,
    OpinionAnalysisState,
    Project,
    Task,
    Topic,
    User,
)
from app.repositories.sync_operation_repository import AcquireState, sync_operation_repository
from app.utils.clock import utcnow

ENTITY_MODELS = {
    EntityKind.PROJECT: Project,
    EntityKind.OPINION: Opinion,
    EntityKind.TASK: Task,
}


def row_to_dict(row) -> dict[str, Any]:
    """Column snapshot keyed by ORM attribute name."""
    return {attr.key: getattr(row, attr.key) for attr in sa_inspect(type(row)).column_attrs}


class SqlPrimaryStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from app.core.database import async_session

            session_factory = async_session
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
            except SQLAlchemyError as exc:
                await db.rollback()
                raise PrimaryStoreError(
                    "Primary store operation failed",
                    {"error_type": exc.__class__.__name__, "error": str(exc)[:500]},
                ) from exc

    @staticmethod
    async def _fetch(db: AsyncSession, model, entity_id: str):
        row = await db.execute(
            select(model).where(model.id == entity_id).execution_options(populate_existing=True)
        )
        return row.scalar_one_or_none()

    # ── Entity CRUD ──

    async def get(self, kind: EntityKind, entity_id: str):
        async with self._session() as db:
            return await self._fetch(db, ENTITY_MODELS[kind], entity_id)

    async def create(self, kind: EntityKind, values: dict[str, Any]):
        model = ENTITY_MODELS[kind]
        async with self._session() as db:
            row = model(**values)
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return row

    async def update(
        self,
        kind: EntityKind,
        entity_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> tuple[dict[str, Any], Any] | None:
        """
        Compare-and-set update. Returns ``(before_snapshot, updated_row)`` or
        ``None`` when the row does not exist. Raises ``ConflictError`` when the
        stored version differs from ``expected_version`` or moves underneath us.
        """
        model = ENTITY_MODELS[kind]
        async with self._session() as db:
            current = await self._fetch(db, model, entity_id)
            if current is None:
                return None
            before = row_to_dict(current)
            if expected_version is not None and before["version"] != expected_version:
                raise ConflictError(
                    f"{kind.value} was modified by another operation",
                    entity_kind=kind.value,
                    entity_id=entity_id,
                    expected_version=expected_version,
                    actual_version=before["version"],
                )

            values = {getattr(model, key): value for key, value in changes.items()}
            values[model.version] = before["version"] + 1
            values[model.updated_at] = utcnow()
            result = await db.execute(
                update(model)
                .where(model.id == entity_id, model.version == before["version"])
                .values(values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise ConflictError(
                    f"{kind.value} was modified by another operation",
                    entity_kind=kind.value,
                    entity_id=entity_id,
                    expected_version=before["version"],
                )
            await db.commit()
            return before, await self._fetch(db, model, entity_id)

    async def restore(
        self,
        kind: EntityKind,
        entity_id: str,
        snapshot: dict[str, Any],
        *,
        produced_version: int,
    ):
        """Write ``snapshot`` back only if the row still holds ``produced_version``."""
        model = ENTITY_MODELS[kind]
        values = {getattr(model, key): value for key, value in snapshot.items() if key != "id"}
        async with self._session() as db:
            result = await db.execute(
                update(model)
                .where(model.id == entity_id, model.version == produced_version)
                .values(values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise ConflictError(
                    f"{kind.value} changed before it could be restored",
                    entity_kind=kind.value,
                    entity_id=entity_id,
                    expected_version=produced_version,
                )
            await db.commit()
            return await self._fetch(db, model, entity_id)

    async def delete(self, kind: EntityKind, entity_id: str) -> bool:
        """Delete one entity. Projects are walked child-first."""
        model = ENTITY_MODELS[kind]
        async with self._session() as db:
            if kind is EntityKind.PROJECT:
                await self._delete_project_children(db, entity_id)
            elif kind is EntityKind.OPINION:
                await db.execute(
                    delete(OpinionAnalysisState)
                    .where(OpinionAnalysisState.opinion_id == entity_id)
                    .execution_options(synchronize_session=False)
                )
            result = await db.execute(
                delete(model).where(model.id == entity_id).execution_options(synchronize_session=False)
            )
            await db.commit()
            return (result.rowcount or 0) > 0

    @staticmethod
    async def _delete_project_children(db: AsyncSession, project_id: str) -> None:
        opinion_ids = select(Opinion.id).where(Opinion.project_id == project_id)
        for stmt in (
            delete(OpinionAnalysisState).where(OpinionAnalysisState.opinion_id.in_(opinion_ids)),
            delete(Opinion).where(Opinion.project_id == project_id),
            delete(Task).where(Task.project_id == project_id),
            delete(Topic).where(Topic.project_id == project_id),
        ):
            await db.execute(stmt.execution_options(synchronize_session=False))

    # ── Projects ──

    async def find_project(self, ref: str, *, owner_id: str | None = None) -> Project | None:
        """Resolve a project by canonical id or replica id."""
        stmt = select(Project).where(or_(Project.id == ref, Project.replica_id == ref))
        if owner_id is not None:
            stmt = stmt.where(Project.owner_id == owner_id)
        async with self._session() as db:
            row = await db.execute(stmt.limit(1))
            return row.scalar_one_or_none()

    async def list_projects(self, owner_id: str, *, include_archived: bool = True) -> list[Project]:
        stmt = select(Project).where(Project.owner_id == owner_id)
        if not include_archived:
            stmt = stmt.where(Project.is_archived.is_(False))
        async with self._session() as db:
            rows = await db.execute(stmt.order_by(Project.created_at.desc()))
            return list(rows.scalars().all())

    async def count_projects(self, owner_id: str, *, exclude_archived: bool = True) -> int:
        stmt = select(func.count()).select_from(Project).where(Project.owner_id == owner_id)
        if exclude_archived:
            stmt = stmt.where(Project.is_archived.is_(False))
        async with self._session() as db:
            return int((await db.execute(stmt)).scalar_one())

    # ── Opinions / tasks ──

    async def list_opinions(self, project_id: str) -> list[Opinion]:
        async with self._session() as db:
            rows = await db.execute(
                select(Opinion)
                .where(Opinion.project_id == project_id)
                .order_by(Opinion.submitted_at.asc(), Opinion.id.asc())
            )
            return list(rows.scalars().all())

    async def list_tasks(self, project_id: str) -> list[Task]:
        async with self._session() as db:
            rows = await db.execute(
                select(Task).where(Task.project_id == project_id).order_by(Task.created_at.asc())
            )
            return list(rows.scalars().all())

    async def count_opinions(self, project_id: str) -> int:
        async with self._session() as db:
            row = await db.execute(
                select(func.count()).select_from(Opinion).where(Opinion.project_id == project_id)
            )
            return int(row.scalar_one())

    async def count_unanalyzed_opinions(self, project_id: str, since: datetime) -> int:
        async with self._session() as db:
            row = await db.execute(
                select(func.count())
                .select_from(Opinion)
                .where(
                    Opinion.project_id == project_id,
                    or_(Opinion.topic_id.is_(None), Opinion.submitted_at > since),
                )
            )
            return int(row.scalar_one())

    async def upsert_analysis_state(self, opinion_id: str, values: dict[str, Any]) -> OpinionAnalysisState:
        async with self._session() as db:
            state = await db.get(OpinionAnalysisState, opinion_id)
            if state is None:
                state = OpinionAnalysisState(opinion_id=opinion_id)
                db.add(state)
            for key, value in values.items():
                setattr(state, key, value)
            await db.commit()
            return state

    # ── Topics ──

    async def get_topic(self, topic_id: str) -> Topic | None:
        async with self._session() as db:
            return await self._fetch(db, Topic, topic_id)

    async def list_topics(self, project_id: str) -> list[Topic]:
        async with self._session() as db:
            rows = await db.execute(
                select(Topic).where(Topic.project_id == project_id).order_by(Topic.created_at.asc())
            )
            return list(rows.scalars().all())

    async def create_topic(self, values: dict[str, Any]) -> Topic:
        async with self._session() as db:
            topic = Topic(**values)
            db.add(topic)
            await db.commit()
            await db.refresh(topic)
            return topic

    async def update_topic(self, topic_id: str, changes: dict[str, Any]) -> Topic | None:
        async with self._session() as db:
            topic = await self._fetch(db, Topic, topic_id)
            if topic is None:
                return None
            for key, value in changes.items():
                setattr(topic, key, value)
            topic.updated_at = utcnow()
            await db.commit()
            return topic

    async def count_active_action_opinions(self, topic_id: str) -> int:
        async with self._session() as db:
            row = await db.execute(
                select(func.count())
                .select_from(Opinion)
                .where(Opinion.topic_id == topic_id, Opinion.action_status.in_(ACTIVE_ACTION_STATUSES))
            )
            return int(row.scalar_one())

    async def latest_action_date(self, topic_id: str) -> datetime | None:
        async with self._session() as db:
            row = await db.execute(
                select(func.max(Opinion.action_status_updated_at)).where(
                    Opinion.topic_id == topic_id,
                    Opinion.action_status.in_(ACTIVE_ACTION_STATUSES),
                )
            )
            return row.scalar_one_or_none()

    # ── Users / usage ──

    async def get_user(self, user_id: str) -> User | None:
        async with self._session() as db:
            return await db.get(User, user_id)

    async def create_user(self, values: dict[str, Any]) -> User:
        async with self._session() as db:
            user = User(**values)
            db.add(user)
            await db.commit()
            return user

    async def count_usage(self, user_id: str, *, since: datetime | None = None) -> int:
        stmt = select(func.count()).select_from(AnalysisUsageRecord).where(AnalysisUsageRecord.user_id == user_id)
        if since is not None:
            stmt = stmt.where(AnalysisUsageRecord.executed_at >= since)
        async with self._session() as db:
            return int((await db.execute(stmt)).scalar_one())

    async def add_usage(self, values: dict[str, Any]) -> AnalysisUsageRecord:
        async with self._session() as db:
            record = AnalysisUsageRecord(**values)
            db.add(record)
            await db.commit()
            return record

    # ── Operation ledger ──

    async def acquire_operation(self, *, operation_id: str, entity_kind: str, operation: str) -> tuple[AcquireState, dict[str, Any]]:
        async with self._session() as db:
            state, row = await sync_operation_repository.acquire(
                db,
                operation_id=operation_id,
                entity_kind=entity_kind,
                operation=operation,
            )
            await db.commit()
            return state, row_to_dict(row)

    async def complete_operation(self, *, operation_id: str, entity_id: str | None, result_json: dict | None) -> None:
        async with self._session() as db:
            await sync_operation_repository.mark_completed(
                db,
                operation_id=operation_id,
                entity_id=entity_id,
                result_json=result_json,
            )
            await db.commit()

    async def fail_operation(self, *, operation_id: str, error: str, compensation_failed: bool = False) -> None:
        async with self._session() as db:
            await sync_operation_repository.mark_failed(
                db,
                operation_id=operation_id,
                error=error,
                compensation_failed=compensation_failed,
            )
            await db.commit()

    async def clear_operation(self, operation_id: str) -> bool:
        async with self._session() as db:
            cleared = await sync_operation_repository.clear(db, operation_id=operation_id)
            await db.commit()
            return cleared
