from __future__ import annotations

from datetime import datetime
from typing import Literal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import SyncOperationKey


AcquireState = Literal["acquired", "running", "completed", "compensation_failed"]


class SyncOperationRepository:
    async def get(self, db: AsyncSession, operation_id: str) -> SyncOperationKey | None:
        row = await db.execute(
            select(SyncOperationKey).where(SyncOperationKey.operation_id == operation_id)
        )
        return row.scalar_one_or_none()

    async def acquire(
        self,
        db: AsyncSession,
        *,
        operation_id: str,
        entity_kind: str,
        operation: str,
    ) -> tuple[AcquireState, SyncOperationKey]:
        existing = await self.get(db, operation_id)
        if existing is None:
            row = SyncOperationKey(
                operation_id=operation_id,
                entity_kind=entity_kind,
                operation=operation,
                status="running",
            )
            db.add(row)
            try:
                await db.flush()
                return "acquired", row
            except IntegrityError:
                await db.rollback()
                existing = await self.get(db, operation_id)
                if existing is None:
                    raise

        if existing.status in ("completed", "running", "compensation_failed"):
            return existing.status, existing

        # failed and compensated -> safe to run again
        existing.status = "running"
        existing.error = None
        existing.updated_at = datetime.utcnow()
        await db.flush()
        return "acquired", existing

    async def mark_completed(
        self,
        db: AsyncSession,
        *,
        operation_id: str,
        entity_id: str | None,
        result_json: dict | None,
    ) -> None:
        row = await self.get(db, operation_id)
        if not row:
            return
        row.status = "completed"
        row.entity_id = entity_id
        row.result_json = result_json
        row.error = None
        row.updated_at = datetime.utcnow()
        await db.flush()

    async def mark_failed(
        self,
        db: AsyncSession,
        *,
        operation_id: str,
        error: str,
        compensation_failed: bool = False,
    ) -> None:
        row = await self.get(db, operation_id)
        if not row:
            return
        row.status = "compensation_failed" if compensation_failed else "failed"
        row.error = (error or "")[:4000]
        row.updated_at = datetime.utcnow()
        await db.flush()

    async def clear(self, db: AsyncSession, *, operation_id: str) -> bool:
        result = await db.execute(
            delete(SyncOperationKey).where(SyncOperationKey.operation_id == operation_id)
        )
        return (result.rowcount or 0) > 0


sync_operation_repository = SyncOperationRepository()
