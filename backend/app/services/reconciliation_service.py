"""
Replica reconciliation for operators.

The primary store is authoritative. ``diff`` compares a project's replica
subtree with the primary rows by version; ``reconcile`` rewrites missing or
stale documents and removes orphans. Used after a ``CompensationFailed``
before the failed operation key is cleared.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.core.errors import NotFoundError
from app.core.logging import get_logger
from app.domain.sync.documents import (
    opinion_document,
    opinion_path,
    project_document,
    project_path,
    task_document,
    task_path,
)

logger = get_logger("reconciliation")


@dataclass(slots=True)
class ReconciliationReport:
    project_id: str
    missing: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    applied: bool = False

    @property
    def in_sync(self) -> bool:
        return not (self.missing or self.stale or self.orphaned)


class ReconciliationService:
    def __init__(self, primary, replica):
        self._primary = primary
        self._replica = replica

    async def _expected(self, project) -> dict[str, dict]:
        expected = {project_path(project.owner_id, project.replica_id): project_document(project)}
        for opinion in await self._primary.list_opinions(project.id):
            expected[opinion_path(project.owner_id, project.replica_id, opinion.id)] = opinion_document(opinion)
        for task in await self._primary.list_tasks(project.id):
            expected[task_path(project.owner_id, project.replica_id, task.id)] = task_document(task)
        return expected

    async def diff(self, project_ref: str) -> tuple[ReconciliationReport, dict[str, dict]]:
        project = await self._primary.find_project(project_ref)
        if project is None:
            raise NotFoundError("project", project_ref)
        expected = await self._expected(project)
        actual = await self._replica.snapshot(project_path(project.owner_id, project.replica_id))

        report = ReconciliationReport(project_id=project.id)
        for path, document in expected.items():
            current = actual.get(path)
            if current is None:
                report.missing.append(path)
            elif current.get("version") != document["version"]:
                report.stale.append(path)
        report.orphaned = sorted(path for path in actual if path not in expected)
        return report, expected

    async def reconcile(self, project_ref: str, *, dry_run: bool = False) -> ReconciliationReport:
        report, expected = await self.diff(project_ref)
        if dry_run or report.in_sync:
            logger.info("reconcile_checked", project_id=report.project_id, in_sync=report.in_sync, dry_run=dry_run)
            return report

        for path in [*report.missing, *report.stale]:
            await self._replica.set(path, expected[path])
        for path in report.orphaned:
            await self._replica.remove(path)
        report.applied = True
        logger.warning(
            "reconcile_applied",
            project_id=report.project_id,
            missing=len(report.missing),
            stale=len(report.stale),
            orphaned=len(report.orphaned),
        )
        return report

    async def clear_operation(self, operation_id: str) -> bool:
        cleared = await self._primary.clear_operation(operation_id)
        logger.info("sync_operation_cleared", operation_id=operation_id, cleared=cleared)
        return cleared
