"""
Archive guard: rejects writes under an archived project.

A project that cannot be found is allowed through; the caller decides what
"not found" means for its operation.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.core.errors import ArchiveViolation
from app.core.logging import get_logger

logger = get_logger("archive_guard")


@dataclass(slots=True)
class ArchiveDecision:
    allowed: bool
    project_id: str | None = None
    project_name: str | None = None
    action: str | None = None

    def to_violation(self) -> ArchiveViolation:
        return ArchiveViolation(self.project_id or "", self.project_name, action=self.action or "unarchive_required")


ALLOW = ArchiveDecision(allowed=True)


class ArchiveGuard:
    def __init__(self, primary):
        self._primary = primary

    def decide(self, project, *, action: str = "unarchive_required") -> ArchiveDecision:
        if project is None or not project.is_archived:
            return ArchiveDecision(allowed=True, project_id=getattr(project, "id", None))
        logger.info("archive_violation", project_id=project.id, action=action)
        return ArchiveDecision(
            allowed=False,
            project_id=project.id,
            project_name=project.name,
            action=action,
        )

    async def check(self, parent_id: str, actor_id: str | None = None) -> ArchiveDecision:
        project = await self._primary.find_project(parent_id, owner_id=actor_id)
        return self.decide(project)

    async def check_public(self, project_id: str, owner_id: str) -> ArchiveDecision:
        """Unauthenticated variant used by the public submission path."""
        project = await self._primary.find_project(project_id, owner_id=owner_id)
        return self.decide(project, action="contact_owner")

    async def enforce(self, parent_id: str, actor_id: str | None = None) -> None:
        decision = await self.check(parent_id, actor_id)
        if not decision.allowed:
            raise decision.to_violation()

    async def enforce_public(self, project_id: str, owner_id: str) -> None:
        decision = await self.check_public(project_id, owner_id)
        if not decision.allowed:
            raise decision.to_violation()
