from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class ProjectCounts:
    total_opinions: int
    unanalyzed_opinions: int


class DerivedCountService:
    """Opinion counts computed from the primary store at read time. Nothing is cached."""

    def __init__(self, primary):
        self._primary = primary

    async def total_opinions(self, project_id: str) -> int:
        return await self._primary.count_opinions(project_id)

    async def unanalyzed_opinions(self, project_id: str, last_analysis_at: datetime | None) -> int:
        if last_analysis_at is None:
            return await self.total_opinions(project_id)
        return await self._primary.count_unanalyzed_opinions(project_id, last_analysis_at)

    async def project_counts(self, project) -> ProjectCounts:
        return ProjectCounts(
            total_opinions=await self.total_opinions(project.id),
            unanalyzed_opinions=await self.unanalyzed_opinions(project.id, project.last_analysis_at),
        )

    async def attach_counts(self, projects: Iterable) -> list[dict]:
        """Decorate a project collection read with its live counts."""
        decorated = []
        for project in projects:
            counts = await self.project_counts(project)
            decorated.append(
                {
                    "project": project,
                    "opinions_count": counts.total_opinions,
                    "unanalyzed_opinions_count": counts.unanalyzed_opinions,
                }
            )
        return decorated
