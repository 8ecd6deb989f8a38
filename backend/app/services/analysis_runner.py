"""
Analysis runner: quota-gated invocation of the external analysis engine.

The engine never runs when the quota gate denies. Engine output is applied in
the primary store; protected topics keep their name and summary, and topic
assignments on opinions go through the sync coordinator so the replica stays
in step.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from app.core.config import get_settings
from app.core.errors import AnalysisFailed, NotFoundError, SyncEngineError
from app.core.logging import get_logger
from app.domain.sync.state_machine import EntityKind, SyncOperation
from app.models import TopicStatus
from app.services.archive_guard import ArchiveGuard
from app.services.realtime_notifier import project_scope
from app.utils.clock import utcnow

logger = get_logger("analysis_runner")
settings = get_settings()


class AnalysisEngine(Protocol):
    async def analyze(self, project_id: str, opinions: list, options: dict[str, Any]) -> dict[str, Any]: ...


@dataclass(slots=True)
class AnalysisOutcome:
    project_id: str
    opinions_processed: int
    execution_time_ms: int
    topics_created: list[str] = field(default_factory=list)
    topics_updated: list[str] = field(default_factory=list)
    protected_topics: list[str] = field(default_factory=list)
    insights: list[Any] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)


class AnalysisRunner:
    def __init__(
        self,
        primary,
        coordinator,
        quota_gate,
        protection,
        engine: AnalysisEngine,
        *,
        archive_guard: ArchiveGuard | None = None,
        notifier=None,
        timeout_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._primary = primary
        self._coordinator = coordinator
        self._quota = quota_gate
        self._protection = protection
        self._engine = engine
        self._guard = archive_guard or ArchiveGuard(primary)
        self._notifier = notifier
        self._timeout = timeout_seconds or settings.analysis_timeout_seconds
        self._clock = clock

    async def run(self, user_id: str, project_id: str, options: dict[str, Any] | None = None) -> AnalysisOutcome:
        project = await self._primary.find_project(project_id, owner_id=user_id)
        if project is None:
            raise NotFoundError("project", project_id)
        decision = self._guard.decide(project)
        if not decision.allowed:
            raise decision.to_violation()

        await self._quota.require_analysis_allowed(user_id, project.id)

        opinions = await self._primary.list_opinions(project.id)
        engine_options = dict(options or {})
        engine_options["protection"] = self._protection

        await self._publish(project.id, "analysis.started", {"project_id": project.id, "opinion_count": len(opinions)})
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._engine.analyze(project.id, opinions, engine_options),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("analysis_timeout", project_id=project.id, timeout_seconds=self._timeout)
            await self._publish(project.id, "analysis.failed", {"project_id": project.id, "reason": "timeout"})
            raise AnalysisFailed("Analysis timed out", {"project_id": project.id, "timeout_seconds": self._timeout}) from exc
        except Exception as exc:  # noqa: BLE001
            logger.error("analysis_engine_failed", project_id=project.id, error=str(exc))
            await self._publish(project.id, "analysis.failed", {"project_id": project.id, "reason": "engine_error"})
            raise AnalysisFailed("Analysis engine failed", {"project_id": project.id, "error": str(exc)[:500]}) from exc
        elapsed_ms = int((time.monotonic() - started) * 1000)

        # A completed engine run is billable whatever happens while applying it.
        await self._quota.record_usage(user_id, project.id, len(opinions), elapsed_ms)

        outcome = AnalysisOutcome(
            project_id=project.id,
            opinions_processed=len(opinions),
            execution_time_ms=elapsed_ms,
            insights=list((result or {}).get("insights") or []),
        )
        analyzed_at = self._clock()
        current_topics = {opinion.id: opinion.topic_id for opinion in opinions}
        for item in (result or {}).get("topics") or []:
            try:
                await self._apply_topic(project, item, current_topics, analyzed_at, outcome, user_id)
            except SyncEngineError as exc:
                self._record_failure(outcome, project.id, item.get("id") or item.get("name"), exc)

        try:
            await self._coordinator.write(
                EntityKind.PROJECT,
                SyncOperation.UPDATE,
                {"id": project.id, "last_analysis_at": analyzed_at, "last_analyzed_opinion_count": len(opinions)},
                actor_id=user_id,
            )
        except SyncEngineError as exc:
            self._record_failure(outcome, project.id, project.id, exc)

        await self._publish(
            project.id,
            "analysis.completed",
            {
                "project_id": project.id,
                "topics_created": len(outcome.topics_created),
                "topics_updated": len(outcome.topics_updated),
                "opinions_processed": outcome.opinions_processed,
                "failures": len(outcome.failures),
            },
        )
        logger.info(
            "analysis_completed",
            project_id=project.id,
            opinions_processed=outcome.opinions_processed,
            topics_created=len(outcome.topics_created),
            topics_updated=len(outcome.topics_updated),
            protected_topics=len(outcome.protected_topics),
            failures=len(outcome.failures),
            execution_time_ms=elapsed_ms,
        )
        return outcome

    @staticmethod
    def _record_failure(outcome: AnalysisOutcome, project_id: str, target: str | None, exc: SyncEngineError) -> None:
        logger.warning("analysis_apply_failed", project_id=project_id, target=target, code=exc.code, error=exc.message)
        outcome.failures.append({"target": target, "code": exc.code, "error": exc.message})

    async def _publish(self, project_id: str, event_kind: str, payload: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.publish(project_scope(project_id), event_kind, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("analysis_notify_failed", project_id=project_id, event_kind=event_kind, error=str(exc))

    async def _apply_topic(self, project, item: dict[str, Any], current_topics: dict, analyzed_at, outcome: AnalysisOutcome, user_id: str) -> None:
        opinion_ids = [oid for oid in item.get("opinion_ids") or [] if oid in current_topics]
        existing = None
        if item.get("id"):
            existing = await self._primary.get_topic(item["id"])
            if existing is not None and existing.project_id != project.id:
                existing = None

        if existing is None:
            topic = await self._primary.create_topic(
                {
                    "project_id": project.id,
                    "name": item.get("name") or "Untitled topic",
                    "summary": item.get("summary"),
                    "status": TopicStatus.UNHANDLED.value,
                    "count": len(opinion_ids),
                }
            )
            outcome.topics_created.append(topic.id)
        else:
            changes: dict[str, Any] = {"count": len(opinion_ids) or existing.count}
            if await self._protection.can_rewrite(existing.id):
                changes["name"] = item.get("name") or existing.name
                changes["summary"] = item.get("summary", existing.summary)
            else:
                outcome.protected_topics.append(existing.id)
            topic = await self._primary.update_topic(existing.id, changes)
            outcome.topics_updated.append(topic.id)

        for opinion_id in opinion_ids:
            try:
                if current_topics.get(opinion_id) != topic.id:
                    await self._coordinator.write(
                        EntityKind.OPINION,
                        SyncOperation.UPDATE,
                        {"id": opinion_id, "topic_id": topic.id},
                        actor_id=user_id,
                    )
                    current_topics[opinion_id] = topic.id
                await self._primary.upsert_analysis_state(
                    opinion_id,
                    {"last_analyzed_at": analyzed_at, "classification_confidence": item.get("confidence")},
                )
            except SyncEngineError as exc:
                self._record_failure(outcome, project.id, opinion_id, exc)
