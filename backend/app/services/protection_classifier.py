"""
Topic protection.

A topic is protected once its owner has acted on it: its status has left
``unhandled`` or at least one child opinion is ``in-progress``/``resolved``.
Protected topics keep their name and summary across re-analysis.

Lookup failures resolve by policy and never reach the caller:
``has_active_actions`` fails open (False), ``is_protected`` fails closed (True).
"""

from __future__ import annotations

from typing import Any

from app.core.errors import ClassifierError
from app.core.logging import get_logger
from app.models import TopicStatus

logger = get_logger("protection_classifier")


class ProtectionClassifier:
    def __init__(self, primary):
        self._primary = primary

    async def _active_action_count(self, topic_id: str) -> int:
        try:
            return await self._primary.count_active_action_opinions(topic_id)
        except Exception as exc:  # noqa: BLE001
            raise ClassifierError("Active action lookup failed", {"topic_id": topic_id}) from exc

    async def _load_topic(self, topic_id: str):
        try:
            return await self._primary.get_topic(topic_id)
        except Exception as exc:  # noqa: BLE001
            raise ClassifierError("Topic lookup failed", {"topic_id": topic_id}) from exc

    async def has_active_actions(self, topic_id: str) -> bool:
        try:
            return await self._active_action_count(topic_id) > 0
        except ClassifierError as exc:
            logger.warning("protection_fail_open", topic_id=topic_id, error=str(exc.__cause__ or exc))
            return False

    async def is_protected(self, topic_id: str) -> bool:
        try:
            topic = await self._load_topic(topic_id)
            if topic is None:
                return False
            if (topic.status or TopicStatus.UNHANDLED.value) != TopicStatus.UNHANDLED.value:
                return True
            return await self._active_action_count(topic_id) > 0
        except ClassifierError as exc:
            logger.warning("protection_fail_closed", topic_id=topic_id, error=str(exc.__cause__ or exc))
            return True

    async def can_rewrite(self, topic_id: str) -> bool:
        return not await self.is_protected(topic_id)

    async def reason(self, topic) -> str | None:
        if isinstance(topic, str):
            topic = await self._primary.get_topic(topic)
            if topic is None:
                return None
        clauses: list[str] = []
        status = topic.status or TopicStatus.UNHANDLED.value
        if status != TopicStatus.UNHANDLED.value:
            clauses.append(f"status: {status}")
        if await self.has_active_actions(topic.id):
            clauses.append("active actions")
        return ", ".join(clauses) or None

    async def topics_with_protection(self, project_id: str) -> list[dict[str, Any]]:
        topics = await self._primary.list_topics(project_id)
        enriched = []
        for topic in topics:
            active = await self.has_active_actions(topic.id)
            enriched.append(
                {
                    "id": topic.id,
                    "name": topic.name,
                    "summary": topic.summary,
                    "status": topic.status,
                    "count": topic.count,
                    "has_active_actions": active,
                    "is_protected": await self.is_protected(topic.id),
                    "protection_reason": await self.reason(topic),
                }
            )
        return enriched

    async def refresh_protection_flags(self, topic_id: str):
        """Re-derive the cached ``has_active_actions``/``last_action_date`` columns."""
        active = await self.has_active_actions(topic_id)
        changes: dict[str, Any] = {"has_active_actions": active}
        if active:
            changes["last_action_date"] = await self._primary.latest_action_date(topic_id)
        return await self._primary.update_topic(topic_id, changes)
