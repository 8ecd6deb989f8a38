from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from app.services.protection_classifier import ProtectionClassifier


class _BrokenPrimary:
    async def get_topic(self, topic_id):
        raise RuntimeError("database unavailable")

    async def count_active_action_opinions(self, topic_id):
        raise RuntimeError("database unavailable")


async def _topic_with_opinion(primary, coordinator, project, *, status="unhandled"):
    topic = await primary.create_topic({"project_id": project.id, "name": "Lighting", "summary": "Street lights", "status": status})
    opinion = await coordinator.write(
        "opinion",
        "create",
        {"project_id": project.id, "content": "More lights", "topic_id": topic.id, "sentiment": "neutral"},
    )
    return topic, opinion


@pytest.mark.asyncio
async def test_untouched_topic_is_not_protected(primary, coordinator, protection, project) -> None:
    topic, _ = await _topic_with_opinion(primary, coordinator, project)

    assert await protection.has_active_actions(topic.id) is False
    assert await protection.is_protected(topic.id) is False
    assert await protection.can_rewrite(topic.id) is True
    assert await protection.reason(topic) is None


@pytest.mark.asyncio
async def test_topic_status_protects(primary, coordinator, protection, project) -> None:
    topic, _ = await _topic_with_opinion(primary, coordinator, project, status="in-progress")

    assert await protection.is_protected(topic.id) is True
    assert await protection.reason(topic.id) == "status: in-progress"


@pytest.mark.asyncio
async def test_child_action_protects_and_refreshes_cached_flag(primary, coordinator, protection, project) -> None:
    topic, opinion = await _topic_with_opinion(primary, coordinator, project)

    await coordinator.write("opinion", "update", {"id": opinion.id, "action_status": "resolved"})

    assert await protection.has_active_actions(topic.id) is True
    assert await protection.is_protected(topic.id) is True
    assert await protection.reason(topic.id) == "active actions"
    cached = await primary.get_topic(topic.id)
    assert cached.has_active_actions is True
    assert cached.last_action_date is not None


@pytest.mark.asyncio
async def test_dismissed_child_action_does_not_protect(primary, coordinator, protection, project) -> None:
    topic, opinion = await _topic_with_opinion(primary, coordinator, project)

    await coordinator.write("opinion", "update", {"id": opinion.id, "action_status": "dismissed"})

    assert await protection.is_protected(topic.id) is False


@pytest.mark.asyncio
async def test_reason_lists_both_clauses(primary, coordinator, protection, project) -> None:
    topic, opinion = await _topic_with_opinion(primary, coordinator, project, status="resolved")
    await coordinator.write("opinion", "update", {"id": opinion.id, "action_status": "in-progress"})

    assert await protection.reason(topic.id) == "status: resolved, active actions"


@pytest.mark.asyncio
async def test_topics_with_protection_enriches_each_topic(primary, coordinator, protection, project) -> None:
    topic, opinion = await _topic_with_opinion(primary, coordinator, project)
    await coordinator.write("opinion", "update", {"id": opinion.id, "action_status": "in-progress"})

    topics = await protection.topics_with_protection(project.id)

    assert topics == [
        {
            "id": topic.id,
            "name": "Lighting",
            "summary": "Street lights",
            "status": "unhandled",
            "count": 0,
            "has_active_actions": True,
            "is_protected": True,
            "protection_reason": "active actions",
        }
    ]


@pytest.mark.asyncio
async def test_lookup_failures_resolve_by_policy() -> None:
    classifier = ProtectionClassifier(_BrokenPrimary())

    with capture_logs() as logs:
        assert await classifier.has_active_actions("topic-1") is False
        assert await classifier.is_protected("topic-1") is True
        assert await classifier.can_rewrite("topic-1") is False

    events = [entry["event"] for entry in logs]
    assert "protection_fail_open" in events
    assert "protection_fail_closed" in events


@pytest.mark.asyncio
async def test_unknown_topic_is_not_protected(protection) -> None:
    assert await protection.is_protected("missing") is False
    assert await protection.reason("missing") is None
