from __future__ import annotations

import json
from datetime import datetime

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from structlog.testing import capture_logs

from app.core.errors import (
    CompensationFailed,
    ConflictError,
    NotFoundError,
    PrimaryStoreError,
    QuotaExceeded,
    ReplicaSyncFailed,
    ValidationError,
)
from app.domain.sync.documents import opinion_path, project_path, task_path
from app.domain.sync.state_machine import EntityKind
from app.repositories.primary_store import SqlPrimaryStore, row_to_dict
from app.services.realtime_notifier import RealtimeNotifier
from app.services.sync_coordinator import SyncCoordinator


class _RestoreFailsStore(SqlPrimaryStore):
    async def restore(self, *args, **kwargs):
        raise PrimaryStoreError("restore failed")


class _ExplodingNotifier:
    async def publish(self, scope, event_kind, payload=None):
        raise RuntimeError("notifier bug")


class _DeleteFailsStore(SqlPrimaryStore):
    async def delete(self, kind, entity_id):
        raise PrimaryStoreError("delete failed")


async def _opinion(coordinator, project, content="Great idea for the park"):
    return await coordinator.write(
        "opinion",
        "create",
        {"project_id": project.id, "content": content},
        actor_id=project.owner_id,
    )


@pytest.mark.asyncio
async def test_create_project_writes_both_stores(coordinator, replica, notifier, project) -> None:
    path = project_path(project.owner_id, project.replica_id)

    assert project.replica_id.startswith("-")
    assert project.version == 1
    assert replica.documents[path]["name"] == "Community survey"
    assert replica.documents[path]["sqlId"] == project.id
    assert replica.documents[path]["syncStatus"] == "synced"
    assert replica.documents[path]["version"] == 1
    assert ("user:user-pro", "project.created") in [(scope, event) for scope, event, _ in notifier.events]


@pytest.mark.asyncio
async def test_create_opinion_uses_keyword_sentiment_without_provider(coordinator, replica, project) -> None:
    opinion = await _opinion(coordinator, project, "This is a great plan")

    assert opinion.sentiment == "positive"
    assert opinion.character_count == len("This is a great plan")
    doc = replica.documents[opinion_path(project.owner_id, project.replica_id, opinion.id)]
    assert doc["content"] == "This is a great plan"
    assert doc["projectId"] == project.id


@pytest.mark.asyncio
async def test_opinion_can_target_project_by_replica_id(coordinator, project) -> None:
    opinion = await coordinator.write(
        "opinion",
        "create",
        {"project_id": project.replica_id, "content": "via replica id", "sentiment": "neutral"},
    )
    assert opinion.project_id == project.id


@pytest.mark.asyncio
async def test_replica_failure_on_create_deletes_primary_row(coordinator, primary, replica, project) -> None:
    replica.fail_on.add("set")

    with pytest.raises(ReplicaSyncFailed) as exc_info:
        await _opinion(coordinator, project)

    assert exc_info.value.to_dict()["details"]["retryable"] is True
    assert await primary.count_opinions(project.id) == 0
    assert not [path for path in replica.documents if "/opinions/" in path]


@pytest.mark.asyncio
async def test_replica_failure_on_update_restores_primary_snapshot(coordinator, primary, replica, project) -> None:
    opinion = await _opinion(coordinator, project)
    before = row_to_dict(await primary.get(EntityKind.OPINION, opinion.id))
    path = opinion_path(project.owner_id, project.replica_id, opinion.id)
    replica_before = dict(replica.documents[path])
    replica.fail_on.add("set")

    with capture_logs() as logs:
        with pytest.raises(ReplicaSyncFailed):
            await coordinator.write(
                "opinion",
                "update",
                {"id": opinion.id, "is_bookmarked": True},
                actor_id=project.owner_id,
            )

    assert row_to_dict(await primary.get(EntityKind.OPINION, opinion.id)) == before
    assert replica.documents[path] == replica_before
    events = [entry["event"] for entry in logs]
    assert "sync_compensation_started" in events
    assert "sync_compensated" in events


@pytest.mark.asyncio
async def test_failed_compensation_raises_and_logs_critical(session_factory, replica, project) -> None:
    primary = _RestoreFailsStore(session_factory)
    coordinator = SyncCoordinator(primary, replica)
    opinion = await _opinion(coordinator, project)
    replica.fail_on.add("set")

    with capture_logs() as logs:
        with pytest.raises(CompensationFailed):
            await coordinator.write("opinion", "update", {"id": opinion.id, "is_bookmarked": True})

    critical = [entry for entry in logs if entry["event"] == "sync_compensation_failed"]
    assert critical and critical[0]["log_level"] == "critical"
    assert critical[0]["before"]["is_bookmarked"] is False
    assert critical[0]["after"]["is_bookmarked"] is True


@pytest.mark.asyncio
async def test_delete_replica_failure_leaves_both_stores_untouched(coordinator, primary, replica, project) -> None:
    opinion = await _opinion(coordinator, project)
    path = opinion_path(project.owner_id, project.replica_id, opinion.id)
    replica.fail_on.add("remove")

    with pytest.raises(ReplicaSyncFailed):
        await coordinator.write("opinion", "delete", {"id": opinion.id}, actor_id=project.owner_id)

    assert await primary.get(EntityKind.OPINION, opinion.id) is not None
    assert path in replica.documents


@pytest.mark.asyncio
async def test_delete_primary_failure_recreates_replica_documents(session_factory, replica, project) -> None:
    seed = SyncCoordinator(SqlPrimaryStore(session_factory), replica)
    opinion = await _opinion(seed, project)
    task = await seed.write("task", "create", {"project_id": project.id, "title": "Call back"})
    snapshot = dict(replica.documents)

    coordinator = SyncCoordinator(_DeleteFailsStore(session_factory), replica)
    with pytest.raises(PrimaryStoreError):
        await coordinator.write("project", "delete", {"id": project.id})

    assert replica.documents == snapshot
    assert opinion_path(project.owner_id, project.replica_id, opinion.id) in replica.documents
    assert task_path(project.owner_id, project.replica_id, task.id) in replica.documents


@pytest.mark.asyncio
async def test_delete_project_walks_children_in_both_stores(coordinator, primary, replica, project) -> None:
    await _opinion(coordinator, project)
    await _opinion(coordinator, project, "second")
    await coordinator.write("task", "create", {"project_id": project.id, "title": "Follow up"})

    result = await coordinator.write("project", "delete", {"id": project.id}, actor_id=project.owner_id)

    assert result is None
    assert await primary.get(EntityKind.PROJECT, project.id) is None
    assert await primary.list_opinions(project.id) == []
    assert await primary.list_tasks(project.id) == []
    assert replica.documents == {}


@pytest.mark.asyncio
async def test_update_increments_version_and_checks_expected_version(coordinator, primary, replica, project) -> None:
    updated = await coordinator.write(
        "project", "update", {"id": project.id, "name": "Renamed"}, expected_version=1
    )
    assert updated.version == 2
    assert replica.documents[project_path(project.owner_id, project.replica_id)]["version"] == 2

    with pytest.raises(ConflictError) as exc_info:
        await coordinator.write("project", "update", {"id": project.id, "name": "Stale"}, expected_version=1)

    assert exc_info.value.status_code == 409
    assert (await primary.get(EntityKind.PROJECT, project.id)).name == "Renamed"


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected_before_any_write(coordinator, primary, replica, project) -> None:
    calls_before = len(replica.calls)

    with pytest.raises(ValidationError) as exc_info:
        await coordinator.write("opinion", "create", {"project_id": project.id, "content": "   "})

    assert exc_info.value.status_code == 400
    assert "content is required and must be a string" in exc_info.value.message
    assert len(replica.calls) == calls_before
    assert await primary.count_opinions(project.id) == 0

    with pytest.raises(ValidationError):
        await coordinator.write("comment", "create", {})
    with pytest.raises(ValidationError):
        await coordinator.write("project", "update", {"id": project.id, "unknown": 1})


@pytest.mark.asyncio
async def test_missing_target_raises_not_found(coordinator, project) -> None:
    with pytest.raises(NotFoundError):
        await coordinator.write("task", "update", {"id": "missing", "title": "x"})
    with pytest.raises(NotFoundError):
        await coordinator.write("opinion", "create", {"project_id": "missing", "content": "hi"})
    with pytest.raises(NotFoundError):
        await coordinator.write("project", "delete", {"id": project.id}, actor_id="someone-else")


@pytest.mark.asyncio
async def test_completed_operation_id_replays_without_writing_again(coordinator, primary, pro_user) -> None:
    first = await coordinator.write("project", "create", {"name": "Once"}, actor_id=pro_user.id, operation_id="op-create-once")
    second = await coordinator.write("project", "create", {"name": "Once"}, actor_id=pro_user.id, operation_id="op-create-once")

    assert second.id == first.id
    assert await primary.count_projects(pro_user.id) == 1


@pytest.mark.asyncio
async def test_running_operation_id_conflicts(coordinator, primary, project) -> None:
    await primary.acquire_operation(operation_id="op-in-flight", entity_kind="opinion", operation="create")

    with pytest.raises(ConflictError):
        await coordinator.write(
            "opinion", "create", {"project_id": project.id, "content": "dup"}, operation_id="op-in-flight"
        )


@pytest.mark.asyncio
async def test_compensated_operation_id_can_be_retried(coordinator, primary, replica, project) -> None:
    replica.fail_on.add("set")
    with pytest.raises(ReplicaSyncFailed):
        await coordinator.write("opinion", "create", {"project_id": project.id, "content": "retry me"}, operation_id="op-retry")

    replica.fail_on.clear()
    opinion = await coordinator.write(
        "opinion", "create", {"project_id": project.id, "content": "retry me"}, operation_id="op-retry"
    )

    assert opinion.content == "retry me"
    assert await primary.count_opinions(project.id) == 1


@pytest.mark.asyncio
async def test_operation_after_failed_compensation_is_refused(session_factory, replica, project) -> None:
    coordinator = SyncCoordinator(_RestoreFailsStore(session_factory), replica)
    opinion = await _opinion(coordinator, project)
    replica.fail_on.add("set")
    payload = {"id": opinion.id, "is_bookmarked": True}

    with pytest.raises(CompensationFailed):
        await coordinator.write("opinion", "update", payload, operation_id="op-broken")
    replica.fail_on.clear()

    with pytest.raises(CompensationFailed):
        await coordinator.write("opinion", "update", payload, operation_id="op-broken")


@pytest.mark.asyncio
async def test_project_creation_respects_free_plan_limit(coordinator, primary) -> None:
    await primary.create_user({"id": "user-free", "plan": "free", "created_at": datetime(2025, 9, 1)})
    await coordinator.write("project", "create", {"name": "First"}, actor_id="user-free")

    with pytest.raises(QuotaExceeded) as exc_info:
        await coordinator.write("project", "create", {"name": "Second"}, actor_id="user-free")

    assert exc_info.value.status_code == 429
    assert exc_info.value.details["action"] == "upgrade_plan"
    assert await primary.count_projects("user-free") == 1


@pytest.mark.asyncio
async def test_raising_notifier_never_unwinds_committed_writes(primary, replica, project) -> None:
    coordinator = SyncCoordinator(primary, replica, notifier=_ExplodingNotifier())

    with capture_logs() as logs:
        opinion = await _opinion(coordinator, project, "Still saved")
        updated = await coordinator.write("opinion", "update", {"id": opinion.id, "is_bookmarked": True}, actor_id=project.owner_id)

    assert updated.version == 2
    assert (await primary.get(EntityKind.OPINION, opinion.id)).is_bookmarked is True
    doc = replica.documents[opinion_path(project.owner_id, project.replica_id, opinion.id)]
    assert doc["content"] == "Still saved"
    assert [entry["event"] for entry in logs].count("sync_notify_failed") == 2


@pytest.mark.asyncio
async def test_provider_style_actor_ids_publish_on_escaped_scope(primary, replica, fake_redis) -> None:
    coordinator = SyncCoordinator(primary, replica, notifier=RealtimeNotifier(fake_redis, channel_prefix="rt:"))

    created = await coordinator.write("project", "create", {"name": "Federated"}, actor_id="google:123", operation_id="op-federated")

    assert created.owner_id == "google:123"
    assert await primary.count_projects("google:123") == 1
    assert replica.documents[project_path("google:123", created.replica_id)]["name"] == "Federated"
    channel, raw = fake_redis.published[0]
    assert channel == "rt:user:google%3A123"
    assert json.loads(raw)["event"] == "project.created"

    replay = await coordinator.write("project", "create", {"name": "Federated"}, actor_id="google:123", operation_id="op-federated")
    assert replay.id == created.id


@pytest.mark.asyncio
async def test_redis_outage_in_notifier_keeps_the_write(primary, replica, fake_redis, project) -> None:
    fake_redis.fail_with = RedisConnectionError("redis down")
    coordinator = SyncCoordinator(primary, replica, notifier=RealtimeNotifier(fake_redis))

    opinion = await _opinion(coordinator, project, "Written during an outage")

    assert await primary.get(EntityKind.OPINION, opinion.id) is not None
    assert opinion_path(project.owner_id, project.replica_id, opinion.id) in replica.documents
    assert fake_redis.published == []
