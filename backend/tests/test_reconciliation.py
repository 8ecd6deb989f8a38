from __future__ import annotations

import pytest

from app.core.errors import NotFoundError
from app.domain.sync.documents import opinion_path, project_path
from app.services.reconciliation_service import ReconciliationService


@pytest.fixture
def reconciliation(primary, replica) -> ReconciliationService:
    return ReconciliationService(primary, replica)


@pytest.mark.asyncio
async def test_fresh_writes_are_in_sync(reconciliation, coordinator, project) -> None:
    await coordinator.write("opinion", "create", {"project_id": project.id, "content": "hello"})

    report = await reconciliation.reconcile(project.id)

    assert report.in_sync is True
    assert report.applied is False


@pytest.mark.asyncio
async def test_reconcile_repairs_missing_stale_and_orphaned_documents(reconciliation, coordinator, replica, project) -> None:
    opinion = await coordinator.write("opinion", "create", {"project_id": project.id, "content": "hello"})
    root = project_path(project.owner_id, project.replica_id)
    opinion_doc = opinion_path(project.owner_id, project.replica_id, opinion.id)
    orphan = f"{root}/opinions/ghost"
    del replica.documents[opinion_doc]
    replica.documents[root]["version"] = 0
    replica.documents[orphan] = {"id": "ghost", "version": 1}

    dry = await reconciliation.reconcile(project.replica_id, dry_run=True)
    assert dry.missing == [opinion_doc]
    assert dry.stale == [root]
    assert dry.orphaned == [orphan]
    assert dry.applied is False
    assert orphan in replica.documents

    report = await reconciliation.reconcile(project.id)

    assert report.applied is True
    assert replica.documents[opinion_doc]["content"] == "hello"
    assert replica.documents[root]["version"] == project.version
    assert orphan not in replica.documents
    assert (await reconciliation.reconcile(project.id)).in_sync is True


@pytest.mark.asyncio
async def test_unknown_project_is_not_found(reconciliation) -> None:
    with pytest.raises(NotFoundError):
        await reconciliation.diff("missing")


@pytest.mark.asyncio
async def test_clear_operation_releases_a_stuck_key(reconciliation, primary) -> None:
    await primary.acquire_operation(operation_id="op-stuck-1", entity_kind="task", operation="update")
    await primary.fail_operation(operation_id="op-stuck-1", error="boom", compensation_failed=True)

    assert await reconciliation.clear_operation("op-stuck-1") is True
    assert await reconciliation.clear_operation("op-stuck-1") is False
    state, _ = await primary.acquire_operation(operation_id="op-stuck-1", entity_kind="task", operation="update")
    assert state == "acquired"
