from __future__ import annotations

import fnmatch
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database import Base
from app.core.errors import ReplicaStoreError
from app.repositories.primary_store import SqlPrimaryStore
from app.services.archive_guard import ArchiveGuard
from app.services.bulk_ingestion_service import BulkIngestionPipeline
from app.services.derived_count_service import DerivedCountService
from app.services.protection_classifier import ProtectionClassifier
from app.services.quota_gate import QuotaGate
from app.services.sentiment_service import SentimentService
from app.services.sync_coordinator import SyncCoordinator
import app.models  # noqa: F401


class InMemoryReplicaStore:
    """Path-addressed replica with failure injection per operation name."""

    def __init__(self):
        self.documents: dict[str, dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, op: str, path: str) -> None:
        self.calls.append((op, path))
        if op in self.fail_on:
            raise ReplicaStoreError(f"Replica {op} failed", {"path": path, "error": "injected"})

    async def set(self, path: str, document: dict[str, Any]) -> None:
        self._maybe_fail("set", path)
        self.documents[path] = dict(document)

    async def get(self, path: str) -> dict[str, Any] | None:
        self._maybe_fail("get", path)
        return self.documents.get(path)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        self._maybe_fail("update", path)
        self.documents.setdefault(path, {}).update(fields)

    async def remove(self, path: str) -> None:
        self._maybe_fail("remove", path)
        for key in [key for key in self.documents if key == path or key.startswith(f"{path}/")]:
            del self.documents[key]

    async def snapshot(self, path: str) -> dict[str, dict[str, Any]]:
        self._maybe_fail("snapshot", path)
        return {
            key: dict(value)
            for key, value in self.documents.items()
            if key == path or key.startswith(f"{path}/")
        }

    async def restore(self, documents: dict[str, dict[str, Any]]) -> None:
        self._maybe_fail("restore", next(iter(documents), ""))
        for key, value in documents.items():
            self.documents[key] = dict(value)

    async def close(self) -> None:
        return None


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    async def publish(self, scope: str, event_kind: str, payload: dict | None = None) -> bool:
        self.events.append((scope, event_kind, payload or {}))
        return True

    async def close(self) -> None:
        return None


class FakeRedis:
    """Subset of redis.asyncio.Redis used by the replica store and notifier."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.transient: list[Exception] = []

    def _check(self) -> None:
        if self.transient:
            raise self.transient.pop(0)
        if self.fail_with is not None:
            raise self.fail_with

    async def set(self, key: str, value: str):
        self._check()
        self.data[key] = value
        return True

    async def get(self, key: str):
        self._check()
        return self.data.get(key)

    async def delete(self, *keys: str):
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str | None = None):
        self._check()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def publish(self, channel: str, message: str):
        self._check()
        self.published.append((channel, message))
        return 1

    async def close(self):
        return None


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    # File-backed: every session checks out its own connection.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def primary(session_factory) -> SqlPrimaryStore:
    return SqlPrimaryStore(session_factory)


@pytest.fixture
def replica() -> InMemoryReplicaStore:
    return InMemoryReplicaStore()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def quota_gate(primary) -> QuotaGate:
    return QuotaGate(primary)


@pytest.fixture
def protection(primary) -> ProtectionClassifier:
    return ProtectionClassifier(primary)


@pytest.fixture
def coordinator(primary, replica, notifier, quota_gate, protection) -> SyncCoordinator:
    return SyncCoordinator(
        primary,
        replica,
        archive_guard=ArchiveGuard(primary),
        quota_gate=quota_gate,
        notifier=notifier,
        sentiment=SentimentService(),
        protection=protection,
    )


@pytest.fixture
def pipeline(primary, replica, coordinator, notifier, quota_gate) -> BulkIngestionPipeline:
    return BulkIngestionPipeline(
        primary,
        replica,
        coordinator,
        quota_gate=quota_gate,
        notifier=notifier,
    )


@pytest.fixture
def counts(primary) -> DerivedCountService:
    return DerivedCountService(primary)


@pytest_asyncio.fixture
async def pro_user(primary):
    return await primary.create_user(
        {"id": "user-pro", "email": "pro@example.com", "plan": "pro", "created_at": datetime(2025, 8, 1)}
    )


@pytest_asyncio.fixture
async def project(coordinator, pro_user):
    return await coordinator.write("project", "create", {"name": "Community survey"}, actor_id=pro_user.id)
