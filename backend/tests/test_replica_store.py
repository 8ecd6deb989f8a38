from __future__ import annotations

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.errors import ReplicaStoreError
from app.repositories.replica_store import RedisReplicaStore

PROJECT = "users/u1/projects/-abc"


def _store(client, attempts: int = 1) -> RedisReplicaStore:
    return RedisReplicaStore(client, key_prefix="replica:", timeout_seconds=1, attempts=attempts)


@pytest.mark.asyncio
async def test_set_and_get_round_trip_under_prefix(fake_redis) -> None:
    store = _store(fake_redis)

    await store.set(PROJECT, {"name": "Survey", "version": 1})

    assert json.loads(fake_redis.data[f"replica:{PROJECT}"]) == {"name": "Survey", "version": 1}
    assert await store.get(PROJECT) == {"name": "Survey", "version": 1}
    assert await store.get("users/u1/projects/missing") is None


@pytest.mark.asyncio
async def test_update_merges_fields(fake_redis) -> None:
    store = _store(fake_redis)
    await store.set(PROJECT, {"name": "Survey", "version": 1})

    await store.update(PROJECT, {"updatedAt": "2026-10-19T12:00:00"})

    assert await store.get(PROJECT) == {"name": "Survey", "version": 1, "updatedAt": "2026-10-19T12:00:00"}


@pytest.mark.asyncio
async def test_remove_and_snapshot_cover_the_subtree(fake_redis) -> None:
    store = _store(fake_redis)
    await store.set(PROJECT, {"name": "Survey"})
    await store.set(f"{PROJECT}/opinions/o1", {"content": "a"})
    await store.set(f"{PROJECT}/tasks/t1", {"title": "b"})
    await store.set("users/u1/projects/-other", {"name": "Other"})

    snapshot = await store.snapshot(PROJECT)
    await store.remove(PROJECT)

    assert set(snapshot) == {PROJECT, f"{PROJECT}/opinions/o1", f"{PROJECT}/tasks/t1"}
    assert list(fake_redis.data) == ["replica:users/u1/projects/-other"]

    await store.restore(snapshot)
    assert await store.get(f"{PROJECT}/opinions/o1") == {"content": "a"}


@pytest.mark.asyncio
async def test_redis_errors_become_replica_store_errors(fake_redis) -> None:
    fake_redis.fail_with = RedisConnectionError("connection reset")
    store = _store(fake_redis)

    with pytest.raises(ReplicaStoreError) as exc_info:
        await store.set(PROJECT, {"name": "Survey"})

    assert exc_info.value.details["path"] == PROJECT
    assert "connection reset" in exc_info.value.details["error"]


@pytest.mark.asyncio
async def test_transient_failures_are_retried(fake_redis) -> None:
    fake_redis.transient.append(RedisConnectionError("transient"))
    store = _store(fake_redis, attempts=2)

    await store.set(PROJECT, {"name": "Survey"})

    assert f"replica:{PROJECT}" in fake_redis.data
