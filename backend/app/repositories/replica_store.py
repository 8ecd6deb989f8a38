"""
Replica store adapter.

Each replica document is a JSON string stored under ``{replica_key_prefix}{path}``.
Children share their parent's path as a prefix, so removing or snapshotting a
project walks ``{path}/*`` explicitly; Redis has no cascade of its own.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import redis.asyncio as redis
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import get_settings
from app.core.errors import ReplicaStoreError
from app.core.logging import get_logger

logger = get_logger("replica_store")
settings = get_settings()


class RedisReplicaStore:
    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        *,
        key_prefix: str | None = None,
        timeout_seconds: float | None = None,
        attempts: int | None = None,
    ):
        self._client = client
        self._prefix = settings.replica_key_prefix if key_prefix is None else key_prefix
        self._timeout = timeout_seconds or settings.replica_operation_timeout_seconds
        self._attempts = max(1, attempts or settings.replica_write_attempts)

    async def _ensure_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _key(self, path: str) -> str:
        return f"{self._prefix}{path.strip('/')}"

    def _path(self, key: str) -> str:
        return key[len(self._prefix):]

    async def _run(self, op: str, path: str, func):
        """Run one idempotent replica call under the timeout, retrying transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=0.05, max=0.5),
            retry=retry_if_exception_type(ReplicaStoreError),
            reraise=True,
        ):
            with attempt:
                try:
                    return await asyncio.wait_for(func(), timeout=self._timeout)
                except asyncio.TimeoutError as exc:
                    logger.warning("replica_timeout", op=op, path=path, timeout_seconds=self._timeout)
                    raise ReplicaStoreError(
                        f"Replica {op} timed out",
                        {"path": path, "timeout_seconds": self._timeout},
                    ) from exc
                except (redis.RedisError, OSError) as exc:
                    logger.warning("replica_error", op=op, path=path, error=str(exc))
                    raise ReplicaStoreError(
                        f"Replica {op} failed",
                        {"path": path, "error": str(exc)[:500]},
                    ) from exc

    async def _descendant_keys(self, client: redis.Redis, key: str) -> list[str]:
        return [item async for item in client.scan_iter(match=f"{key}/*")]

    async def set(self, path: str, document: dict[str, Any]) -> None:
        client = await self._ensure_client()
        payload = json.dumps(document, ensure_ascii=False, default=str)
        await self._run("set", path, lambda: client.set(self._key(path), payload))

    async def get(self, path: str) -> dict[str, Any] | None:
        client = await self._ensure_client()
        raw = await self._run("get", path, lambda: client.get(self._key(path)))
        return json.loads(raw) if raw else None

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """Shallow merge into an existing document (creates it when absent)."""
        current = await self.get(path) or {}
        current.update(fields)
        await self.set(path, current)

    async def remove(self, path: str) -> None:
        """Remove a document together with every child document under it."""
        client = await self._ensure_client()
        key = self._key(path)

        async def _remove():
            keys = [key, *await self._descendant_keys(client, key)]
            await client.delete(*keys)

        await self._run("remove", path, _remove)

    async def snapshot(self, path: str) -> dict[str, dict[str, Any]]:
        """Return ``{path: document}`` for a document and all its descendants."""
        client = await self._ensure_client()
        key = self._key(path)

        async def _snapshot():
            found: dict[str, dict[str, Any]] = {}
            for item in [key, *await self._descendant_keys(client, key)]:
                raw = await client.get(item)
                if raw:
                    found[self._path(item)] = json.loads(raw)
            return found

        return await self._run("snapshot", path, _snapshot)

    async def restore(self, documents: dict[str, dict[str, Any]]) -> None:
        for path, document in documents.items():
            await self.set(path, document)
