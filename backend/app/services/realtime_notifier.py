"""
Realtime change events over Redis pub/sub.

Publishing happens after a write has committed in both stores, so a failure
here is logged and reported as ``False``; it never unwinds the write.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import redis.asyncio as redis

from app.core.config import get_settings
from app.core.correlation import ensure_correlation_id
from app.core.logging import get_logger

logger = get_logger("realtime_notifier")
settings = get_settings()

_SCOPE_RE = re.compile(r"^(project|user):[^\s:]+$")


def _scope_key(value: str) -> str:
    return quote(str(value), safe="")


def project_scope(project_id: str) -> str:
    return f"project:{_scope_key(project_id)}"


def user_scope(user_id: str) -> str:
    return f"user:{_scope_key(user_id)}"


class RealtimeNotifier:
    def __init__(self, client: Optional[redis.Redis] = None, *, channel_prefix: str | None = None):
        self._client = client
        self._prefix = settings.realtime_channel_prefix if channel_prefix is None else channel_prefix

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

    def channel_for(self, scope: str) -> str:
        if not _SCOPE_RE.match(scope or ""):
            raise ValueError(f"invalid realtime scope: {scope!r}")
        return f"{self._prefix}{scope}"

    async def publish(self, scope: str, event_kind: str, payload: dict[str, Any] | None = None) -> bool:
        message = {
            "event": event_kind,
            "scope": scope,
            "payload": payload or {},
            "correlation_id": ensure_correlation_id(),
            "published_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            channel = self.channel_for(scope)
            client = await self._ensure_client()
            receivers = await client.publish(channel, json.dumps(message, ensure_ascii=False, default=str))
        except Exception as exc:  # noqa: BLE001
            logger.warning("realtime_publish_failed", scope=scope, event_kind=event_kind, error=str(exc))
            return False
        logger.debug("realtime_published", scope=scope, event_kind=event_kind, receivers=receivers)
        return True
