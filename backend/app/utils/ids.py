"""Identifier helpers for primary rows and replica push keys."""

from __future__ import annotations

import secrets
import time
from uuid import uuid4

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def new_id() -> str:
    return uuid4().hex


def new_replica_id(now_ms: int | None = None) -> str:
    """Chronologically sortable 20-char push key. Always starts with '-'."""
    millis = int(time.time() * 1000) if now_ms is None else now_ms
    stamp: list[str] = []
    for _ in range(8):
        stamp.append(PUSH_CHARS[millis % 64])
        millis //= 64
    tail = "".join(secrets.choice(PUSH_CHARS) for _ in range(12))
    return "-" + "".join(reversed(stamp))[1:] + tail


def is_replica_id(value: str | None) -> bool:
    return bool(value) and value.startswith("-")
