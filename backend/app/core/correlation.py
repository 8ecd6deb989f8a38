"""Correlation/request ID helpers shared by logging, sync and realtime events."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4

import structlog


request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")
correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")


def new_request_id() -> str:
    return f"req-{uuid4().hex[:20]}"


def new_correlation_id() -> str:
    return f"corr-{uuid4().hex[:20]}"


def set_request_id(value: str) -> None:
    request_id_ctx.set(value or "")


def set_correlation_id(value: str) -> None:
    correlation_id_ctx.set(value or "")


def get_request_id() -> str:
    return request_id_ctx.get("")


def get_correlation_id() -> str:
    return correlation_id_ctx.get("")


def ensure_correlation_id() -> str:
    """Return the current correlation id, minting one when the context has none."""
    current = get_correlation_id()
    if current:
        return current
    current = new_correlation_id()
    set_correlation_id(current)
    return current


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of a block (ContextVar + structlog)."""
    value = correlation_id or new_correlation_id()
    token = correlation_id_ctx.set(value)
    structlog.contextvars.bind_contextvars(correlation_id=value)
    try:
        yield value
    finally:
        correlation_id_ctx.reset(token)
        structlog.contextvars.unbind_contextvars("correlation_id")
