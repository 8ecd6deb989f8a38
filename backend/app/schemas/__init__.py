"""
Opinion Sync Engine - Pydantic Schemas
======================================
Entity payloads live in ``app.schemas.entities``.
"""

from pydantic import BaseModel

from app.schemas.entities import (
    EntityRef,
    IngestResult,
    LimitCheckResult,
    OpinionCreate,
    OpinionUpdate,
    ProjectCreate,
    ProjectUpdate,
    TaskCreate,
    TaskUpdate,
)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "1.0.0"
    database: str = "connected"
    redis: str = "connected"
    uptime_seconds: float = 0


__all__ = [
    "EntityRef",
    "HealthResponse",
    "IngestResult",
    "LimitCheckResult",
    "OpinionCreate",
    "OpinionUpdate",
    "ProjectCreate",
    "ProjectUpdate",
    "TaskCreate",
    "TaskUpdate",
]
