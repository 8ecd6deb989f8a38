"""
Thin HTTP surface over the engine. Authentication lives in front of this
service; the caller identity arrives in the ``x-actor-id`` header.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.api.envelope import success_envelope
from app.core.errors import NotFoundError
from app.repositories.primary_store import row_to_dict
from app.services.registry import ServiceRegistry, get_registry

router = APIRouter(tags=["Sync"])


class WriteRequest(BaseModel):
    operation: str = Field(..., pattern="^(create|update|delete)$")
    payload: dict[str, Any]
    operation_id: str | None = Field(default=None, min_length=8, max_length=190)
    expected_version: int | None = Field(default=None, ge=1)


class BulkOpinionsRequest(BaseModel):
    opinions: Any


def _entity(row) -> dict[str, Any] | None:
    if row is None:
        return None
    data = row_to_dict(row)
    if "extra_metadata" in data:
        data["metadata"] = data.pop("extra_metadata")
    return jsonable_encoder(data)


@router.post("/sync/{kind}")
async def write_entity(
    kind: str,
    body: WriteRequest,
    actor_id: str | None = Header(default=None, alias="x-actor-id"),
    services: ServiceRegistry = Depends(get_registry),
):
    entity = await services.sync_coordinator.write(
        kind,
        body.operation,
        body.payload,
        actor_id=actor_id,
        operation_id=body.operation_id,
        expected_version=body.expected_version,
    )
    status_code = 201 if body.operation == "create" else 200
    return success_envelope(_entity(entity), status_code=status_code)


@router.post("/projects/{project_id}/opinions/bulk")
async def bulk_opinions(
    project_id: str,
    body: BulkOpinionsRequest,
    actor_id: str | None = Header(default=None, alias="x-actor-id"),
    services: ServiceRegistry = Depends(get_registry),
):
    result = await services.bulk_ingestion.ingest(project_id, body.opinions, actor_id=actor_id)
    return success_envelope(
        result.model_dump(),
        status_code=201,
        meta={"message": f"Successfully created {result.success_count} out of {result.total_count} opinions"},
    )


@router.get("/projects/{project_id}/counts")
async def project_counts(
    project_id: str,
    actor_id: str | None = Header(default=None, alias="x-actor-id"),
    services: ServiceRegistry = Depends(get_registry),
):
    project = await services.primary.find_project(project_id, owner_id=actor_id)
    if project is None:
        raise NotFoundError("project", project_id)
    counts = await services.derived_counts.project_counts(project)
    return success_envelope(
        {
            "project_id": project.id,
            "opinions_count": counts.total_opinions,
            "unanalyzed_opinions_count": counts.unanalyzed_opinions,
        }
    )


@router.get("/projects/{project_id}/topics")
async def project_topics(project_id: str, services: ServiceRegistry = Depends(get_registry)):
    topics = await services.protection.topics_with_protection(project_id)
    return success_envelope(jsonable_encoder(topics))


@router.get("/projects/{project_id}/archive-status")
async def archive_status(
    project_id: str,
    owner_id: str | None = Query(default=None),
    actor_id: str | None = Header(default=None, alias="x-actor-id"),
    services: ServiceRegistry = Depends(get_registry),
):
    if actor_id is None and owner_id:
        decision = await services.archive_guard.check_public(project_id, owner_id)
    else:
        decision = await services.archive_guard.check(project_id, actor_id)
    return success_envelope(
        {
            "allowed": decision.allowed,
            "project_id": decision.project_id,
            "project_name": decision.project_name,
            "action": decision.action,
        }
    )


@router.get("/users/{user_id}/analysis-limit")
async def analysis_limit(
    user_id: str,
    project_id: str = Query(...),
    services: ServiceRegistry = Depends(get_registry),
):
    result = await services.quota_gate.check_limit(user_id, project_id)
    return success_envelope(result.model_dump(mode="json", exclude_none=True))
