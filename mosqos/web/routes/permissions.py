"""Effective permissions and permission-group management routes."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from mosqos.access.catalog import PERMISSIONS_MANAGE, PERMISSIONS_VIEW, all_permission_keys
from mosqos.access.permissions import resolve_permissions
from mosqos.models.domain import PermissionGroup
from mosqos.web.auth.guards import AccessContext, require_permission, require_portal
from mosqos.web.dependencies import AccessServices, get_services

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/orgs/{slug}", tags=["permissions"])


class EffectivePermissionsResponse(BaseModel):
    organization_id: str
    role: str
    permissions: list[str]


class CreateGroupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    permission_keys: list[str] = Field(default_factory=list)


class UpdateGroupRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    permission_keys: list[str] | None = None


class GroupResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    description: str | None = None
    is_system: bool
    permission_keys: list[str]


def _group_to_dict(group: PermissionGroup) -> dict[str, Any]:
    return {
        "id": group.id,
        "organization_id": group.organization_id,
        "name": group.name,
        "description": group.description,
        "is_system": group.is_system,
        "permission_keys": sorted(group.permission_keys),
    }


# ---------------------------------------------------------------------------
# Effective permissions
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=EffectivePermissionsResponse)
async def my_permissions(
    context: AccessContext = Depends(require_portal),
    services: AccessServices = Depends(get_services),
) -> dict[str, Any]:
    """Permission keys the caller holds in this organization."""
    keys = await resolve_permissions(
        services.store,
        context.principal,
        context.organization.id,
        identity=context.identity,
        cache=services.cache,
    )
    return {
        "organization_id": context.organization.id,
        "role": context.role.value,
        "permissions": sorted(keys),
    }


@router.get("/permissions/catalog", dependencies=[Depends(require_permission(PERMISSIONS_VIEW))])
async def permission_catalog() -> dict[str, list[str]]:
    return {"permissions": sorted(all_permission_keys())}


# ---------------------------------------------------------------------------
# Permission groups
# ---------------------------------------------------------------------------


@router.get("/permission-groups", response_model=list[GroupResponse])
async def list_groups(
    context: AccessContext = Depends(require_permission(PERMISSIONS_VIEW)),
    services: AccessServices = Depends(get_services),
) -> list[dict[str, Any]]:
    groups = await services.groups.list_groups(context.organization.id)
    return [_group_to_dict(g) for g in groups]


@router.post("/permission-groups", status_code=201, response_model=GroupResponse)
async def create_group(
    body: CreateGroupRequest,
    context: AccessContext = Depends(require_permission(PERMISSIONS_MANAGE)),
    services: AccessServices = Depends(get_services),
) -> dict[str, Any]:
    try:
        group = await services.groups.create_group(
            context.organization.id,
            body.name,
            body.description,
            body.permission_keys,
            created_by=context.principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _group_to_dict(group)


@router.post("/permission-groups/seed", response_model=list[GroupResponse])
async def seed_groups(
    context: AccessContext = Depends(require_permission(PERMISSIONS_MANAGE)),
    services: AccessServices = Depends(get_services),
) -> list[dict[str, Any]]:
    """Create any missing system groups for the organization."""
    created = await services.groups.seed_default_groups(context.organization.id)
    logger.info(
        "permission_groups_seeded",
        organization_id=context.organization.id,
        count=len(created),
    )
    return [_group_to_dict(g) for g in created]


@router.get("/permission-groups/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: str,
    context: AccessContext = Depends(require_permission(PERMISSIONS_VIEW)),
    services: AccessServices = Depends(get_services),
) -> dict[str, Any]:
    return _group_to_dict(await services.groups.get_group(context.organization.id, group_id))


@router.patch("/permission-groups/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: str,
    body: UpdateGroupRequest,
    context: AccessContext = Depends(require_permission(PERMISSIONS_MANAGE)),
    services: AccessServices = Depends(get_services),
) -> dict[str, Any]:
    try:
        group = await services.groups.update_group(
            context.organization.id,
            group_id,
            name=body.name,
            description=body.description,
            permission_keys=body.permission_keys,
            updated_by=context.principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _group_to_dict(group)


@router.delete("/permission-groups/{group_id}", status_code=204)
async def delete_group(
    group_id: str,
    context: AccessContext = Depends(require_permission(PERMISSIONS_MANAGE)),
    services: AccessServices = Depends(get_services),
) -> Response:
    await services.groups.delete_group(context.organization.id, group_id)
    return Response(status_code=204)


@router.get("/permission-groups/{group_id}/members")
async def list_group_members(
    group_id: str,
    context: AccessContext = Depends(require_permission(PERMISSIONS_VIEW)),
    services: AccessServices = Depends(get_services),
) -> dict[str, list[str]]:
    members = await services.groups.list_group_members(context.organization.id, group_id)
    return {"members": members}


@router.put("/permission-groups/{group_id}/members/{principal_id}", status_code=204)
async def assign_member(
    group_id: str,
    principal_id: str,
    context: AccessContext = Depends(require_permission(PERMISSIONS_MANAGE)),
    services: AccessServices = Depends(get_services),
) -> Response:
    await services.groups.assign(
        context.organization.id, group_id, principal_id, assigned_by=context.principal.id
    )
    return Response(status_code=204)


@router.delete("/permission-groups/{group_id}/members/{principal_id}", status_code=204)
async def unassign_member(
    group_id: str,
    principal_id: str,
    context: AccessContext = Depends(require_permission(PERMISSIONS_MANAGE)),
    services: AccessServices = Depends(get_services),
) -> Response:
    removed = await services.groups.unassign(context.organization.id, group_id, principal_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return Response(status_code=204)
