"""In-memory permission group repository (PostgreSQL-backed version in production)."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog

from mosqos.access.catalog import system_group_templates, validate_keys
from mosqos.access.identity import resolve_memberships
from mosqos.exceptions import MembershipRequiredError, PermissionGroupNotFound, SystemGroupError
from mosqos.models.domain import PermissionGroup

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from mosqos.storage.repositories.access_store import InMemoryAccessStore

logger = structlog.get_logger(__name__)


def sort_groups(groups: Iterable[PermissionGroup]) -> list[PermissionGroup]:
    """System groups first, then by name."""
    return sorted(groups, key=lambda g: (not g.is_system, g.name.lower()))


class PermissionGroupRepository:
    """Manages permission groups held by an ``InMemoryAccessStore``.

    Every change that alters someone's effective permissions reports the
    affected principals to ``on_change`` so cached decisions are dropped.
    """

    def __init__(
        self,
        store: InMemoryAccessStore,
        on_change: Callable[[Iterable[str]], None] | None = None,
    ) -> None:
        self._store = store
        self._on_change = on_change

    async def list_groups(self, organization_id: str) -> list[PermissionGroup]:
        return sort_groups(
            g for g in self._store.groups.values() if g.organization_id == organization_id
        )

    async def get_group(self, organization_id: str, group_id: str) -> PermissionGroup:
        group = self._store.groups.get(group_id)
        if group is None or group.organization_id != organization_id:
            raise PermissionGroupNotFound(group_id)
        return group

    async def create_group(
        self,
        organization_id: str,
        name: str,
        description: str | None = None,
        permission_keys: Iterable[str] = (),
        *,
        is_system: bool = False,
        created_by: str | None = None,
    ) -> PermissionGroup:
        keys = validate_keys(permission_keys)
        if any(
            g.organization_id == organization_id and g.name == name
            for g in self._store.groups.values()
        ):
            msg = f"Permission group already exists: {name}"
            raise ValueError(msg)
        group = PermissionGroup(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            name=name,
            description=description,
            is_system=is_system,
            permission_keys=keys,
        )
        self._store.groups[group.id] = group
        logger.info(
            "permission_group_created",
            group_id=group.id,
            organization_id=organization_id,
            created_by=created_by,
        )
        return group

    async def update_group(
        self,
        organization_id: str,
        group_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        permission_keys: Iterable[str] | None = None,
        updated_by: str | None = None,
    ) -> PermissionGroup:
        group = await self.get_group(organization_id, group_id)
        if group.is_system:
            raise SystemGroupError("Cannot modify system permission groups")
        updates: dict[str, object] = {}
        if name is not None:
            if any(
                g.organization_id == organization_id and g.name == name and g.id != group_id
                for g in self._store.groups.values()
            ):
                msg = f"Permission group already exists: {name}"
                raise ValueError(msg)
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if permission_keys is not None:
            updates["permission_keys"] = validate_keys(permission_keys)
        updated = group.model_copy(update=updates)
        self._store.groups[group_id] = updated
        logger.info("permission_group_updated", group_id=group_id, updated_by=updated_by)
        if permission_keys is not None:
            self._notify(await self.list_group_members(organization_id, group_id))
        return updated

    async def delete_group(self, organization_id: str, group_id: str) -> None:
        group = await self.get_group(organization_id, group_id)
        if group.is_system:
            raise SystemGroupError("Cannot delete system permission groups")
        affected = await self.list_group_members(organization_id, group_id)
        del self._store.groups[group_id]
        for group_ids in self._store.assignments.values():
            if group_id in group_ids:
                group_ids.remove(group_id)
        logger.info("permission_group_deleted", group_id=group_id, organization_id=organization_id)
        self._notify(affected)

    async def list_group_members(self, organization_id: str, group_id: str) -> list[str]:
        await self.get_group(organization_id, group_id)
        return sorted(
            principal_id
            for (org_id, principal_id), group_ids in self._store.assignments.items()
            if org_id == organization_id and group_id in group_ids
        )

    async def assign(
        self,
        organization_id: str,
        group_id: str,
        principal_id: str,
        assigned_by: str | None = None,
    ) -> None:
        await self.get_group(organization_id, group_id)
        memberships = await resolve_memberships(self._store, principal_id)
        if not any(m.organization_id == organization_id for m in memberships):
            raise MembershipRequiredError(principal_id)
        group_ids = self._store.assignments.setdefault((organization_id, principal_id), [])
        if group_id not in group_ids:
            group_ids.append(group_id)
        logger.info(
            "permission_group_assigned",
            group_id=group_id,
            principal_id=principal_id,
            assigned_by=assigned_by,
        )
        self._notify([principal_id])

    async def unassign(self, organization_id: str, group_id: str, principal_id: str) -> bool:
        await self.get_group(organization_id, group_id)
        group_ids = self._store.assignments.get((organization_id, principal_id), [])
        if group_id not in group_ids:
            return False
        group_ids.remove(group_id)
        logger.info("permission_group_unassigned", group_id=group_id, principal_id=principal_id)
        self._notify([principal_id])
        return True

    async def seed_default_groups(self, organization_id: str) -> list[PermissionGroup]:
        """Copy the system group templates into the organization (idempotent)."""
        existing = {g.name for g in await self.list_groups(organization_id)}
        created = []
        for template in system_group_templates():
            if template.name in existing:
                continue
            created.append(
                await self.create_group(
                    organization_id,
                    template.name,
                    template.description,
                    template.permission_keys,
                    is_system=True,
                )
            )
        return created

    def _notify(self, principal_ids: Iterable[str]) -> None:
        if self._on_change is not None:
            self._on_change(list(principal_ids))
