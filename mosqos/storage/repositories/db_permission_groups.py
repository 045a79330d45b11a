"""Permission group repository — PostgreSQL-backed."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from mosqos.access.catalog import system_group_templates, validate_keys
from mosqos.access.identity import resolve_memberships
from mosqos.exceptions import (
    DataLayerError,
    MembershipRequiredError,
    PermissionGroupNotFound,
    SystemGroupError,
)
from mosqos.models.database import PermissionGroup, PermissionGroupMember, _utc_now
from mosqos.storage.repositories.db_access_store import DatabaseAccessStore, to_permission_group
from mosqos.storage.repositories.permission_groups import sort_groups

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from sqlalchemy.ext.asyncio import AsyncEngine

    from mosqos.models.domain import PermissionGroup as PermissionGroupView

logger = structlog.get_logger(__name__)


def _encode_keys(keys: frozenset[str]) -> str:
    return json.dumps(sorted(keys))


class DatabasePermissionGroupRepository:
    """PostgreSQL-backed permission group store."""

    def __init__(
        self,
        engine: AsyncEngine,
        on_change: Callable[[Iterable[str]], None] | None = None,
    ) -> None:
        self._engine = engine
        self._access = DatabaseAccessStore(engine)
        self._on_change = on_change

    async def list_groups(self, organization_id: str) -> list[PermissionGroupView]:
        stmt = select(PermissionGroup).where(
            col(PermissionGroup.organization_id) == organization_id
        )
        try:
            async with AsyncSession(self._engine) as session:
                result = await session.execute(stmt)
                groups = result.scalars().all()
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc
        return sort_groups(to_permission_group(g) for g in groups)

    async def get_group(self, organization_id: str, group_id: str) -> PermissionGroupView:
        try:
            async with AsyncSession(self._engine) as session:
                row = await self._load(session, organization_id, group_id)
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc
        return to_permission_group(row)

    async def create_group(
        self,
        organization_id: str,
        name: str,
        description: str | None = None,
        permission_keys: Iterable[str] = (),
        *,
        is_system: bool = False,
        created_by: str | None = None,
    ) -> PermissionGroupView:
        keys = validate_keys(permission_keys)
        row = PermissionGroup(
            organization_id=organization_id,
            name=name,
            description=description,
            is_system=is_system,
            permissions_json=_encode_keys(keys),
            created_by=created_by,
            updated_by=created_by,
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
        except IntegrityError as exc:
            msg = f"Permission group already exists: {name}"
            raise ValueError(msg) from exc
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc
        logger.info(
            "permission_group_created",
            group_id=row.id,
            organization_id=organization_id,
            created_by=created_by,
        )
        return to_permission_group(row)

    async def update_group(
        self,
        organization_id: str,
        group_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        permission_keys: Iterable[str] | None = None,
        updated_by: str | None = None,
    ) -> PermissionGroupView:
        keys = validate_keys(permission_keys) if permission_keys is not None else None
        try:
            async with AsyncSession(self._engine) as session:
                row = await self._load(session, organization_id, group_id)
                if row.is_system:
                    raise SystemGroupError("Cannot modify system permission groups")
                if name is not None:
                    row.name = name
                if description is not None:
                    row.description = description
                if keys is not None:
                    row.permissions_json = _encode_keys(keys)
                row.updated_by = updated_by
                row.updated_at = _utc_now()
                session.add(row)
                await session.commit()
                await session.refresh(row)
        except IntegrityError as exc:
            msg = f"Permission group already exists: {name}"
            raise ValueError(msg) from exc
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc
        logger.info("permission_group_updated", group_id=group_id, updated_by=updated_by)
        if keys is not None:
            self._notify(await self.list_group_members(organization_id, group_id))
        return to_permission_group(row)

    async def delete_group(self, organization_id: str, group_id: str) -> None:
        affected = await self.list_group_members(organization_id, group_id)
        try:
            async with AsyncSession(self._engine) as session:
                row = await self._load(session, organization_id, group_id)
                if row.is_system:
                    raise SystemGroupError("Cannot delete system permission groups")
                await session.execute(
                    delete(PermissionGroupMember).where(
                        col(PermissionGroupMember.permission_group_id) == group_id
                    )
                )
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc
        logger.info("permission_group_deleted", group_id=group_id, organization_id=organization_id)
        self._notify(affected)

    async def list_group_members(self, organization_id: str, group_id: str) -> list[str]:
        stmt = select(PermissionGroupMember.user_id).where(
            col(PermissionGroupMember.permission_group_id) == group_id,
            col(PermissionGroupMember.organization_id) == organization_id,
        )
        try:
            async with AsyncSession(self._engine) as session:
                await self._load(session, organization_id, group_id)
                result = await session.execute(stmt)
                return sorted(result.scalars().all())
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc

    async def assign(
        self,
        organization_id: str,
        group_id: str,
        principal_id: str,
        assigned_by: str | None = None,
    ) -> None:
        memberships = await resolve_memberships(self._access, principal_id)
        if not any(m.organization_id == organization_id for m in memberships):
            raise MembershipRequiredError(principal_id)
        try:
            async with AsyncSession(self._engine) as session:
                await self._load(session, organization_id, group_id)
                stmt = select(PermissionGroupMember).where(
                    col(PermissionGroupMember.permission_group_id) == group_id,
                    col(PermissionGroupMember.user_id) == principal_id,
                )
                result = await session.execute(stmt)
                if result.scalars().first() is None:
                    session.add(
                        PermissionGroupMember(
                            permission_group_id=group_id,
                            organization_id=organization_id,
                            user_id=principal_id,
                            assigned_by=assigned_by,
                        )
                    )
                    await session.commit()
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc
        logger.info(
            "permission_group_assigned",
            group_id=group_id,
            principal_id=principal_id,
            assigned_by=assigned_by,
        )
        self._notify([principal_id])

    async def unassign(self, organization_id: str, group_id: str, principal_id: str) -> bool:
        try:
            async with AsyncSession(self._engine) as session:
                await self._load(session, organization_id, group_id)
                stmt = select(PermissionGroupMember).where(
                    col(PermissionGroupMember.permission_group_id) == group_id,
                    col(PermissionGroupMember.user_id) == principal_id,
                )
                result = await session.execute(stmt)
                row = result.scalars().first()
                if row is None:
                    return False
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise DataLayerError(str(exc)) from exc
        logger.info("permission_group_unassigned", group_id=group_id, principal_id=principal_id)
        self._notify([principal_id])
        return True

    async def seed_default_groups(self, organization_id: str) -> list[PermissionGroupView]:
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

    async def _load(
        self, session: AsyncSession, organization_id: str, group_id: str
    ) -> PermissionGroup:
        stmt = select(PermissionGroup).where(
            col(PermissionGroup.id) == group_id,
            col(PermissionGroup.organization_id) == organization_id,
        )
        result = await session.execute(stmt)
        row = result.scalars().first()
        if row is None:
            raise PermissionGroupNotFound(group_id)
        return row

    def _notify(self, principal_ids: Iterable[str]) -> None:
        if self._on_change is not None:
            self._on_change(list(principal_ids))
