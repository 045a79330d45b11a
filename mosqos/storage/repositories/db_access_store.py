"""Access store backed by PostgreSQL (or SQLite in tests) via SQLModel."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from mosqos.exceptions import DataLayerError
from mosqos.models.database import (
    Organization,
    OrganizationDelegate,
    OrganizationMember,
    OrganizationOwner,
    PermissionGroup,
    PermissionGroupMember,
    PlatformAdmin,
    User,
)
from mosqos.models.domain import MembershipRef
from mosqos.models.domain import Organization as OrganizationView
from mosqos.models.domain import PermissionGroup as PermissionGroupView
from mosqos.models.domain import Principal
from mosqos.types import OrganizationStatus, Relation

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_RELATION_TABLES: dict[Relation, Any] = {
    Relation.OWNER: OrganizationOwner,
    Relation.DELEGATE: OrganizationDelegate,
    Relation.MEMBER: OrganizationMember,
}


def _to_principal(user: User) -> Principal:
    return Principal(id=user.id, email=user.email, email_verified_at=user.email_verified_at)


def _to_organization(org: Organization) -> OrganizationView:
    return OrganizationView(
        id=org.id,
        name=org.name,
        slug=org.slug,
        status=OrganizationStatus(org.status),
        is_active=org.is_active,
    )


def to_permission_group(group: PermissionGroup) -> PermissionGroupView:
    return PermissionGroupView(
        id=group.id,
        organization_id=group.organization_id,
        name=group.name,
        description=group.description,
        is_system=group.is_system,
        permission_keys=frozenset(json.loads(group.permissions_json or "[]")),
    )


class DatabaseAccessStore:
    """PostgreSQL-backed implementation of the access store read operations."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_principal(self, principal_id: str) -> Principal | None:
        stmt = select(User).where(col(User.id) == principal_id, col(User.is_active).is_(True))
        user = await self._first(stmt, "get_principal")
        return _to_principal(user) if user else None

    async def get_principal_by_email(self, email: str) -> Principal | None:
        stmt = select(User).where(
            col(User.email) == email.strip().lower(), col(User.is_active).is_(True)
        )
        user = await self._first(stmt, "get_principal_by_email")
        return _to_principal(user) if user else None

    async def is_platform_admin(self, principal_id: str) -> bool:
        stmt = select(PlatformAdmin).where(col(PlatformAdmin.user_id) == principal_id).limit(1)
        return await self._first(stmt, "is_platform_admin") is not None

    async def get_memberships_by_relation(
        self, principal_id: str, relation: Relation
    ) -> list[MembershipRef]:
        table = _RELATION_TABLES[relation]
        stmt = (
            select(Organization.id, Organization.slug)
            .join(table, col(table.organization_id) == col(Organization.id))
            .where(col(table.user_id) == principal_id)
            .order_by(col(Organization.slug))
        )
        if relation == Relation.DELEGATE:
            stmt = stmt.where(col(OrganizationDelegate.is_active).is_(True))
        try:
            async with AsyncSession(self._engine) as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as exc:
            logger.error("store_lookup_failed", op="get_memberships_by_relation", error=str(exc))
            raise DataLayerError(str(exc)) from exc
        return [MembershipRef(organization_id=org_id, slug=slug) for org_id, slug in rows]

    async def get_organization(self, slug: str) -> OrganizationView | None:
        stmt = select(Organization).where(col(Organization.slug) == slug)
        org = await self._first(stmt, "get_organization")
        return _to_organization(org) if org else None

    async def get_permission_assignments(
        self, principal_id: str, organization_id: str
    ) -> list[PermissionGroupView]:
        stmt = (
            select(PermissionGroup)
            .join(
                PermissionGroupMember,
                col(PermissionGroupMember.permission_group_id) == col(PermissionGroup.id),
            )
            .where(
                col(PermissionGroupMember.user_id) == principal_id,
                col(PermissionGroupMember.organization_id) == organization_id,
                col(PermissionGroup.organization_id) == organization_id,
            )
        )
        try:
            async with AsyncSession(self._engine) as session:
                result = await session.execute(stmt)
                groups = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.error("store_lookup_failed", op="get_permission_assignments", error=str(exc))
            raise DataLayerError(str(exc)) from exc
        return [to_permission_group(g) for g in groups]

    async def _first(self, stmt: Any, op: str) -> Any:
        try:
            async with AsyncSession(self._engine) as session:
                result = await session.execute(stmt)
                return result.scalars().first()
        except SQLAlchemyError as exc:
            logger.error("store_lookup_failed", op=op, error=str(exc))
            raise DataLayerError(str(exc)) from exc
