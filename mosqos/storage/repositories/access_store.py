"""Read interface to the identity and membership store, plus the in-memory backend."""

from __future__ import annotations

from typing import Protocol

import structlog

from mosqos.models.domain import MembershipRef, Organization, PermissionGroup, Principal
from mosqos.types import Relation

logger = structlog.get_logger(__name__)


class AccessStore(Protocol):
    """Read operations the access core consumes. Implementations never write."""

    async def get_principal(self, principal_id: str) -> Principal | None: ...

    async def get_principal_by_email(self, email: str) -> Principal | None: ...

    async def is_platform_admin(self, principal_id: str) -> bool: ...

    async def get_memberships_by_relation(
        self, principal_id: str, relation: Relation
    ) -> list[MembershipRef]: ...

    async def get_organization(self, slug: str) -> Organization | None: ...

    async def get_permission_assignments(
        self, principal_id: str, organization_id: str
    ) -> list[PermissionGroup]: ...


class InMemoryAccessStore:
    """In-memory access store. Replaced by SQLModel + PostgreSQL in production."""

    def __init__(self) -> None:
        self.principals: dict[str, Principal] = {}
        self.platform_admins: set[str] = set()
        self.organizations: dict[str, Organization] = {}
        # relation -> principal_id -> organization ids in insertion order
        self.relations: dict[Relation, dict[str, list[str]]] = {r: {} for r in Relation}
        self.inactive_delegates: set[tuple[str, str]] = set()
        self.groups: dict[str, PermissionGroup] = {}
        # (organization_id, principal_id) -> group ids
        self.assignments: dict[tuple[str, str], list[str]] = {}

    # -- seeding helpers --------------------------------------------------

    def add_principal(self, principal: Principal) -> Principal:
        self.principals[principal.id] = principal
        return principal

    def add_organization(self, organization: Organization) -> Organization:
        if any(
            o.slug == organization.slug and o.id != organization.id
            for o in self.organizations.values()
        ):
            msg = f"Slug already in use: {organization.slug}"
            raise ValueError(msg)
        self.organizations[organization.id] = organization
        return organization

    def grant_platform_admin(self, principal_id: str) -> None:
        self.platform_admins.add(principal_id)

    def add_relation(
        self,
        principal_id: str,
        organization_id: str,
        relation: Relation,
        *,
        is_active: bool = True,
    ) -> None:
        org_ids = self.relations[relation].setdefault(principal_id, [])
        if organization_id not in org_ids:
            org_ids.append(organization_id)
        if relation == Relation.DELEGATE and not is_active:
            self.inactive_delegates.add((principal_id, organization_id))

    def remove_relation(self, principal_id: str, organization_id: str, relation: Relation) -> None:
        org_ids = self.relations[relation].get(principal_id, [])
        if organization_id in org_ids:
            org_ids.remove(organization_id)

    # -- AccessStore ------------------------------------------------------

    async def get_principal(self, principal_id: str) -> Principal | None:
        return self.principals.get(principal_id)

    async def get_principal_by_email(self, email: str) -> Principal | None:
        wanted = email.strip().lower()
        for principal in self.principals.values():
            if principal.email.lower() == wanted:
                return principal
        return None

    async def is_platform_admin(self, principal_id: str) -> bool:
        return principal_id in self.platform_admins

    async def get_memberships_by_relation(
        self, principal_id: str, relation: Relation
    ) -> list[MembershipRef]:
        refs: list[MembershipRef] = []
        for org_id in self.relations[relation].get(principal_id, []):
            if relation == Relation.DELEGATE and (principal_id, org_id) in self.inactive_delegates:
                continue
            org = self.organizations.get(org_id)
            if org is None:
                logger.warning("relation_orphaned", principal_id=principal_id, org_id=org_id)
                continue
            refs.append(MembershipRef(organization_id=org.id, slug=org.slug))
        return refs

    async def get_organization(self, slug: str) -> Organization | None:
        for org in self.organizations.values():
            if org.slug == slug:
                return org
        return None

    async def get_permission_assignments(
        self, principal_id: str, organization_id: str
    ) -> list[PermissionGroup]:
        group_ids = self.assignments.get((organization_id, principal_id), [])
        return [
            self.groups[gid]
            for gid in group_ids
            if gid in self.groups and self.groups[gid].organization_id == organization_id
        ]
