"""Inter-module data contracts (not persisted directly)."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from mosqos.types import DenyReason, GuardState, OrganizationStatus, Role


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    email_verified_at: datetime | None = None

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None


class Organization(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    status: OrganizationStatus = OrganizationStatus.PENDING
    is_active: bool = True

    @property
    def is_accessible(self) -> bool:
        """Only approved and active organizations are reachable by tenant guards."""
        return self.status == OrganizationStatus.APPROVED and self.is_active


class MembershipRef(BaseModel):
    """One row of a relation store: an organization the principal is linked to."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    slug: str


class Membership(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_id: str
    slug: str
    role: Role


class ResolvedIdentity(BaseModel):
    """Roles of one principal at one point in time."""

    model_config = ConfigDict(frozen=True)

    principal_id: str
    is_platform_admin: bool = False
    memberships: tuple[Membership, ...] = ()

    def membership_for(self, organization_id: str) -> Membership | None:
        for membership in self.memberships:
            if membership.organization_id == organization_id:
                return membership
        return None

    def membership_for_slug(self, slug: str) -> Membership | None:
        for membership in self.memberships:
            if membership.slug == slug:
                return membership
        return None

    def role_in(self, organization_id: str) -> Role:
        if self.is_platform_admin:
            return Role.PLATFORM_ADMIN
        membership = self.membership_for(organization_id)
        return membership.role if membership else Role.NONE

    @property
    def roles(self) -> frozenset[Role]:
        roles = {m.role for m in self.memberships}
        if self.is_platform_admin:
            roles.add(Role.PLATFORM_ADMIN)
        return frozenset(roles)


class PermissionGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    name: str
    description: str | None = None
    is_system: bool = False
    permission_keys: frozenset[str] = frozenset()


class GuardDecision(BaseModel):
    """Outcome of one guard evaluation, consumed by the routing layer."""

    model_config = ConfigDict(frozen=True)

    state: GuardState
    reason: DenyReason | None = None
    redirect_to: str | None = None
    detail: str | None = None

    @classmethod
    def loading(cls) -> GuardDecision:
        return cls(state=GuardState.LOADING)

    @classmethod
    def allow(cls) -> GuardDecision:
        return cls(state=GuardState.ALLOW)

    @classmethod
    def deny(cls, reason: DenyReason, redirect_to: str | None = None) -> GuardDecision:
        return cls(state=GuardState.DENY, reason=reason, redirect_to=redirect_to)

    @classmethod
    def error(cls, detail: str) -> GuardDecision:
        return cls(state=GuardState.ERROR, detail=detail)

    @property
    def is_terminal(self) -> bool:
        return self.state != GuardState.LOADING
