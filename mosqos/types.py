"""Enums and type aliases for MosqOS access control."""

from enum import StrEnum


class Role(StrEnum):
    """A principal's effective role in one scope.

    Members are declared from highest to lowest privilege; ``precedence``
    is the single place that ordering is defined.
    """

    PLATFORM_ADMIN = "platform_admin"
    OWNER = "owner"
    DELEGATE = "delegate"
    MEMBER = "member"
    NONE = "none"

    @property
    def precedence(self) -> int:
        return _ROLE_PRECEDENCE[self]

    @classmethod
    def highest(cls, *roles: "Role") -> "Role":
        """Return the highest-precedence role among ``roles`` (``NONE`` if empty)."""
        return max(roles, key=lambda r: r.precedence, default=cls.NONE)


_ROLE_PRECEDENCE: dict[Role, int] = {
    Role.PLATFORM_ADMIN: 4,
    Role.OWNER: 3,
    Role.DELEGATE: 2,
    Role.MEMBER: 1,
    Role.NONE: 0,
}


class Relation(StrEnum):
    """Per-organization relation stores a principal can appear in."""

    OWNER = "owner"
    DELEGATE = "delegate"
    MEMBER = "member"

    @property
    def role(self) -> Role:
        return Role(self.value)


class OrganizationStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class GuardState(StrEnum):
    LOADING = "loading"
    ALLOW = "allow"
    DENY = "deny"
    ERROR = "error"


class DenyReason(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    UNVERIFIED = "unverified"
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_A_MEMBER = "not_a_member"
    NO_ORGANIZATION = "no_organization"
    ORGANIZATION_NOT_ACCESSIBLE = "organization_not_accessible"


class ScopeKind(StrEnum):
    PLATFORM = "platform"
    ROLE = "role"
    ADMIN = "admin"
    PORTAL = "portal"


class PermissionModule(StrEnum):
    MEMBERS = "members"
    HOUSEHOLDS = "households"
    DONATIONS = "donations"
    FUNDS = "funds"
    PLEDGES = "pledges"
    EDUCATION = "education"
    CASES = "cases"
    UMRAH = "umrah"
    QURBANI = "qurbani"
    SERVICES = "services"
    ANNOUNCEMENTS = "announcements"
    REPORTS = "reports"
    SETTINGS = "settings"
    PERMISSIONS = "permissions"
