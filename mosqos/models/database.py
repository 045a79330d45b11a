"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return the current time as an aware UTC datetime for TIMESTAMPTZ columns."""
    return datetime.now(UTC)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenants and principals
# ---------------------------------------------------------------------------


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    status: str = Field(default="pending", index=True)  # pending | approved | rejected
    is_active: bool = Field(default=True)
    rejection_reason: str | None = None
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str = ""
    email_verified_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class PlatformAdmin(SQLModel, table=True):
    __tablename__ = "platform_admins"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", unique=True, index=True)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Per-organization relation stores (one table per role)
# ---------------------------------------------------------------------------


class OrganizationOwner(SQLModel, table=True):
    __tablename__ = "organization_owners"
    __table_args__ = (UniqueConstraint("organization_id", "user_id"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class OrganizationDelegate(SQLModel, table=True):
    __tablename__ = "organization_delegates"
    __table_args__ = (UniqueConstraint("organization_id", "user_id"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class OrganizationMember(SQLModel, table=True):
    __tablename__ = "organization_members"
    __table_args__ = (UniqueConstraint("organization_id", "user_id"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Permission groups
# ---------------------------------------------------------------------------


class PermissionGroup(SQLModel, table=True):
    __tablename__ = "permission_groups"
    __table_args__ = (UniqueConstraint("organization_id", "name"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    name: str
    description: str | None = None
    is_system: bool = Field(default=False)
    permissions_json: str = "[]"
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class PermissionGroupMember(SQLModel, table=True):
    __tablename__ = "permission_group_members"
    __table_args__ = (UniqueConstraint("permission_group_id", "user_id"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    permission_group_id: str = Field(foreign_key="permission_groups.id", index=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    assigned_by: str | None = None
    assigned_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
