"""Permission aggregator: effective permission keys of a principal in one organization."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import structlog

from mosqos.access.catalog import all_permission_keys, is_known_key, require_key
from mosqos.access.identity import cached_identity
from mosqos.types import Role

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mosqos.access.identity import IdentityCache
    from mosqos.models.domain import PermissionGroup, Principal, ResolvedIdentity
    from mosqos.storage.repositories.access_store import AccessStore

logger = structlog.get_logger(__name__)

CheckReason = Literal["platform_admin", "owner", "permission_granted", "no_permission"]


@dataclass(frozen=True, slots=True)
class PermissionCheck:
    allowed: bool
    reason: CheckReason


def union_group_keys(groups: Iterable[PermissionGroup]) -> frozenset[str]:
    """Union the key sets of ``groups``, dropping keys the catalog does not know."""
    keys: set[str] = set()
    for group in groups:
        for key in group.permission_keys:
            if is_known_key(key):
                keys.add(key)
            else:
                logger.warning("unknown_permission_key_ignored", group_id=group.id, key=key)
    return frozenset(keys)


async def resolve_permissions(
    store: AccessStore,
    principal: Principal,
    organization_id: str,
    identity: ResolvedIdentity | None = None,
    cache: IdentityCache | None = None,
) -> frozenset[str]:
    """Compute the effective permission set of ``principal`` in ``organization_id``.

    Owners and platform admins receive every key without consulting their
    groups. A principal with no membership gets the empty set; enforcing
    tenant isolation is the guard's job, not this function's.
    """
    generation = None
    if cache is not None:
        cached = cache.get_permissions(principal.id, organization_id)
        if cached is not None:
            return cached
        generation = cache.generation(principal.id)

    if identity is None:
        identity = await cached_identity(store, principal, cache)

    role = identity.role_in(organization_id)
    if role in (Role.PLATFORM_ADMIN, Role.OWNER):
        keys = all_permission_keys()
    elif role == Role.NONE:
        keys = frozenset()
    else:
        groups = await store.get_permission_assignments(principal.id, organization_id)
        keys = union_group_keys(groups)

    logger.debug(
        "permissions_resolved",
        principal_id=principal.id,
        organization_id=organization_id,
        role=role.value,
        count=len(keys),
    )
    if cache is not None:
        cache.put_permissions(principal.id, organization_id, keys, generation=generation)
    return keys


async def check_permission(
    store: AccessStore,
    principal: Principal,
    organization_id: str,
    key: str,
    identity: ResolvedIdentity | None = None,
    cache: IdentityCache | None = None,
) -> PermissionCheck:
    """Check one permission key and report which rule granted or refused it."""
    require_key(key)
    if identity is None:
        identity = await cached_identity(store, principal, cache)
    role = identity.role_in(organization_id)
    if role == Role.PLATFORM_ADMIN:
        return PermissionCheck(allowed=True, reason="platform_admin")
    if role == Role.OWNER:
        return PermissionCheck(allowed=True, reason="owner")
    keys = await resolve_permissions(store, principal, organization_id, identity, cache)
    if key in keys:
        return PermissionCheck(allowed=True, reason="permission_granted")
    return PermissionCheck(allowed=False, reason="no_permission")
