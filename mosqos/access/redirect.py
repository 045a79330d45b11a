"""Post-login redirect resolver."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from mosqos.access.guards import GuardPaths
from mosqos.access.identity import cached_identity
from mosqos.types import Role

if TYPE_CHECKING:
    from mosqos.access.identity import IdentityCache
    from mosqos.models.domain import Principal, ResolvedIdentity
    from mosqos.storage.repositories.access_store import AccessStore

logger = structlog.get_logger(__name__)


def admin_path(slug: str) -> str:
    return f"/{slug}/admin"


def portal_path(slug: str) -> str:
    return f"/{slug}/portal"


def resolve_landing_path(identity: ResolvedIdentity, paths: GuardPaths | None = None) -> str:
    """Pick the single landing path for a freshly authenticated principal.

    First match wins: platform console, then the admin console of the first
    organization the principal owns (or, failing that, delegates for), then
    the portal of the first organization they are a member of, else the
    "no organization" page. "First" follows the resolver's stable ordering.
    """
    paths = paths or GuardPaths()
    if identity.is_platform_admin:
        return paths.platform
    for role in (Role.OWNER, Role.DELEGATE):
        for membership in identity.memberships:
            if membership.role == role:
                return admin_path(membership.slug)
    for membership in identity.memberships:
        if membership.role == Role.MEMBER:
            return portal_path(membership.slug)
    return paths.no_organization


async def landing_path_for(
    store: AccessStore,
    principal: Principal,
    paths: GuardPaths | None = None,
    cache: IdentityCache | None = None,
) -> str:
    identity = await cached_identity(store, principal, cache)
    path = resolve_landing_path(identity, paths)
    logger.info("landing_path_resolved", principal_id=principal.id, path=path)
    return path
