"""Identity & role resolver: platform-admin flag plus one role per organization."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog

from mosqos.models.domain import Membership, ResolvedIdentity
from mosqos.types import Relation

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mosqos.models.domain import MembershipRef, Principal
    from mosqos.storage.repositories.access_store import AccessStore

logger = structlog.get_logger(__name__)


def merge_memberships(by_relation: dict[Relation, list[MembershipRef]]) -> tuple[Membership, ...]:
    """Collapse relation rows into one membership per organization.

    When an organization appears under several relations the highest-precedence
    role wins. The result is ordered by role precedence, then slug.
    """
    best: dict[str, Membership] = {}
    for relation, refs in by_relation.items():
        role = relation.role
        for ref in refs:
            current = best.get(ref.organization_id)
            if current is not None and current.role != role:
                logger.warning(
                    "membership_role_conflict",
                    organization_id=ref.organization_id,
                    roles=[current.role.value, role.value],
                )
            if current is None or role.precedence > current.role.precedence:
                best[ref.organization_id] = Membership(
                    organization_id=ref.organization_id, slug=ref.slug, role=role
                )
    return tuple(sorted(best.values(), key=lambda m: (-m.role.precedence, m.slug)))


async def resolve_memberships(store: AccessStore, principal_id: str) -> tuple[Membership, ...]:
    """Fetch all three relation stores concurrently and merge them."""
    relations = list(Relation)
    results = await asyncio.gather(
        *(store.get_memberships_by_relation(principal_id, r) for r in relations)
    )
    return merge_memberships(dict(zip(relations, results, strict=True)))


async def resolve_identity(store: AccessStore, principal: Principal) -> ResolvedIdentity:
    """Resolve the platform-admin flag and memberships of ``principal``.

    Every lookup runs; a platform admin still gets the full membership list.
    """
    is_admin, memberships = await asyncio.gather(
        store.is_platform_admin(principal.id),
        resolve_memberships(store, principal.id),
    )
    identity = ResolvedIdentity(
        principal_id=principal.id,
        is_platform_admin=is_admin,
        memberships=memberships,
    )
    logger.debug(
        "identity_resolved",
        principal_id=principal.id,
        is_platform_admin=is_admin,
        memberships=len(memberships),
    )
    return identity


class IdentityCache:
    """Per-principal cache of resolved identities and permission sets.

    Entries expire after ``ttl_seconds``; collaborators that change memberships
    or permission groups call ``invalidate`` for every affected principal.

    Readers take ``generation(principal_id)`` before their store lookups and
    pass it back to ``put_identity`` / ``put_permissions``. An invalidation
    that lands while the lookups are in flight bumps the generation, so the
    pre-change result is dropped instead of being cached for a full TTL.
    """

    def __init__(self, ttl_seconds: float = 300.0) -> None:
        self._ttl = ttl_seconds
        self._identities: dict[str, tuple[float, ResolvedIdentity]] = {}
        self._permissions: dict[tuple[str, str], tuple[float, frozenset[str]]] = {}
        self._version = 0
        self._cleared_at = 0
        self._generations: dict[str, int] = {}
        self._last_sweep = time.monotonic()

    def generation(self, principal_id: str) -> int:
        return max(self._generations.get(principal_id, 0), self._cleared_at)

    def _is_current(self, principal_id: str, generation: int | None) -> bool:
        if generation is None or generation == self.generation(principal_id):
            return True
        logger.debug("identity_cache_stale_write_dropped", principal_id=principal_id)
        return False

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep <= self._ttl:
            return
        self._last_sweep = now
        for pid in [p for p, (at, _) in self._identities.items() if now - at > self._ttl]:
            del self._identities[pid]
        for key in [k for k, (at, _) in self._permissions.items() if now - at > self._ttl]:
            del self._permissions[key]

    def get_identity(self, principal_id: str) -> ResolvedIdentity | None:
        entry = self._identities.get(principal_id)
        if entry is None:
            return None
        stored_at, identity = entry
        if time.monotonic() - stored_at > self._ttl:
            del self._identities[principal_id]
            return None
        return identity

    def put_identity(self, identity: ResolvedIdentity, generation: int | None = None) -> None:
        if self._ttl <= 0 or not self._is_current(identity.principal_id, generation):
            return
        now = time.monotonic()
        self._sweep(now)
        self._identities[identity.principal_id] = (now, identity)

    def get_permissions(self, principal_id: str, organization_id: str) -> frozenset[str] | None:
        key = (principal_id, organization_id)
        entry = self._permissions.get(key)
        if entry is None:
            return None
        stored_at, keys = entry
        if time.monotonic() - stored_at > self._ttl:
            del self._permissions[key]
            return None
        return keys

    def put_permissions(
        self,
        principal_id: str,
        organization_id: str,
        keys: frozenset[str],
        generation: int | None = None,
    ) -> None:
        if self._ttl <= 0 or not self._is_current(principal_id, generation):
            return
        now = time.monotonic()
        self._sweep(now)
        self._permissions[(principal_id, organization_id)] = (now, keys)

    def invalidate(self, principal_id: str) -> None:
        self._version += 1
        self._generations[principal_id] = self._version
        self._identities.pop(principal_id, None)
        for key in [k for k in self._permissions if k[0] == principal_id]:
            del self._permissions[key]
        logger.debug("identity_cache_invalidated", principal_id=principal_id)

    def invalidate_many(self, principal_ids: Iterable[str]) -> None:
        for principal_id in principal_ids:
            self.invalidate(principal_id)

    def clear(self) -> None:
        self._version += 1
        self._cleared_at = self._version
        # Every per-principal generation is now below _cleared_at.
        self._generations.clear()
        self._identities.clear()
        self._permissions.clear()


async def cached_identity(
    store: AccessStore, principal: Principal, cache: IdentityCache | None
) -> ResolvedIdentity:
    """Return the cached identity for ``principal`` or resolve and cache it."""
    if cache is None:
        return await resolve_identity(store, principal)
    identity = cache.get_identity(principal.id)
    if identity is not None:
        return identity
    generation = cache.generation(principal.id)
    identity = await resolve_identity(store, principal)
    cache.put_identity(identity, generation=generation)
    return identity
