"""Access guard: policy decision point for platform, admin and portal scopes.

A decision is a pure function of an ``AccessSnapshot``: the set of named
lookups (principal, platform-admin flag, memberships, organization) and how
far each has progressed. ``GuardEvaluator`` drives the lookups concurrently
and recomputes the decision as each one lands, stopping at the first terminal
decision. Checks are walked in precedence order and a pending check yields
``loading``, so a lower-precedence result can never produce a Deny while a
higher-precedence check is still outstanding.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from mosqos.access.identity import resolve_memberships
from mosqos.models.domain import GuardDecision, ResolvedIdentity
from mosqos.types import DenyReason, GuardState, Role, ScopeKind

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from mosqos.access.identity import IdentityCache
    from mosqos.config.settings import Settings
    from mosqos.models.domain import Membership, Organization, Principal
    from mosqos.storage.repositories.access_store import AccessStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ADMIN_ROLES = frozenset({Role.OWNER, Role.DELEGATE})


class LookupStatus(StrEnum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Lookup(Generic[T]):
    """Progress of one asynchronous lookup."""

    status: LookupStatus = LookupStatus.PENDING
    value: T | None = None
    error: str | None = None

    @classmethod
    def pending(cls) -> Lookup[Any]:
        return cls()

    @classmethod
    def done(cls, value: T) -> Lookup[T]:
        return cls(status=LookupStatus.DONE, value=value)

    @classmethod
    def failed(cls, error: str) -> Lookup[Any]:
        return cls(status=LookupStatus.FAILED, error=error)

    @property
    def is_pending(self) -> bool:
        return self.status == LookupStatus.PENDING


@dataclass(frozen=True, slots=True)
class AccessSnapshot:
    principal: Lookup[Principal | None] = field(default_factory=Lookup.pending)
    platform_admin: Lookup[bool] = field(default_factory=Lookup.pending)
    memberships: Lookup[tuple[Membership, ...]] = field(default_factory=Lookup.pending)
    organization: Lookup[Organization | None] = field(default_factory=Lookup.pending)

    def with_lookup(self, name: str, lookup: Lookup[Any]) -> AccessSnapshot:
        return replace(self, **{name: lookup})


@dataclass(frozen=True, slots=True)
class GuardPaths:
    sign_in: str = "/login"
    platform: str = "/platform"
    no_organization: str = "/no-organization"
    verification_pending: str = "/verify-email/pending"

    @classmethod
    def from_settings(cls, settings: Settings) -> GuardPaths:
        return cls(
            sign_in=settings.sign_in_path,
            platform=settings.platform_path,
            no_organization=settings.no_organization_path,
            verification_pending=settings.verification_pending_path,
        )


@dataclass(frozen=True, slots=True)
class GuardRequest:
    """A requested access scope.

    ``PLATFORM`` and ``ROLE`` are flat routes gated by ``required_roles``;
    ``ADMIN`` and ``PORTAL`` are scoped to the organization named by ``slug``.
    """

    kind: ScopeKind
    slug: str | None = None
    required_roles: frozenset[Role] = frozenset({Role.PLATFORM_ADMIN})

    @classmethod
    def platform(cls) -> GuardRequest:
        return cls(kind=ScopeKind.PLATFORM)

    @classmethod
    def roles(cls, *required: Role) -> GuardRequest:
        return cls(kind=ScopeKind.ROLE, required_roles=frozenset(required))

    @classmethod
    def admin(cls, slug: str | None) -> GuardRequest:
        return cls(kind=ScopeKind.ADMIN, slug=slug)

    @classmethod
    def portal(cls, slug: str | None) -> GuardRequest:
        return cls(kind=ScopeKind.PORTAL, slug=slug)

    @property
    def is_tenant_scoped(self) -> bool:
        return self.kind in (ScopeKind.ADMIN, ScopeKind.PORTAL)


def _unresolved(lookup: Lookup[Any]) -> GuardDecision | None:
    """Return the decision a not-yet-usable lookup forces, or None if it has a value."""
    if lookup.status == LookupStatus.PENDING:
        return GuardDecision.loading()
    if lookup.status == LookupStatus.FAILED:
        return GuardDecision.error(lookup.error or "lookup failed")
    return None


# ---------------------------------------------------------------------------
# Pure decision functions
# ---------------------------------------------------------------------------


def decide_verification(
    principal: Lookup[Principal | None], *, dev_mode: bool, paths: GuardPaths
) -> GuardDecision:
    if dev_mode:
        return GuardDecision.allow()
    if (blocked := _unresolved(principal)) is not None:
        return blocked
    if principal.value is not None and not principal.value.is_verified:
        return GuardDecision.deny(DenyReason.UNVERIFIED, redirect_to=paths.verification_pending)
    return GuardDecision.allow()


def decide_role(
    snapshot: AccessSnapshot, required_roles: frozenset[Role], paths: GuardPaths
) -> GuardDecision:
    if (blocked := _unresolved(snapshot.principal)) is not None:
        return blocked
    if snapshot.principal.value is None:
        return GuardDecision.deny(DenyReason.UNAUTHENTICATED, redirect_to=paths.sign_in)

    if (blocked := _unresolved(snapshot.platform_admin)) is not None:
        return blocked
    if snapshot.platform_admin.value:
        return GuardDecision.allow()

    tenant_roles = required_roles - {Role.PLATFORM_ADMIN}
    if not tenant_roles:
        return GuardDecision.deny(DenyReason.INSUFFICIENT_ROLE)

    if (blocked := _unresolved(snapshot.memberships)) is not None:
        return blocked
    if any(m.role in tenant_roles for m in snapshot.memberships.value or ()):
        return GuardDecision.allow()
    return GuardDecision.deny(DenyReason.INSUFFICIENT_ROLE)


def decide_tenant(
    snapshot: AccessSnapshot, kind: ScopeKind, slug: str | None, paths: GuardPaths
) -> GuardDecision:
    if (blocked := _unresolved(snapshot.principal)) is not None:
        return blocked
    if snapshot.principal.value is None:
        return GuardDecision.deny(DenyReason.UNAUTHENTICATED, redirect_to=paths.sign_in)

    # Platform admins reach every tenant, whatever its approval state.
    if (blocked := _unresolved(snapshot.platform_admin)) is not None:
        return blocked
    if snapshot.platform_admin.value:
        return GuardDecision.allow()

    if not slug:
        return GuardDecision.deny(DenyReason.NO_ORGANIZATION, redirect_to=paths.no_organization)
    if (blocked := _unresolved(snapshot.organization)) is not None:
        return blocked
    organization = snapshot.organization.value
    if organization is None:
        return GuardDecision.deny(DenyReason.NO_ORGANIZATION, redirect_to=paths.no_organization)

    if (blocked := _unresolved(snapshot.memberships)) is not None:
        return blocked
    membership = next(
        (m for m in snapshot.memberships.value or () if m.organization_id == organization.id),
        None,
    )
    if membership is None:
        return GuardDecision.deny(DenyReason.NOT_A_MEMBER)

    if not organization.is_accessible:
        return GuardDecision.deny(DenyReason.ORGANIZATION_NOT_ACCESSIBLE)

    if kind == ScopeKind.ADMIN and membership.role not in ADMIN_ROLES:
        return GuardDecision.deny(DenyReason.INSUFFICIENT_ROLE)
    return GuardDecision.allow()


def decide(
    request: GuardRequest, snapshot: AccessSnapshot, *, dev_mode: bool, paths: GuardPaths
) -> GuardDecision:
    """Verification first, then the role or tenant guard for ``request``."""
    verification = decide_verification(snapshot.principal, dev_mode=dev_mode, paths=paths)
    if verification.state != GuardState.ALLOW:
        return verification
    if request.is_tenant_scoped:
        return decide_tenant(snapshot, request.kind, request.slug, paths)
    return decide_role(snapshot, request.required_roles, paths)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class GuardEvaluator:
    """Runs the lookups a guard needs and returns the first terminal decision."""

    def __init__(
        self,
        store: AccessStore,
        *,
        paths: GuardPaths | None = None,
        dev_mode: bool = False,
        cache: IdentityCache | None = None,
    ) -> None:
        self._store = store
        self._paths = paths or GuardPaths()
        self._dev_mode = dev_mode
        self._cache = cache

    def decide(self, request: GuardRequest, snapshot: AccessSnapshot) -> GuardDecision:
        return decide(request, snapshot, dev_mode=self._dev_mode, paths=self._paths)

    async def evaluate(
        self,
        request: GuardRequest,
        principal: Principal | None,
        identity: ResolvedIdentity | None = None,
    ) -> GuardDecision:
        generation = None
        if self._cache is not None and principal is not None:
            generation = self._cache.generation(principal.id)
        snapshot = AccessSnapshot(principal=Lookup.done(principal))
        if principal is not None:
            if identity is None and self._cache is not None:
                identity = self._cache.get_identity(principal.id)
            if identity is not None and identity.principal_id == principal.id:
                snapshot = replace(
                    snapshot,
                    platform_admin=Lookup.done(identity.is_platform_admin),
                    memberships=Lookup.done(identity.memberships),
                )

        decision = self.decide(request, snapshot)
        if not decision.is_terminal and principal is not None:
            snapshot, decision = await self._run_lookups(request, principal, snapshot, decision)

        self._remember_identity(principal, snapshot, generation)
        logger.info(
            "guard_evaluated",
            principal_id=principal.id if principal else None,
            scope=request.kind.value,
            slug=request.slug,
            state=decision.state.value,
            reason=decision.reason.value if decision.reason else None,
        )
        return decision

    def _lookups(
        self, request: GuardRequest, principal: Principal, snapshot: AccessSnapshot
    ) -> dict[str, Coroutine[Any, Any, Any]]:
        lookups: dict[str, Coroutine[Any, Any, Any]] = {}
        if snapshot.platform_admin.is_pending:
            lookups["platform_admin"] = self._store.is_platform_admin(principal.id)
        needs_memberships = request.is_tenant_scoped or bool(
            request.required_roles - {Role.PLATFORM_ADMIN}
        )
        if needs_memberships and snapshot.memberships.is_pending:
            lookups["memberships"] = resolve_memberships(self._store, principal.id)
        if request.is_tenant_scoped and request.slug and snapshot.organization.is_pending:
            lookups["organization"] = self._store.get_organization(request.slug)
        return lookups

    async def _run_lookups(
        self,
        request: GuardRequest,
        principal: Principal,
        snapshot: AccessSnapshot,
        decision: GuardDecision,
    ) -> tuple[AccessSnapshot, GuardDecision]:
        tasks = {
            asyncio.create_task(coro, name=f"guard:{name}"): name
            for name, coro in self._lookups(request, principal, snapshot).items()
        }
        try:
            while tasks and not decision.is_terminal:
                done, _ = await asyncio.wait(set(tasks), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    name = tasks.pop(task)
                    snapshot = snapshot.with_lookup(name, self._outcome(name, task))
                decision = self.decide(request, snapshot)
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        return snapshot, decision

    @staticmethod
    def _outcome(name: str, task: asyncio.Task[Any]) -> Lookup[Any]:
        exc = task.exception()
        if exc is not None:
            logger.error("guard_lookup_failed", lookup=name, error=str(exc))
            return Lookup.failed(f"{name} lookup failed: {exc}")
        return Lookup.done(task.result())

    def _remember_identity(
        self, principal: Principal | None, snapshot: AccessSnapshot, generation: int | None
    ) -> None:
        if self._cache is None or principal is None:
            return
        admin, memberships = snapshot.platform_admin, snapshot.memberships
        if admin.status == LookupStatus.DONE and memberships.status == LookupStatus.DONE:
            self._cache.put_identity(
                ResolvedIdentity(
                    principal_id=principal.id,
                    is_platform_admin=bool(admin.value),
                    memberships=memberships.value or (),
                ),
                generation=generation,
            )


class GuardSession:
    """Latest guard decision for one navigation context.

    Each evaluation is tagged with a generation number. When the principal or
    the requested scope changes mid-flight, the older evaluation's result is
    discarded instead of overwriting the newer decision.
    """

    def __init__(self, evaluator: GuardEvaluator) -> None:
        self._evaluator = evaluator
        self._generation = 0
        self._current = GuardDecision.loading()

    @property
    def current(self) -> GuardDecision:
        return self._current

    async def evaluate(
        self,
        request: GuardRequest,
        principal: Principal | None,
        identity: ResolvedIdentity | None = None,
    ) -> GuardDecision | None:
        """Evaluate ``request``; returns None if a newer evaluation superseded this one."""
        self._generation += 1
        generation = self._generation
        self._current = GuardDecision.loading()
        decision = await self._evaluator.evaluate(request, principal, identity)
        if generation != self._generation:
            logger.info(
                "guard_result_discarded",
                scope=request.kind.value,
                slug=request.slug,
                generation=generation,
                current_generation=self._generation,
            )
            return None
        self._current = decision
        return decision
