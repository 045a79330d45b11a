"""Unit tests for the access guard decision logic and evaluator."""

from __future__ import annotations

import asyncio

import pytest

from mosqos.access.guards import (
    AccessSnapshot,
    GuardEvaluator,
    GuardPaths,
    GuardRequest,
    GuardSession,
    Lookup,
    decide,
)
from mosqos.access.identity import IdentityCache
from mosqos.exceptions import DataLayerError
from mosqos.models.domain import GuardDecision, Membership, Organization, Principal
from mosqos.storage.repositories.access_store import InMemoryAccessStore
from mosqos.types import DenyReason, GuardState, OrganizationStatus, Relation, Role

PATHS = GuardPaths()
ACME = Organization(id="org-acme", name="Acme", slug="acme", status=OrganizationStatus.APPROVED)
ALICE = Principal(id="p-alice", email="alice@example.com")


class GatedStore(InMemoryAccessStore):
    """In-memory store whose lookups can be held open or made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.admin_gate: asyncio.Event | None = None
        self.membership_gate: asyncio.Event | None = None
        self.fail_organization = False
        self.fail_memberships = False

    async def is_platform_admin(self, principal_id: str) -> bool:
        if self.admin_gate is not None:
            await self.admin_gate.wait()
        return await super().is_platform_admin(principal_id)

    async def get_memberships_by_relation(self, principal_id, relation):
        if self.membership_gate is not None:
            await self.membership_gate.wait()
        if self.fail_memberships:
            raise DataLayerError("relation store offline")
        return await super().get_memberships_by_relation(principal_id, relation)

    async def get_organization(self, slug: str):
        if self.fail_organization:
            raise DataLayerError("organization store offline")
        return await super().get_organization(slug)


def _copy_world(world: InMemoryAccessStore) -> GatedStore:
    store = GatedStore()
    store.principals = world.principals
    store.platform_admins = world.platform_admins
    store.organizations = world.organizations
    store.relations = world.relations
    store.inactive_delegates = world.inactive_delegates
    return store


def _snapshot(**lookups: Lookup) -> AccessSnapshot:
    return AccessSnapshot(principal=Lookup.done(ALICE), **lookups)


def _decide(request: GuardRequest, snapshot: AccessSnapshot, dev_mode: bool = True):
    return decide(request, snapshot, dev_mode=dev_mode, paths=PATHS)


@pytest.mark.unit
class TestDecide:
    def test_everything_pending_is_loading(self) -> None:
        decision = _decide(GuardRequest.portal("acme"), AccessSnapshot())
        assert decision.state == GuardState.LOADING

    def test_signed_out_denies_with_sign_in_redirect(self) -> None:
        snapshot = AccessSnapshot(principal=Lookup.done(None))
        decision = _decide(GuardRequest.admin("acme"), snapshot)
        assert decision == GuardDecision.deny(DenyReason.UNAUTHENTICATED, redirect_to="/login")

    def test_no_deny_while_platform_admin_pending(self) -> None:
        # Memberships already say "nothing here", but the admin flag could still grant access
        snapshot = _snapshot(
            memberships=Lookup.done(()),
            organization=Lookup.done(ACME),
        )
        assert _decide(GuardRequest.portal("acme"), snapshot).state == GuardState.LOADING

    def test_platform_admin_short_circuits_pending_lookups(self) -> None:
        snapshot = _snapshot(platform_admin=Lookup.done(True))
        assert _decide(GuardRequest.admin("anything"), snapshot).state == GuardState.ALLOW

    def test_missing_slug_is_no_organization(self) -> None:
        snapshot = _snapshot(platform_admin=Lookup.done(False))
        decision = _decide(GuardRequest.portal(None), snapshot)
        assert decision.reason == DenyReason.NO_ORGANIZATION
        assert decision.redirect_to == "/no-organization"

    def test_failed_lookup_is_error_not_deny(self) -> None:
        snapshot = _snapshot(
            platform_admin=Lookup.done(False),
            organization=Lookup.failed("boom"),
        )
        decision = _decide(GuardRequest.portal("acme"), snapshot)
        assert decision.state == GuardState.ERROR
        assert decision.detail == "boom"

    def test_member_role_cannot_enter_admin(self) -> None:
        snapshot = _snapshot(
            platform_admin=Lookup.done(False),
            organization=Lookup.done(ACME),
            memberships=Lookup.done(
                (Membership(organization_id="org-acme", slug="acme", role=Role.MEMBER),)
            ),
        )
        assert _decide(GuardRequest.portal("acme"), snapshot).state == GuardState.ALLOW
        decision = _decide(GuardRequest.admin("acme"), snapshot)
        assert decision.reason == DenyReason.INSUFFICIENT_ROLE

    def test_unverified_blocked_outside_dev(self) -> None:
        snapshot = _snapshot(platform_admin=Lookup.done(True))
        decision = _decide(GuardRequest.platform(), snapshot, dev_mode=False)
        assert decision.reason == DenyReason.UNVERIFIED
        assert decision.redirect_to == "/verify-email/pending"

    def test_unverified_allowed_in_dev(self) -> None:
        snapshot = _snapshot(platform_admin=Lookup.done(True))
        assert _decide(GuardRequest.platform(), snapshot, dev_mode=True).state == GuardState.ALLOW

    def test_role_guard_requires_listed_role(self) -> None:
        snapshot = _snapshot(
            platform_admin=Lookup.done(False),
            memberships=Lookup.done(
                (Membership(organization_id="org-acme", slug="acme", role=Role.DELEGATE),)
            ),
        )
        assert _decide(GuardRequest.roles(Role.DELEGATE), snapshot).state == GuardState.ALLOW
        decision = _decide(GuardRequest.roles(Role.OWNER), snapshot)
        assert decision.reason == DenyReason.INSUFFICIENT_ROLE

    def test_platform_guard_denies_tenant_roles(self) -> None:
        snapshot = _snapshot(platform_admin=Lookup.done(False))
        decision = _decide(GuardRequest.platform(), snapshot)
        assert decision.reason == DenyReason.INSUFFICIENT_ROLE


@pytest.mark.unit
class TestGuardScenarios:
    async def test_platform_admin_reaches_every_tenant(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world)
        admin = world.principals["p-admin"]
        for slug in ("acme", "beta", "gamma", "does-not-exist"):
            for request in (GuardRequest.admin(slug), GuardRequest.portal(slug)):
                decision = await evaluator.evaluate(request, admin)
                assert decision.state == GuardState.ALLOW
        assert (await evaluator.evaluate(GuardRequest.platform(), admin)).state == GuardState.ALLOW

    async def test_non_member_never_allowed(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world)
        stranger = world.principals["p-stranger"]
        for request in (GuardRequest.admin("acme"), GuardRequest.portal("acme")):
            decision = await evaluator.evaluate(request, stranger)
            assert decision == GuardDecision.deny(DenyReason.NOT_A_MEMBER)

    async def test_owner_scenario(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world)
        owner = world.principals["p-owner"]
        assert (await evaluator.evaluate(GuardRequest.admin("acme"), owner)).state == "allow"
        assert (await evaluator.evaluate(GuardRequest.portal("acme"), owner)).state == "allow"
        other = await evaluator.evaluate(GuardRequest.portal("beta"), owner)
        assert other.reason == DenyReason.NOT_A_MEMBER

    async def test_delegate_enters_admin(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world)
        decision = await evaluator.evaluate(
            GuardRequest.admin("acme"), world.principals["p-delegate"]
        )
        assert decision.state == GuardState.ALLOW

    async def test_inactive_delegate_is_not_a_member(self, world: InMemoryAccessStore) -> None:
        world.add_relation("p-stranger", "org-acme", Relation.DELEGATE, is_active=False)
        evaluator = GuardEvaluator(world)
        decision = await evaluator.evaluate(
            GuardRequest.admin("acme"), world.principals["p-stranger"]
        )
        assert decision.reason == DenyReason.NOT_A_MEMBER

    async def test_member_of_pending_org(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world)
        member = world.principals["p-member"]
        for request in (GuardRequest.admin("beta"), GuardRequest.portal("beta")):
            decision = await evaluator.evaluate(request, member)
            assert decision.reason == DenyReason.ORGANIZATION_NOT_ACCESSIBLE

    async def test_member_of_deactivated_org(self, world: InMemoryAccessStore) -> None:
        world.add_relation("p-member", "org-gamma", Relation.MEMBER)
        evaluator = GuardEvaluator(world)
        decision = await evaluator.evaluate(
            GuardRequest.portal("gamma"), world.principals["p-member"]
        )
        assert decision.reason == DenyReason.ORGANIZATION_NOT_ACCESSIBLE

    async def test_unknown_slug(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world)
        decision = await evaluator.evaluate(
            GuardRequest.portal("nowhere"), world.principals["p-member"]
        )
        assert decision == GuardDecision.deny(
            DenyReason.NO_ORGANIZATION, redirect_to="/no-organization"
        )

    async def test_unverified_outside_dev(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world, dev_mode=False)
        decision = await evaluator.evaluate(
            GuardRequest.portal("acme"), world.principals["p-unverified"]
        )
        assert decision.reason == DenyReason.UNVERIFIED
        assert decision.redirect_to == "/verify-email/pending"

    async def test_unverified_in_dev(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world, dev_mode=True)
        decision = await evaluator.evaluate(
            GuardRequest.portal("acme"), world.principals["p-unverified"]
        )
        assert decision.state == GuardState.ALLOW

    async def test_signed_out(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world)
        decision = await evaluator.evaluate(GuardRequest.portal("acme"), None)
        assert decision.reason == DenyReason.UNAUTHENTICATED

    async def test_custom_paths(self, world: InMemoryAccessStore) -> None:
        evaluator = GuardEvaluator(world, paths=GuardPaths(sign_in="/auth/sign-in"))
        decision = await evaluator.evaluate(GuardRequest.platform(), None)
        assert decision.redirect_to == "/auth/sign-in"


@pytest.mark.unit
class TestGuardEvaluatorConcurrency:
    async def test_slow_admin_lookup_does_not_flicker_to_deny(
        self, world: InMemoryAccessStore
    ) -> None:
        store = _copy_world(world)
        store.admin_gate = asyncio.Event()
        evaluator = GuardEvaluator(store)
        task = asyncio.create_task(
            evaluator.evaluate(GuardRequest.portal("beta"), world.principals["p-admin"])
        )
        await asyncio.sleep(0.01)
        assert not task.done()
        store.admin_gate.set()
        decision = await asyncio.wait_for(task, timeout=1)
        assert decision.state == GuardState.ALLOW

    async def test_platform_admin_does_not_wait_for_memberships(
        self, world: InMemoryAccessStore
    ) -> None:
        store = _copy_world(world)
        store.membership_gate = asyncio.Event()  # never released
        evaluator = GuardEvaluator(store)
        decision = await asyncio.wait_for(
            evaluator.evaluate(GuardRequest.admin("acme"), world.principals["p-admin"]),
            timeout=1,
        )
        assert decision.state == GuardState.ALLOW

    async def test_lookup_failure_is_error(self, world: InMemoryAccessStore) -> None:
        store = _copy_world(world)
        store.fail_organization = True
        evaluator = GuardEvaluator(store)
        decision = await evaluator.evaluate(
            GuardRequest.portal("acme"), world.principals["p-member"]
        )
        assert decision.state == GuardState.ERROR
        assert "organization" in (decision.detail or "")

    async def test_membership_failure_is_error(self, world: InMemoryAccessStore) -> None:
        store = _copy_world(world)
        store.fail_memberships = True
        evaluator = GuardEvaluator(store)
        decision = await evaluator.evaluate(
            GuardRequest.portal("acme"), world.principals["p-member"]
        )
        assert decision.state == GuardState.ERROR

    async def test_identity_is_cached(self, world: InMemoryAccessStore) -> None:
        cache = IdentityCache()
        evaluator = GuardEvaluator(world, cache=cache)
        member = world.principals["p-member"]
        await evaluator.evaluate(GuardRequest.portal("acme"), member)
        identity = cache.get_identity("p-member")
        assert identity is not None
        assert identity.role_in("org-acme") == Role.MEMBER

    async def test_cached_identity_skips_store(self, world: InMemoryAccessStore) -> None:
        cache = IdentityCache()
        evaluator = GuardEvaluator(world, cache=cache)
        member = world.principals["p-member"]
        await evaluator.evaluate(GuardRequest.portal("acme"), member)
        world.remove_relation("p-member", "org-acme", Relation.MEMBER)
        assert (await evaluator.evaluate(GuardRequest.portal("acme"), member)).state == "allow"
        cache.invalidate("p-member")
        decision = await evaluator.evaluate(GuardRequest.portal("acme"), member)
        assert decision.reason == DenyReason.NOT_A_MEMBER


@pytest.mark.unit
class TestGuardSession:
    async def test_initially_loading(self, world: InMemoryAccessStore) -> None:
        session = GuardSession(GuardEvaluator(world))
        assert session.current.state == GuardState.LOADING

    async def test_records_latest_decision(self, world: InMemoryAccessStore) -> None:
        session = GuardSession(GuardEvaluator(world))
        decision = await session.evaluate(GuardRequest.portal("acme"), world.principals["p-member"])
        assert decision is not None
        assert session.current == decision

    async def test_stale_result_is_discarded(self, world: InMemoryAccessStore) -> None:
        store = _copy_world(world)
        store.admin_gate = asyncio.Event()
        session = GuardSession(GuardEvaluator(store))

        stale = asyncio.create_task(
            session.evaluate(GuardRequest.platform(), world.principals["p-admin"])
        )
        await asyncio.sleep(0.01)
        # The principal signs out while the first evaluation is still in flight
        fresh = await session.evaluate(GuardRequest.platform(), None)
        store.admin_gate.set()

        assert await asyncio.wait_for(stale, timeout=1) is None
        assert fresh is not None
        assert fresh.reason == DenyReason.UNAUTHENTICATED
        assert session.current == fresh
