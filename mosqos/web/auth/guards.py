"""Access guard dependencies for platform, admin and portal routes."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from fastapi import Depends, HTTPException, Request

from mosqos.access.guards import GuardRequest
from mosqos.access.identity import cached_identity
from mosqos.access.permissions import check_permission
from mosqos.exceptions import DataLayerError
from mosqos.models.domain import GuardDecision, Organization, Principal, ResolvedIdentity
from mosqos.types import DenyReason, GuardState, Role, ScopeKind
from mosqos.web.auth.session import SESSION_COOKIE
from mosqos.web.dependencies import AccessServices, get_services

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AccessContext:
    """Request-scoped authorization context handed to tenant routes."""

    principal: Principal
    identity: ResolvedIdentity
    organization: Organization

    @property
    def role(self) -> Role:
        return self.identity.role_in(self.organization.id)


async def get_principal(
    request: Request,
    services: AccessServices = Depends(get_services),
) -> Principal | None:
    """Return the principal behind the session cookie, or None when signed out."""
    session = services.sessions.validate_session(request.cookies.get(SESSION_COOKIE))
    if session is None:
        return None
    try:
        return await services.store.get_principal(session["principal_id"])
    except DataLayerError as exc:
        logger.error("principal_lookup_failed", error=str(exc))
        raise HTTPException(status_code=503, detail="Identity store unavailable") from exc


def raise_for_decision(decision: GuardDecision) -> None:
    """Translate a non-allow decision into the matching HTTP error."""
    if decision.state == GuardState.ALLOW:
        return
    if decision.state in (GuardState.LOADING, GuardState.ERROR):
        raise HTTPException(
            status_code=503,
            detail={"state": decision.state.value, "detail": decision.detail},
        )
    status = 401 if decision.reason == DenyReason.UNAUTHENTICATED else 403
    raise HTTPException(
        status_code=status,
        detail={
            "state": decision.state.value,
            "reason": decision.reason.value if decision.reason else None,
            "redirect_to": decision.redirect_to,
        },
    )


def require_tenant_access(kind: ScopeKind):
    """Build a dependency enforcing the admin or portal guard for the ``slug`` path param."""

    async def _dep(
        slug: str,
        principal: Principal | None = Depends(get_principal),
        services: AccessServices = Depends(get_services),
    ) -> AccessContext:
        decision = await services.evaluator.evaluate(GuardRequest(kind=kind, slug=slug), principal)
        raise_for_decision(decision)
        if principal is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        try:
            identity = await cached_identity(services.store, principal, services.cache)
            organization = await services.store.get_organization(slug)
        except DataLayerError as exc:
            raise HTTPException(status_code=503, detail="Identity store unavailable") from exc
        if organization is None:
            # Platform admins pass the guard for any slug.
            raise_for_decision(
                GuardDecision.deny(
                    DenyReason.NO_ORGANIZATION, redirect_to=services.paths.no_organization
                )
            )
        return AccessContext(principal=principal, identity=identity, organization=organization)

    return _dep


require_admin = require_tenant_access(ScopeKind.ADMIN)
require_portal = require_tenant_access(ScopeKind.PORTAL)


def require_permission(key: str):
    """Admin-console access plus one permission key in the organization."""

    async def _dep(
        context: AccessContext = Depends(require_admin),
        services: AccessServices = Depends(get_services),
    ) -> AccessContext:
        try:
            check = await check_permission(
                services.store,
                context.principal,
                context.organization.id,
                key,
                identity=context.identity,
                cache=services.cache,
            )
        except DataLayerError as exc:
            raise HTTPException(status_code=503, detail="Permission store unavailable") from exc
        if not check.allowed:
            logger.info(
                "permission_denied",
                principal_id=context.principal.id,
                organization_id=context.organization.id,
                key=key,
            )
            raise HTTPException(status_code=403, detail=f"Missing permission: {key}")
        return context

    return _dep
