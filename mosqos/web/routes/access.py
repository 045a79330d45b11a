"""Guard decision API routes.

The front end polls these before rendering a protected surface. Every call
answers 200 with the decision itself; callers follow ``redirect_to`` on deny.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mosqos.access.guards import GuardRequest
from mosqos.models.domain import GuardDecision, Principal
from mosqos.web.auth.guards import get_principal
from mosqos.web.dependencies import AccessServices, get_services

router = APIRouter(prefix="/api/access", tags=["access"])


@router.get("/platform", response_model=GuardDecision)
async def platform_access(
    principal: Principal | None = Depends(get_principal),
    services: AccessServices = Depends(get_services),
) -> GuardDecision:
    return await services.evaluator.evaluate(GuardRequest.platform(), principal)


@router.get("/{slug}/admin", response_model=GuardDecision)
async def admin_access(
    slug: str,
    principal: Principal | None = Depends(get_principal),
    services: AccessServices = Depends(get_services),
) -> GuardDecision:
    return await services.evaluator.evaluate(GuardRequest.admin(slug), principal)


@router.get("/{slug}/portal", response_model=GuardDecision)
async def portal_access(
    slug: str,
    principal: Principal | None = Depends(get_principal),
    services: AccessServices = Depends(get_services),
) -> GuardDecision:
    return await services.evaluator.evaluate(GuardRequest.portal(slug), principal)
