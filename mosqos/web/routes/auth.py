"""Authentication routes: dev login, logout, post-login landing."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

from mosqos.access.redirect import landing_path_for
from mosqos.exceptions import DataLayerError
from mosqos.models.domain import Principal
from mosqos.web.auth.guards import get_principal
from mosqos.web.auth.session import SESSION_COOKIE
from mosqos.web.dependencies import AccessServices, get_services

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)


class LandingResponse(BaseModel):
    principal_id: str
    redirect_to: str


async def _landing(services: AccessServices, principal: Principal) -> str:
    try:
        return await landing_path_for(
            services.store, principal, paths=services.paths, cache=services.cache
        )
    except DataLayerError as exc:
        raise HTTPException(status_code=503, detail="Identity store unavailable") from exc


# ---------------------------------------------------------------------------
# Dev login (ENV=dev or ENV=test only)
# ---------------------------------------------------------------------------


@router.post("/login", response_model=LandingResponse)
async def login(
    body: LoginRequest,
    response: Response,
    services: AccessServices = Depends(get_services),
) -> dict[str, str]:
    """Sign in as a seeded account by email and return where to send it.

    Real credential checks live with the identity provider; this route only
    exists so local and test environments can impersonate the dev accounts.
    """
    if not services.settings.dev_mode:
        raise HTTPException(status_code=404, detail="Not found")

    try:
        principal = await services.store.get_principal_by_email(body.email)
    except DataLayerError as exc:
        raise HTTPException(status_code=503, detail="Identity store unavailable") from exc
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = services.sessions.create_session(principal.id)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=not services.settings.debug and services.settings.env != "test",
        samesite="lax",
        max_age=services.settings.session_max_age,
    )
    # A fresh sign-in never reuses roles cached for an earlier session
    services.cache.invalidate(principal.id)
    redirect_to = await _landing(services, principal)
    logger.info("user_logged_in", principal_id=principal.id, redirect_to=redirect_to)
    return {"principal_id": principal.id, "redirect_to": redirect_to}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    services: AccessServices = Depends(get_services),
) -> dict[str, str]:
    """Destroy the session and drop any cached identity for it."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        principal_id = services.sessions.destroy_session(token)
        if principal_id is not None:
            services.cache.invalidate(principal_id)
            logger.info("user_logged_out", principal_id=principal_id)
    response.delete_cookie(SESSION_COOKIE)
    return {"status": "ok"}


@router.get("/landing", response_model=LandingResponse)
async def landing(
    principal: Principal | None = Depends(get_principal),
    services: AccessServices = Depends(get_services),
) -> dict[str, str]:
    if principal is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return {"principal_id": principal.id, "redirect_to": await _landing(services, principal)}
